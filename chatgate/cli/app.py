"""
Main CLI application for chatgate.

Usage:
    cg providers list|models|test
    cg chat MESSAGE [--provider ID] [--stream/--no-stream] [--system TEXT] [--no-tools]
    cg tools list|info|run
    cg config show|validate
    cg version
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from chatgate import __version__
from chatgate.cli.output import OutputFormatter
from chatgate.config import ChatgateConfig, build_manager, load_config
from chatgate.llm.errors import ProviderError
from chatgate.llm.manager import ProviderManager
from chatgate.llm.types import ChatRequest, Message
from chatgate.tools.catalog import default_tools, get_definition
from chatgate.tools.errors import ToolError
from chatgate.tools.executor import ToolExecutor

app = typer.Typer(name="cg", help="chatgate - chat with Claude, Ollama or LM Studio")
providers_app = typer.Typer(help="Provider management")
tools_app = typer.Typer(help="Tool catalog and direct execution")
config_app = typer.Typer(help="Configuration management")

app.add_typer(providers_app, name="providers")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()

logger = logging.getLogger(__name__)

# Options from the top-level callback, read by every command.
_state: dict = {"config_path": None, "profile": None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    if _state["config_path"] is not None:
        return Path(_state["config_path"])
    candidates = [
        Path.cwd() / "chatgate.yaml",
        Path.cwd() / "chatgate.yml",
        Path.home() / ".config" / "chatgate" / "config.yaml",
        Path.home() / ".chatgate" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load() -> ChatgateConfig:
    try:
        return load_config(_get_config_path(), profile=_state["profile"])
    except (OSError, ValueError, KeyError) as e:
        console.print(f"[red]Could not load config:[/red] {escape(str(e))}")
        raise typer.Exit(1)


async def _setup_manager(cfg: ChatgateConfig) -> ProviderManager:
    """Build the manager from config and pick an active provider."""
    manager = build_manager(cfg)
    if cfg.gateway.auto_detect or manager.active_provider_id is None:
        await manager.auto_detect_providers()
    return manager


def _require_provider(manager: ProviderManager, provider_id: str) -> None:
    if manager.get_provider(provider_id) is None:
        console.print(f"[red]Unknown provider:[/red] {provider_id}")
        console.print(f"  Registered: {', '.join(manager.providers) or 'none'}")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------

@app.callback()
def _main(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging.level"),
):
    _state["config_path"] = config
    _state["profile"] = profile
    level = log_level or _load().logging.level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

@providers_app.command("list")
def providers_list():
    """List configured providers and whether they are reachable."""

    async def _run():
        manager = await _setup_manager(_load())
        statuses = await manager.get_available_providers()
        OutputFormatter(console).format_provider_list(statuses, manager.active_provider_id)

    asyncio.run(_run())


@providers_app.command("models")
def providers_models(provider_id: str = typer.Argument(..., help="Provider ID")):
    """List the models a provider offers."""

    async def _run():
        manager = build_manager(_load())
        await manager.auto_detect_providers()
        _require_provider(manager, provider_id)
        models = await manager.list_models_for_provider(provider_id)
        OutputFormatter(console).format_model_list(provider_id, models)

    asyncio.run(_run())


@providers_app.command("test")
def providers_test(provider_id: str = typer.Argument(..., help="Provider ID")):
    """Probe a provider: availability, models, and a one-line chat."""

    async def _run():
        manager = build_manager(_load())
        await manager.auto_detect_providers()
        _require_provider(manager, provider_id)
        provider = manager.get_provider(provider_id)

        if not await provider.is_available():
            console.print(f"[red]{provider_id} is not reachable[/red]")
            raise typer.Exit(1)
        console.print(f"[green]{provider_id} is reachable[/green]")

        models = await provider.list_models()
        console.print(f"  Models: {len(models)}")

        request = ChatRequest(
            messages=[Message(role="user", content="Reply with the single word: ok")],
            tools=[],
            max_tokens=16,
        )
        try:
            response = await manager.chat(request, provider_id)
        except ProviderError as e:
            console.print(f"[red]Chat failed:[/red] {escape(str(e))}")
            raise typer.Exit(1)
        console.print(f"  Reply: {response.content.strip()[:80]!r}")

    asyncio.run(_run())


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.command()
def chat(
    message: str = typer.Argument(..., help="The user message"),
    provider: Optional[str] = typer.Option(None, help="Provider ID (defaults to the active one)"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream the reply"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    no_tools: bool = typer.Option(False, "--no-tools", help="Do not offer tools to the model"),
):
    """Send one message and print the reply, executing any tool calls."""

    async def _run():
        manager = await _setup_manager(_load())
        formatter = OutputFormatter(console)
        request = ChatRequest(
            messages=[Message(role="user", content=message)],
            tools=[] if no_tools else None,
            system_prompt=system,
        )

        try:
            if not stream:
                formatter.format_response(await manager.chat(request, provider))
                return

            async with await manager.stream_chat(request, provider) as response:
                async for chunk in response:
                    if chunk.content:
                        console.print(chunk.content, end="", markup=False, highlight=False)
                    for call in chunk.tool_calls:
                        console.print()
                        formatter.format_tool_call(call)
                    if chunk.is_complete:
                        console.print()
        except ProviderError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)

    asyncio.run(_run())


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tools_app.command("list")
def tools_list():
    """List the tools offered to models."""
    OutputFormatter(console).format_tool_list(default_tools())


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    tool = get_definition(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool)


@tools_app.command("run")
def tools_run(
    tool_name: str = typer.Argument(..., help="Tool name"),
    args: str = typer.Option("{}", "--args", help="Tool parameters as a JSON object"),
):
    """Execute a tool directly, without a model."""
    try:
        params = json.loads(args)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --args JSON:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    if not isinstance(params, dict):
        console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(1)

    cfg = _load()
    executor = ToolExecutor(
        bash_timeout=cfg.tools.bash_timeout_seconds,
        grep_command=cfg.tools.grep_command,
        cwd=cfg.tools.working_dir or None,
        max_output_bytes=cfg.tools.max_output_bytes,
    )
    formatter = OutputFormatter(console)

    try:
        result = asyncio.run(executor.run(tool_name, params))
    except ToolError as e:
        console.print(f"[red]{escape(tool_name)} failed[/red] ({e.code}): {escape(str(e))}")
        raise typer.Exit(1)
    formatter.format_tool_result(tool_name, result)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@config_app.command("show")
def config_show():
    """Show effective config."""
    OutputFormatter(console).format_config(_load().to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and report any problems."""
    config_path = _get_config_path()
    cfg = _load()
    problems = cfg.validate()
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Active provider: {cfg.gateway.active_provider or '(auto)'}")
    console.print(f"  Bash timeout: {cfg.tools.bash_timeout_seconds:g}s")


@app.command()
def version():
    """Show version."""
    console.print(f"chatgate v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
