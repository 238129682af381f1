"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatgate.llm.manager import ProviderStatus
from chatgate.llm.types import ChatResponse, ToolCall, ToolCallStatus, ToolDefinition
from chatgate.types import ToolResult

STATUS_COLORS = {
    ToolCallStatus.EXECUTING: "yellow",
    ToolCallStatus.COMPLETED: "green",
    ToolCallStatus.ERROR: "red",
}


class OutputFormatter:
    """Rich-based output formatting for the chatgate CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_provider_list(
        self, statuses: list[ProviderStatus], active_id: str | None
    ) -> None:
        if not statuses:
            self.console.print("[dim]No providers registered.[/dim]")
            return

        table = Table(title="Providers")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Kind", no_wrap=True)
        table.add_column("Model")
        table.add_column("Endpoint")
        table.add_column("Tools", no_wrap=True)
        table.add_column("Status", no_wrap=True)

        for s in statuses:
            cfg = s.provider.config
            ident = f"{s.id} *" if s.id == active_id else s.id
            status = Text("available", style="green") if s.available else Text("offline", style="red")
            table.add_row(
                ident,
                cfg.kind.value,
                escape(cfg.model),
                escape(cfg.endpoint or ""),
                "yes" if cfg.supports_tool_calls else "no",
                status,
            )

        self.console.print(table)

    def format_model_list(self, provider_id: str, models: list[str]) -> None:
        if not models:
            self.console.print(f"[dim]No models reported by {provider_id}.[/dim]")
            return
        for m in models:
            self.console.print(f"  {escape(m)}")

    def format_tool_list(self, tools: list[ToolDefinition]) -> None:
        table = Table(title="Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Required", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            required = ", ".join(t.parameters.get("required", []))
            table.add_row(t.name, required, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: ToolDefinition) -> None:
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        schema_json = json.dumps(tool.parameters, indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_tool_result(self, tool_name: str, result: ToolResult) -> None:
        status = "[green]OK[/green]" if result.success else "[red]FAILED[/red]"
        self.console.print(f"  {escape(f'[{tool_name}]')} {status}")
        if result.error_code:
            self.console.print(f"  [dim]code:[/dim] {result.error_code}")
        self.console.print(result.content, markup=False, highlight=False)

    def format_tool_call(self, call: ToolCall) -> None:
        color = STATUS_COLORS.get(call.status, "white")
        args = json.dumps(call.parameters, default=str)
        self.console.print(
            f"[{color}]> {escape(call.name)}[/{color}] [dim]{escape(args[:120])}[/dim]",
            highlight=False,
        )
        if call.result is not None:
            first_line = (call.result.content or "").splitlines()[:1]
            preview = first_line[0][:200] if first_line else ""
            self.console.print(
                f"  [dim]{call.status.value}:[/dim] {escape(preview)}", highlight=False
            )

    def format_response(self, response: ChatResponse) -> None:
        for call in response.tool_calls:
            self.format_tool_call(call)
        if response.content:
            self.console.print(response.content, markup=False, highlight=False)
        meta = response.metadata
        parts = [p for p in (
            meta.model,
            f"{meta.tokens} tokens" if meta.tokens is not None else None,
            f"{meta.duration_ms} ms" if meta.duration_ms is not None else None,
        ) if p]
        if parts:
            self.console.print(f"[dim]{escape(' | '.join(parts))}[/dim]")

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
