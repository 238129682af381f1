"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import yaml

if TYPE_CHECKING:
    from chatgate.llm.manager import ProviderManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ClaudeConfig:
    enabled: bool = True
    api_key_env: str = "ANTHROPIC_API_KEY"
    model: str = ""
    base_url: str = ""
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout_seconds: int = 120


@dataclass
class OllamaConfig:
    enabled: bool = True
    endpoint: str = ""
    model: str = ""
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout_seconds: int = 120


@dataclass
class LMStudioConfig:
    enabled: bool = True
    endpoint: str = ""
    model: str = ""
    api_key_env: str = "LMSTUDIO_API_KEY"
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout_seconds: int = 120


@dataclass
class GatewayConfig:
    active_provider: str = ""
    auto_detect: bool = False


@dataclass
class ToolsConfig:
    bash_timeout_seconds: float = 30.0
    grep_command: str = "rg"
    working_dir: str = ""
    max_output_bytes: int = 100 * 1024


@dataclass
class LoggingConfig:
    level: str = "WARNING"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatgateConfig:
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    lmstudio: LMStudioConfig = field(default_factory=LMStudioConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self) -> list[str]:
        """Return a list of human-readable problems; empty means valid."""
        problems: list[str] = []
        if not isinstance(logging.getLevelName(self.logging.level.upper()), int):
            problems.append(f"logging.level: unknown level {self.logging.level!r}")
        if self.tools.bash_timeout_seconds <= 0:
            problems.append("tools.bash_timeout_seconds must be positive")
        if self.tools.max_output_bytes <= 0:
            problems.append("tools.max_output_bytes must be positive")
        for name in ("claude", "ollama", "lmstudio"):
            section = getattr(self, name)
            if section.max_tokens <= 0:
                problems.append(f"{name}.max_tokens must be positive")
            if not 0.0 <= section.temperature <= 2.0:
                problems.append(f"{name}.temperature must be between 0 and 2")
            if section.timeout_seconds <= 0:
                problems.append(f"{name}.timeout_seconds must be positive")
        known = {"claude-default", "ollama-default", "lmstudio-default"}
        if self.gateway.active_provider and self.gateway.active_provider not in known:
            problems.append(
                f"gateway.active_provider: {self.gateway.active_provider!r} "
                f"is not one of {sorted(known)}"
            )
        return problems


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise AttributeError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    unknown = set(raw) - valid_fields
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATGATE_CLAUDE_ENABLED":         ("claude.enabled", bool),
    "CHATGATE_CLAUDE_API_KEY_ENV":     ("claude.api_key_env", str),
    "CHATGATE_CLAUDE_MODEL":           ("claude.model", str),
    "CHATGATE_CLAUDE_BASE_URL":        ("claude.base_url", str),
    "CHATGATE_CLAUDE_MAX_TOKENS":      ("claude.max_tokens", int),
    "CHATGATE_CLAUDE_TEMPERATURE":     ("claude.temperature", float),
    "CHATGATE_CLAUDE_TIMEOUT":         ("claude.timeout_seconds", int),
    "CHATGATE_OLLAMA_ENABLED":         ("ollama.enabled", bool),
    "CHATGATE_OLLAMA_ENDPOINT":        ("ollama.endpoint", str),
    "CHATGATE_OLLAMA_MODEL":           ("ollama.model", str),
    "CHATGATE_OLLAMA_TIMEOUT":         ("ollama.timeout_seconds", int),
    "CHATGATE_LMSTUDIO_ENABLED":       ("lmstudio.enabled", bool),
    "CHATGATE_LMSTUDIO_ENDPOINT":      ("lmstudio.endpoint", str),
    "CHATGATE_LMSTUDIO_MODEL":         ("lmstudio.model", str),
    "CHATGATE_LMSTUDIO_TIMEOUT":       ("lmstudio.timeout_seconds", int),
    "CHATGATE_ACTIVE_PROVIDER":        ("gateway.active_provider", str),
    "CHATGATE_AUTO_DETECT":            ("gateway.auto_detect", bool),
    "CHATGATE_TOOLS_BASH_TIMEOUT":     ("tools.bash_timeout_seconds", float),
    "CHATGATE_TOOLS_GREP_COMMAND":     ("tools.grep_command", str),
    "CHATGATE_TOOLS_WORKING_DIR":      ("tools.working_dir", str),
    "CHATGATE_TOOLS_MAX_OUTPUT_BYTES": ("tools.max_output_bytes", int),
    "CHATGATE_LOG_LEVEL":              ("logging.level", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> ChatgateConfig:
    """
    Build a ChatgateConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional; missing files are skipped)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    env : environment to read ``CHATGATE_*`` variables from (defaults to os.environ)
    """
    env = os.environ if env is None else env
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ValueError(f"{p}: top level must be a mapping")
            raw = _deep_merge(raw, file_data)
        else:
            logger.debug("Config file %s not found; using defaults", p)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = raw.get("profiles", {}).get(profile)
        if profile_data is None:
            raise KeyError(f"Unknown profile {profile!r}")
        raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = ChatgateConfig(
        claude=_build_section(ClaudeConfig, raw.get("claude", {})),
        ollama=_build_section(OllamaConfig, raw.get("ollama", {})),
        lmstudio=_build_section(LMStudioConfig, raw.get("lmstudio", {})),
        gateway=_build_section(GatewayConfig, raw.get("gateway", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = env.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_manager(
    cfg: ChatgateConfig,
    *,
    env: Mapping[str, str] | None = None,
) -> ProviderManager:
    """
    Create a ProviderManager with the providers enabled in *cfg*.

    The Claude provider is registered only when the environment variable
    named by ``claude.api_key_env`` holds a key.  The active provider is
    set from ``gateway.active_provider`` when it was registered.
    """
    from chatgate.llm.manager import ProviderManager
    from chatgate.llm.providers import ClaudeProvider, LMStudioProvider, OllamaProvider
    from chatgate.tools.executor import ToolExecutor

    env = os.environ if env is None else env

    executor = ToolExecutor(
        bash_timeout=cfg.tools.bash_timeout_seconds,
        grep_command=cfg.tools.grep_command,
        cwd=cfg.tools.working_dir or None,
        max_output_bytes=cfg.tools.max_output_bytes,
    )
    manager = ProviderManager(executor)

    if cfg.claude.enabled:
        api_key = env.get(cfg.claude.api_key_env)
        if api_key:
            config = ClaudeProvider.default_config(
                api_key, cfg.claude.model or None, cfg.claude.base_url or None
            )
            manager.add_provider(
                "claude-default",
                ClaudeProvider(
                    config.with_overrides(
                        max_tokens=cfg.claude.max_tokens,
                        temperature=cfg.claude.temperature,
                    ),
                    timeout=cfg.claude.timeout_seconds,
                ),
            )
        else:
            logger.debug("Claude provider skipped: %s is not set", cfg.claude.api_key_env)

    if cfg.ollama.enabled:
        config = OllamaProvider.default_config(
            cfg.ollama.endpoint or None, cfg.ollama.model or None
        )
        manager.add_provider(
            "ollama-default",
            OllamaProvider(
                config.with_overrides(
                    max_tokens=cfg.ollama.max_tokens,
                    temperature=cfg.ollama.temperature,
                ),
                timeout=cfg.ollama.timeout_seconds,
            ),
        )

    if cfg.lmstudio.enabled:
        config = LMStudioProvider.default_config(
            cfg.lmstudio.endpoint or None, cfg.lmstudio.model or None
        )
        manager.add_provider(
            "lmstudio-default",
            LMStudioProvider(
                config.with_overrides(
                    api_key=env.get(cfg.lmstudio.api_key_env) or None,
                    max_tokens=cfg.lmstudio.max_tokens,
                    temperature=cfg.lmstudio.temperature,
                ),
                timeout=cfg.lmstudio.timeout_seconds,
            ),
        )

    active = cfg.gateway.active_provider
    if active:
        if manager.get_provider(active) is not None:
            manager.set_active_provider(active)
        else:
            logger.warning("Configured active provider %s is not registered", active)
    return manager
