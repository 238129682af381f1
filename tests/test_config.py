"""Tests for chatgate.config."""

from __future__ import annotations

import pytest
import yaml

from chatgate.config import ChatgateConfig, build_manager, load_config
from chatgate.llm.types import ProviderKind


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "chatgate.yaml"
    path.write_text(yaml.safe_dump({
        "ollama": {"endpoint": "http://gpu:11434", "model": "qwen2"},
        "tools": {"bash_timeout_seconds": 10},
        "gateway": {"active_provider": "ollama-default"},
        "profiles": {
            "cloud": {"gateway": {"active_provider": "claude-default"}, "claude": {"model": "claude-x"}},
        },
    }))
    return path


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config(env={})
        assert cfg.claude.api_key_env == "ANTHROPIC_API_KEY"
        assert cfg.tools.bash_timeout_seconds == 30.0
        assert cfg.tools.grep_command == "rg"
        assert cfg.logging.level == "WARNING"
        assert cfg.validate() == []

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml", env={})
        assert cfg == ChatgateConfig()

    def test_file_values(self, config_file):
        cfg = load_config(config_file, env={})
        assert cfg.ollama.endpoint == "http://gpu:11434"
        assert cfg.ollama.model == "qwen2"
        assert cfg.tools.bash_timeout_seconds == 10
        assert cfg.gateway.active_provider == "ollama-default"

    def test_profile_overlay(self, config_file):
        cfg = load_config(config_file, profile="cloud", env={})
        assert cfg.gateway.active_provider == "claude-default"
        assert cfg.claude.model == "claude-x"
        # Untouched keys keep the file value.
        assert cfg.ollama.model == "qwen2"

    def test_unknown_profile(self, config_file):
        with pytest.raises(KeyError):
            load_config(config_file, profile="ghost", env={})

    def test_env_beats_file(self, config_file):
        cfg = load_config(
            config_file,
            env={
                "CHATGATE_OLLAMA_MODEL": "llama3.2",
                "CHATGATE_TOOLS_BASH_TIMEOUT": "2.5",
                "CHATGATE_AUTO_DETECT": "yes",
            },
        )
        assert cfg.ollama.model == "llama3.2"
        assert cfg.tools.bash_timeout_seconds == 2.5
        assert cfg.gateway.auto_detect is True

    def test_cli_beats_env(self, config_file):
        cfg = load_config(
            config_file,
            env={"CHATGATE_LOG_LEVEL": "INFO"},
            cli_overrides={"logging.level": "DEBUG"},
        )
        assert cfg.logging.level == "DEBUG"

    def test_unknown_cli_key(self):
        with pytest.raises(AttributeError):
            load_config(env={}, cli_overrides={"tools.nonexistent": 1})

    def test_unknown_file_keys_ignored(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("ollama:\n  model: m\n  colour: blue\n")
        cfg = load_config(path, env={})
        assert cfg.ollama.model == "m"

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(path, env={})


class TestValidate:
    def test_reports_problems(self):
        cfg = ChatgateConfig()
        cfg.logging.level = "LOUD"
        cfg.tools.bash_timeout_seconds = 0
        cfg.claude.temperature = 3.0
        cfg.gateway.active_provider = "mystery"

        problems = cfg.validate()
        assert len(problems) == 4
        assert any("logging.level" in p for p in problems)
        assert any("bash_timeout_seconds" in p for p in problems)
        assert any("claude.temperature" in p for p in problems)
        assert any("mystery" in p for p in problems)


class TestBuildManager:
    def test_claude_needs_key_in_env(self):
        manager = build_manager(ChatgateConfig(), env={})
        assert set(manager.providers) == {"ollama-default", "lmstudio-default"}

    def test_all_providers_and_settings(self, config_file, tmp_path):
        cfg = load_config(config_file, env={})
        cfg.claude.max_tokens = 1234
        cfg.tools.working_dir = str(tmp_path)

        manager = build_manager(cfg, env={"ANTHROPIC_API_KEY": "sk-test", "LMSTUDIO_API_KEY": "lm"})

        claude = manager.get_provider("claude-default")
        assert claude.kind is ProviderKind.CLAUDE_API
        assert claude.config.api_key == "sk-test"
        assert claude.config.max_tokens == 1234
        assert manager.get_provider("ollama-default").config.model == "qwen2"
        assert manager.get_provider("lmstudio-default").config.api_key == "lm"
        assert manager.active_provider_id == "ollama-default"
        assert manager.executor.bash_timeout == 10
        assert manager.executor.cwd == str(tmp_path)

    def test_disabled_sections(self):
        cfg = ChatgateConfig()
        cfg.ollama.enabled = False
        cfg.lmstudio.enabled = False
        manager = build_manager(cfg, env={"ANTHROPIC_API_KEY": "k"})
        assert list(manager.providers) == ["claude-default"]

    def test_unregistered_active_provider_is_ignored(self):
        cfg = ChatgateConfig()
        cfg.gateway.active_provider = "claude-default"
        manager = build_manager(cfg, env={})
        assert manager.active_provider_id is None
