"""Tests for the YAML configuration loader."""

import os
from pathlib import Path

import pytest
import yaml

import coderig.config
from coderig.config import (
    CONFIG_NAME,
    DEFAULT_MODELS,
    load_config,
    load_config_file,
)
from coderig.errors import ConfigError


@pytest.fixture
def fake_home(tmp_path, monkeypatch, mock_env):
    """Point the home directory somewhere empty."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    monkeypatch.setattr(coderig.config, "ENV_FILE", home / ".coderig" / ".env")
    return home


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


def write_config(directory, data):
    path = directory / CONFIG_NAME
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_defaults(self, fake_home, project):
        config = load_config(project)
        assert config.working_dir == str(project)
        assert config.log_level == "info"
        assert config.default_agent == "coder"
        assert set(config.agents) == {"coder", "task"}
        assert config.agent("task").max_tokens == 4096
        assert config.agent("coder").model == DEFAULT_MODELS["anthropic"]
        assert config.auto_approve is False
        assert config.lsp == {}

    def test_unknown_agent(self, fake_home, project):
        with pytest.raises(ConfigError, match="unknown agent: reviewer"):
            load_config(project).agent("reviewer")

    def test_debug_forces_debug_level(self, fake_home, project):
        assert load_config(project, debug=True).log_level == "debug"

    def test_data_path_created(self, fake_home, project):
        config = load_config(project)
        assert config.data_path() == project / ".coderig"
        assert (project / ".coderig").is_dir()


class TestConfigFile:
    """YAML sources."""

    def test_project_file(self, fake_home, project):
        write_config(project, {
            "log_level": "warn",
            "agents": {"coder": {"model": "gpt-5.2", "provider": "openai", "max_tokens": 2048}},
            "lsp": {"python": {"command": "pylsp", "args": ["-v"]}},
            "shell": {"path": "/bin/sh", "args": []},
        })
        config = load_config(project)

        assert config.log_level == "warn"
        coder = config.agent("coder")
        assert (coder.model, coder.provider, coder.max_tokens) == ("gpt-5.2", "openai", 2048)
        assert config.lsp["python"].command == "pylsp"
        assert config.lsp["python"].args == ["-v"]
        assert config.shell.path == "/bin/sh"
        assert config.shell.args == []

    def test_home_file_wins_over_project(self, fake_home, project):
        write_config(fake_home, {"log_level": "error"})
        write_config(project, {"log_level": "warn"})
        assert load_config(project).log_level == "error"

    def test_xdg_file(self, fake_home, project, tmp_path, monkeypatch):
        xdg = tmp_path / "xdg"
        (xdg / "coderig").mkdir(parents=True)
        write_config(xdg / "coderig", {"log_level": "error"})
        monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
        assert load_config(project).log_level == "error"

    def test_explicit_path(self, fake_home, project, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("default_agent: task\n")
        assert load_config(project, config_path=path).default_agent == "task"

    def test_explicit_path_missing(self, fake_home, project, tmp_path):
        with pytest.raises(ConfigError, match="Configuration file not found"):
            load_config(project, config_path=tmp_path / "nope.yaml")

    def test_empty_file(self, fake_home, project):
        (project / CONFIG_NAME).write_text("")
        assert load_config(project).default_agent == "coder"

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_config_file(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config_file(path)


class TestValidation:
    def test_unknown_provider(self, fake_home, project):
        write_config(project, {"providers": {"acme": {"api_key": "k"}}})
        with pytest.raises(ConfigError, match="unknown provider: acme"):
            load_config(project)

    def test_lsp_without_command(self, fake_home, project):
        write_config(project, {"lsp": {"go": {"args": ["serve"]}}})
        with pytest.raises(ConfigError, match="lsp go: command is required"):
            load_config(project)

    @pytest.mark.parametrize("max_tokens", [0, -5, "many"])
    def test_invalid_max_tokens(self, fake_home, project, max_tokens):
        write_config(project, {"agents": {"task": {"max_tokens": max_tokens}}})
        with pytest.raises(ConfigError, match="max_tokens must be a positive integer"):
            load_config(project)

    def test_default_agent_not_configured(self, fake_home, project):
        write_config(project, {"default_agent": "reviewer"})
        with pytest.raises(ConfigError, match="default agent reviewer is not configured"):
            load_config(project)

    def test_section_must_be_mapping(self, fake_home, project):
        write_config(project, {"agents": ["coder"]})
        with pytest.raises(ConfigError, match="'agents' must be a mapping"):
            load_config(project)


class TestEnvironment:
    """Environment overrides and provider keys."""

    def test_log_level_and_data_dir(self, fake_home, project, tmp_path, monkeypatch):
        write_config(project, {"log_level": "warn"})
        monkeypatch.setenv("CODERIG_LOG_LEVEL", "error")
        monkeypatch.setenv("CODERIG_DATA_DIR", str(tmp_path / "data"))
        config = load_config(project)
        assert config.log_level == "error"
        assert config.data_path() == tmp_path / "data"

    def test_api_key_from_env(self, fake_home, project, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = load_config(project)
        assert config.api_key("openai") == "sk-env"
        assert config.api_key("anthropic") == ""

    def test_api_key_from_file_wins(self, fake_home, project, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        write_config(project, {"providers": {"anthropic": {"api_key": "from-file"}}})
        assert load_config(project).api_key("anthropic") == "from-file"

    def test_disabled_provider_has_no_key(self, fake_home, project, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        write_config(project, {"providers": {"openai": {"disabled": True}}})
        assert load_config(project).api_key("openai") == ""

    def test_provider_for(self, fake_home, project, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        config = load_config(project)
        assert config.provider_for(config.agent("coder")) == "openrouter"
        write_config(project, {"agents": {"coder": {"provider": "openai"}}})
        config = load_config(project)
        assert config.provider_for(config.agent("coder")) == "openai"

    def test_provider_for_without_keys(self, fake_home, project):
        config = load_config(project)
        assert config.provider_for(config.agent("coder")) == "anthropic"

    def test_project_env_file(self, fake_home, project):
        (project / ".env").write_text("OPENAI_API_KEY=sk-dotenv\n")
        try:
            assert load_config(project).api_key("openai") == "sk-dotenv"
        finally:
            os.environ.pop("OPENAI_API_KEY", None)

    def test_env_file_does_not_override(self, fake_home, project, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-shell")
        (project / ".env").write_text("OPENAI_API_KEY=sk-dotenv\n")
        assert load_config(project).api_key("openai") == "sk-shell"
