# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Configuration loader for Coderig.

Sources, later ones winning:
    1. built-in defaults
    2. ~/.coderig.yaml (or $XDG_CONFIG_HOME/coderig/.coderig.yaml, or
       <working_dir>/.coderig.yaml; the first that exists)
    3. CODERIG_* environment variables

Provider API keys come from the YAML file or, failing that, from the
environment variable named for the provider. Both ~/.coderig/.env and
<working_dir>/.env are loaded into the environment first without
overriding anything already set.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_NAME = ".coderig.yaml"
CONFIG_DIR = Path.home() / ".coderig"
ENV_FILE = CONFIG_DIR / ".env"

DEFAULT_DATA_DIRECTORY = ".coderig"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_AGENT = "coder"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_SHELL = "/bin/bash"

ENV_LOG_LEVEL = "CODERIG_LOG_LEVEL"
ENV_DATA_DIR = "CODERIG_DATA_DIR"

# Provider-specific environment variable names
PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5",
    "openai": "gpt-5.2",
    "openrouter": "anthropic/claude-sonnet-4.6",
}

DEFAULT_AGENTS = {
    "coder": {"model": DEFAULT_MODELS["anthropic"], "max_tokens": 8192},
    "task": {"model": DEFAULT_MODELS["anthropic"], "max_tokens": DEFAULT_MAX_TOKENS},
}

CONTEXT_PATHS = [
    ".github/copilot-instructions.md",
    ".cursorrules",
    "CLAUDE.md",
    "CODERIG.md",
    "coderig.md",
]


@dataclass
class AgentConfig:
    model: str
    max_tokens: int = DEFAULT_MAX_TOKENS
    provider: str = ""


@dataclass
class ProviderConfig:
    api_key: str = ""
    disabled: bool = False


@dataclass
class ShellConfig:
    path: str = ""
    args: list[str] = field(default_factory=lambda: ["-l"])


@dataclass
class LSPConfig:
    command: str
    args: list[str] = field(default_factory=list)
    disabled: bool = False


@dataclass
class Config:
    """Coderig configuration."""

    working_dir: str
    data_directory: str = DEFAULT_DATA_DIRECTORY
    log_level: str = DEFAULT_LOG_LEVEL
    debug: bool = False
    default_agent: str = DEFAULT_AGENT
    agents: dict[str, AgentConfig] = field(default_factory=dict)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    shell: ShellConfig = field(default_factory=ShellConfig)
    lsp: dict[str, LSPConfig] = field(default_factory=dict)
    context_paths: list[str] = field(default_factory=lambda: list(CONTEXT_PATHS))
    auto_approve: bool = False
    provider_env_vars: dict[str, str] = field(default_factory=lambda: dict(PROVIDER_ENV_VARS))

    def data_path(self):
        """Absolute data directory, created on demand."""
        path = Path(self.data_directory)
        if not path.is_absolute():
            path = Path(self.working_dir) / path
        path.mkdir(parents=True, exist_ok=True)
        return path

    def agent(self, name):
        if name not in self.agents:
            raise ConfigError(f"unknown agent: {name}")
        return self.agents[name]

    def provider_for(self, agent_config):
        """Provider name serving an agent: explicit, or the first with a key."""
        if agent_config.provider:
            return agent_config.provider
        for name, provider in self.providers.items():
            if provider.api_key and not provider.disabled:
                return name
        return "anthropic"

    def api_key(self, provider):
        entry = self.providers.get(provider)
        if entry is None or entry.disabled:
            return ""
        return entry.api_key


def load_env_files(working_dir):
    """Load ~/.coderig/.env then <working_dir>/.env; existing values win."""
    for env_file in (ENV_FILE, Path(working_dir) / ".env"):
        if env_file.exists():
            load_dotenv(env_file, override=False)
            logger.debug("Loaded environment from %s", env_file)


def find_config_file(working_dir):
    candidates = [Path.home() / CONFIG_NAME]
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        candidates.append(Path(xdg) / "coderig" / CONFIG_NAME)
    candidates.append(Path(working_dir) / CONFIG_NAME)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def load_config_file(path):
    """Parse a YAML config file into a dict."""
    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse {path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read {path}: {error}") from error

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the root.")
    return data


def _section(raw, key):
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _build_agents(raw):
    agents = {}
    merged = {name: dict(values) for name, values in DEFAULT_AGENTS.items()}
    for name, values in _section(raw, "agents").items():
        merged.setdefault(name, {}).update(values or {})

    for name, values in merged.items():
        max_tokens = values.get("max_tokens", DEFAULT_MAX_TOKENS)
        if not isinstance(max_tokens, int) or max_tokens <= 0:
            raise ConfigError(f"agent {name}: max_tokens must be a positive integer")
        model = values.get("model") or DEFAULT_MODELS["anthropic"]
        agents[name] = AgentConfig(
            model=model,
            max_tokens=max_tokens,
            provider=values.get("provider", ""),
        )
    return agents


def _build_providers(raw, env_vars):
    providers = {}
    configured = _section(raw, "providers")
    for name in configured:
        if name not in env_vars:
            raise ConfigError(f"unknown provider: {name}")

    for name, env_var in env_vars.items():
        values = configured.get(name) or {}
        api_key = values.get("api_key") or os.environ.get(env_var, "")
        providers[name] = ProviderConfig(api_key=api_key, disabled=bool(values.get("disabled", False)))
    return providers


def _build_lsp(raw):
    servers = {}
    for name, values in _section(raw, "lsp").items():
        values = values or {}
        if not values.get("command"):
            raise ConfigError(f"lsp {name}: command is required")
        servers[name] = LSPConfig(
            command=values["command"],
            args=list(values.get("args") or []),
            disabled=bool(values.get("disabled", False)),
        )
    return servers


def load_config(working_dir, debug=False, config_path=None) -> Config:
    """Load configuration for a working directory.

    Raises:
        ConfigError: If the file is malformed or holds invalid values
    """
    working_dir = os.path.abspath(str(working_dir))
    load_env_files(working_dir)

    path = Path(config_path) if config_path else find_config_file(working_dir)
    raw = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        raw = load_config_file(path)
        logger.debug("Loaded configuration from %s", path)

    env_vars = dict(PROVIDER_ENV_VARS)
    env_vars.update(_section(raw, "provider_env_vars"))

    shell_raw = _section(raw, "shell")
    shell = ShellConfig(
        path=shell_raw.get("path") or os.environ.get("SHELL") or DEFAULT_SHELL,
        args=list(shell_raw.get("args", ["-l"])),
    )

    config = Config(
        working_dir=working_dir,
        data_directory=raw.get("data_directory", DEFAULT_DATA_DIRECTORY),
        log_level=str(raw.get("log_level", DEFAULT_LOG_LEVEL)),
        debug=debug or bool(raw.get("debug", False)),
        default_agent=raw.get("default_agent", DEFAULT_AGENT),
        agents=_build_agents(raw),
        providers=_build_providers(raw, env_vars),
        shell=shell,
        lsp=_build_lsp(raw),
        context_paths=list(raw.get("context_paths") or CONTEXT_PATHS),
        auto_approve=bool(raw.get("auto_approve", False)),
        provider_env_vars=env_vars,
    )

    if os.environ.get(ENV_LOG_LEVEL):
        config.log_level = os.environ[ENV_LOG_LEVEL]
    if os.environ.get(ENV_DATA_DIR):
        config.data_directory = os.environ[ENV_DATA_DIR]
    if config.debug:
        config.log_level = "debug"

    if config.default_agent not in config.agents:
        raise ConfigError(f"default agent {config.default_agent} is not configured")
    return config
