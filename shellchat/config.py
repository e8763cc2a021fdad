"""Configuration loading and merging for shellchat.

Sources, highest precedence first:

1. CLI flags
2. Environment variables (exported, or loaded from .env.local, .env,
   ~/.config/shellchat/.env in that order)
3. Project config: <cwd>/shellchat.toml
4. Global config: ~/.config/shellchat/config.toml
5. Built-in defaults
"""

import dataclasses
import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NewType

from dotenv import load_dotenv

from .report import ConfigError
from .transport import DEFAULT_BASE_URL

ApiKey = NewType("ApiKey", str)
ModelId = NewType("ModelId", str)
MaxTokens = NewType("MaxTokens", int)
Temperature = NewType("Temperature", float)
SystemPrompt = NewType("SystemPrompt", str)

DEFAULT_MODEL = ModelId("anthropic/claude-sonnet-4")
DEFAULT_MAX_TOKENS = MaxTokens(4096)

# Env var -> config key
ENV_VARS: dict[str, str] = {
    "OPENROUTER_API_KEY": "api_key",
    "LLM_MODEL": "model",
    "MAX_TOKENS": "max_tokens",
    "SYSTEM_PROMPT": "system_prompt",
    "TEMPERATURE": "temperature",
    "OPENROUTER_BASE_URL": "base_url",
}

# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "max_tokens": int,
    "temperature": (int, float),
    "system_prompt": str,
}

AGENTS_FILE = "AGENTS.md"
_AGENTS_PREFIX = (
    "<system-reminder>"
    "As you answer the user's questions, "
    "you can use the following context.\n\n"
    "Codebase and user instructions are shown "
    "below. Be sure to adhere to these "
    "instructions.\n\n"
    "IMPORTANT: These instructions OVERRIDE "
    "any default behavior and you MUST follow "
    "them as written.\n\n"
)
_AGENTS_SUFFIX = "\n</system-reminder>"


@dataclass(frozen=True)
class Config:
    """Resolved application configuration."""

    api_key: ApiKey
    model: ModelId = DEFAULT_MODEL
    max_tokens: MaxTokens = DEFAULT_MAX_TOKENS
    system_prompt: SystemPrompt | None = None
    temperature: Temperature | None = None
    base_url: str = DEFAULT_BASE_URL
    show_config: bool = False


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "shellchat"
    return Path.home() / ".config" / "shellchat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Check value types. Raises ConfigError; warns about unknown keys."""
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int
        if isinstance(value, bool):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using OPENROUTER_API_KEY.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


def parse_max_tokens(value: Any, source: str) -> MaxTokens:
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise ConfigError(f"Invalid {source} value: '{value}'")
        value = int(text)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"Invalid {source} value: '{value}'")
    return MaxTokens(value)


def parse_temperature(value: Any, source: str) -> Temperature:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise ConfigError(f"Invalid {source} value: '{value}'") from None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Invalid {source} value: '{value}'")
    if not 0.0 <= value <= 2.0:
        raise ConfigError(f"{source} must be between 0.0 and 2.0, got {value}")
    return Temperature(float(value))


# --- Public API ---


def env_file_candidates(base_dir: Path | str = ".") -> list[Path]:
    """Return .env files in precedence order, highest first."""
    base = Path(base_dir)
    return [
        base / ".env.local",
        base / ".env",
        global_config_dir() / ".env",
    ]


def load_env_files(base_dir: Path | str = ".") -> list[Path]:
    """Load .env files into os.environ without overriding exported variables.

    Loading highest-precedence first with override=False means the first
    file to define a variable wins. Returns the files that were loaded.
    """
    loaded = []
    for path in env_file_candidates(base_dir):
        if path.is_file():
            load_dotenv(path, override=False)
            loaded.append(path)
    return loaded


def load_config(base_dir: Path | str = ".") -> dict:
    """Load and merge global + project TOML config.

    Returns only the keys actually set in config files; project overrides
    global.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "shellchat.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    return {**global_config, **project_config}


def config_from_env(environ=None) -> dict:
    """Collect non-empty config values from environment variables."""
    environ = os.environ if environ is None else environ
    values = {}
    for var, key in ENV_VARS.items():
        value = environ.get(var)
        if value:
            values[key] = (var, value)
    return values


def resolve_config(args, file_config: dict | None = None, environ=None) -> Config:
    """Resolve the final Config from CLI args, environment and config files.

    ``args`` is an argparse namespace whose unset options are None.
    Raises ConfigError when the API key is missing (unless only showing
    the config) or a numeric value does not parse.
    """
    file_config = file_config or {}
    env = config_from_env(environ)

    def _pick(key):
        cli_value = getattr(args, key, None)
        if cli_value is not None:
            return f"--{key.replace('_', '-')}", cli_value
        if key in env:
            return env[key]
        if key in file_config:
            return f"config {key!r}", file_config[key]
        return None, None

    show_config = bool(getattr(args, "show_config", False))

    _, api_key = _pick("api_key")
    if not api_key:
        if not show_config:
            raise ConfigError(
                "OPENROUTER_API_KEY not set. "
                "Set it in .env or export it as an environment variable."
            )
        api_key = ""

    _, model = _pick("model")
    source, max_tokens = _pick("max_tokens")
    if max_tokens is not None:
        max_tokens = parse_max_tokens(max_tokens, source)
    source, temperature = _pick("temperature")
    if temperature is not None:
        temperature = parse_temperature(temperature, source)
    _, system_prompt = _pick("system_prompt")
    _, base_url = _pick("base_url")

    return Config(
        api_key=ApiKey(api_key),
        model=ModelId(model) if model else DEFAULT_MODEL,
        max_tokens=max_tokens if max_tokens is not None else DEFAULT_MAX_TOKENS,
        system_prompt=SystemPrompt(system_prompt) if system_prompt else None,
        temperature=temperature,
        base_url=base_url or DEFAULT_BASE_URL,
        show_config=show_config,
    )


def append_agents_file(config: Config, directory: Path | str = ".") -> Config:
    """Append AGENTS.md from ``directory`` to the system prompt, if present."""
    path = Path(directory) / AGENTS_FILE
    if not path.is_file():
        return config
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return config
    if not content:
        return config

    wrapped = _AGENTS_PREFIX + content + _AGENTS_SUFFIX
    if config.system_prompt:
        prompt = f"{config.system_prompt}\n{wrapped}"
    else:
        prompt = wrapped
    return dataclasses.replace(config, system_prompt=SystemPrompt(prompt))


def print_config(config: Config, out=None) -> None:
    """Print the resolved configuration with the API key masked."""
    out = out or sys.stdout
    out.write("Configuration:\n")
    out.write(f"  Model:      {config.model}\n")
    out.write(f"  Max tokens: {config.max_tokens}\n")
    out.write(f"  API key:    {config.api_key[:12]}...\n")
    if config.base_url != DEFAULT_BASE_URL:
        out.write(f"  Base URL:   {config.base_url}\n")
    if config.temperature is not None:
        out.write(f"  Temperature: {config.temperature}\n")
    if config.system_prompt:
        out.write(f"  System:     {config.system_prompt}\n")


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# shellchat configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/shellchat.toml' if project else '~/.config/shellchat/config.toml'}",
        "#",
        "# CLI flags and environment variables override these values.",
        "",
        '# model = "anthropic/claude-sonnet-4"',
        '# api_key = "sk-or-..."            # prefer OPENROUTER_API_KEY',
        '# base_url = "https://openrouter.ai/api/v1"',
        "# max_tokens = 4096",
        "# temperature = 0.7",
        '# system_prompt = "You are a helpful assistant."',
        "",
    ]
    return "\n".join(lines)
