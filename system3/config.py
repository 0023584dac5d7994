"""Configuration file loading and merging for system3.

Reads TOML config from ~/.config/system3/config.toml (global) and
<base_dir>/system3.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .transport import DEFAULT_MAX_TOKENS, DEFAULT_MODEL

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "max_tokens": int,
    "color": bool,
    "quiet": bool,
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "base_url": None,
    "max_tokens": DEFAULT_MAX_TOKENS,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "system3"
    return Path.home() / ".config" / "system3"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int, so isinstance(True, int) is True.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "max_tokens" in config and config["max_tokens"] < 1:
        raise ConfigError(f"{source}: 'max_tokens' must be at least 1")


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using an environment variable.",
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


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys actually set in config files
    (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "system3.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to the argparse namespace where the CLI didn't set one.

    Remaining _UNSET sentinels are then replaced by hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


# Example value and trailing note for each key in the generated template
_TEMPLATE_ENTRIES = [
    ("model", f'"{DEFAULT_MODEL}"', ""),
    ("api_key", '"sk-ant-..."', "prefer the provider's environment variable"),
    ("base_url", '"https://..."', ""),
    ("max_tokens", str(DEFAULT_MAX_TOKENS), ""),
    ("color", "true", "false disables color; leave unset to detect the terminal"),
    ("quiet", "false", ""),
]


def generate_config() -> str:
    """Return a template config file with every key commented out.

    It can be saved as the global config or as <base_dir>/system3.toml.
    """
    lines = [
        "# system3 configuration",
        "# Global: ~/.config/system3/config.toml   Project: <base_dir>/system3.toml",
        "# Project values override global ones; CLI flags override both.",
        "",
    ]
    for key, example, note in _TEMPLATE_ENTRIES:
        line = f"# {key} = {example}"
        if note:
            line += f"  # {note}"
        lines.append(line)
    lines.append("")
    return "\n".join(lines)
