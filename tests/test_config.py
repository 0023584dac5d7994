"""Tests for system3.config: TOML config file loading, merging, and CLI integration."""

import argparse
import tomllib

import pytest

from system3.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)
from system3.transport import DEFAULT_MAX_TOKENS, DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "model": _UNSET,
        "api_key": _UNSET,
        "base_url": _UNSET,
        "max_tokens": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "quiet": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture(autouse=True)
def _empty_global(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "empty"))


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path):
        assert load_config(tmp_path) == {}

    def test_global_only(self, tmp_path, monkeypatch):
        global_dir = tmp_path / "global_cfg"
        monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
        _write_toml(global_dir / "system3" / "config.toml", 'model = "openai/gpt-4o"\n')
        result = load_config(tmp_path / "project")
        assert result["model"] == "openai/gpt-4o"

    def test_project_only(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", "max_tokens = 42\n")
        assert load_config(tmp_path)["max_tokens"] == 42

    def test_project_overrides_global(self, tmp_path, monkeypatch):
        global_dir = tmp_path / "global"
        monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
        _write_toml(global_dir / "system3" / "config.toml", 'max_tokens = 10\nmodel = "a"\n')
        _write_toml(tmp_path / "system3.toml", "max_tokens = 50\n")
        result = load_config(tmp_path)
        assert result == {"max_tokens": 50, "model": "a"}

    def test_global_dir_respects_xdg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert global_config_dir() == tmp_path / "xdg" / "system3"

    def test_global_dir_default(self, tmp_path, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert global_config_dir() == tmp_path / ".config" / "system3"

    def test_unknown_keys_warn(self, tmp_path, capsys):
        _write_toml(tmp_path / "system3.toml", 'unknown_key = "hi"\n')
        result = load_config(tmp_path)
        assert "unknown_key" not in result
        assert "unknown config key" in capsys.readouterr().err

    def test_invalid_toml_raises(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", "invalid = [\n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_api_key_in_git_project_warns(self, tmp_path, capsys):
        (tmp_path / ".git").mkdir()
        _write_toml(tmp_path / "system3.toml", 'api_key = "sk-secret"\n')
        assert load_config(tmp_path)["api_key"] == "sk-secret"
        assert "git-tracked" in capsys.readouterr().err


# ===========================================================================
# Type validation
# ===========================================================================


class TestTypeValidation:
    def test_string_where_int_expected(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", 'max_tokens = "big"\n')
        with pytest.raises(ConfigError, match="max_tokens.*expected int.*got str"):
            load_config(tmp_path)

    def test_bool_where_int_expected(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", "max_tokens = true\n")
        with pytest.raises(ConfigError, match="max_tokens.*expected int.*got bool"):
            load_config(tmp_path)

    def test_int_where_string_expected(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", "model = 5\n")
        with pytest.raises(ConfigError, match="model.*expected str.*got int"):
            load_config(tmp_path)

    def test_non_positive_max_tokens(self, tmp_path):
        _write_toml(tmp_path / "system3.toml", "max_tokens = 0\n")
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(tmp_path)


# ===========================================================================
# Applying config to argparse
# ===========================================================================


class TestApplyConfig:
    def test_defaults_fill_unset(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.model == DEFAULT_MODEL
        assert args.max_tokens == DEFAULT_MAX_TOKENS
        assert args.api_key is None
        assert args.base_url is None
        assert args.color is False
        assert args.no_color is False
        assert args.quiet is False

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "openai/gpt-4o", "max_tokens": 512, "quiet": True})
        assert args.model == "openai/gpt-4o"
        assert args.max_tokens == 512
        assert args.quiet is True

    def test_cli_beats_config(self):
        args = _make_args(model="cli-model", max_tokens=99)
        apply_config_to_args(args, {"model": "cfg-model", "max_tokens": 512})
        assert args.model == "cli-model"
        assert args.max_tokens == 99

    def test_color_true(self):
        args = _make_args()
        apply_config_to_args(args, {"color": True})
        assert args.color is True
        assert args.no_color is False

    def test_color_false(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_cli_no_color_beats_config_color(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False


# ===========================================================================
# Template generation
# ===========================================================================


class TestGenerateConfig:
    def test_template_is_valid_toml(self):
        content = generate_config()
        lines = []
        for line in content.splitlines():
            stripped = line.lstrip("# ").strip()
            if "=" in stripped and not stripped.startswith("--"):
                lines.append(stripped)
        parsed = tomllib.loads("\n".join(lines))
        assert parsed["model"] == DEFAULT_MODEL
        assert parsed["max_tokens"] == DEFAULT_MAX_TOKENS

    def test_header_names_both_locations(self):
        header = generate_config().split("\n\n", 1)[0]
        assert "~/.config/system3/config.toml" in header
        assert "system3.toml" in header

    def test_every_key_commented_out(self):
        assert tomllib.loads(generate_config()) == {}

    def test_template_keys_are_known(self):
        from system3.config import CONFIG_KEYS

        content = generate_config()
        for key in CONFIG_KEYS:
            assert f"# {key} = " in content
