"""Tests for global config and pyproject trunk settings."""

from pathlib import Path

import pytest

from stackwork.core.config import (
    GlobalConfig,
    load_global_config,
    read_trunk_from_pyproject,
    save_global_config,
    set_config_value,
    write_trunk_to_pyproject,
)


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert load_global_config(tmp_path / "config.toml") == GlobalConfig()


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"

    save_global_config(GlobalConfig(remote="upstream", auto_stash=True), path)

    assert load_global_config(path) == GlobalConfig(remote="upstream", auto_stash=True)


def test_save_preserves_comments_and_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text('# mine\nremote = "origin"\ncolor = "blue"\n', encoding="utf-8")

    save_global_config(GlobalConfig(remote="fork"), path)

    content = path.read_text(encoding="utf-8")
    assert "# mine" in content
    assert 'color = "blue"' in content
    assert 'remote = "fork"' in content


def test_invalid_toml_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("remote = \n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid config file"):
        load_global_config(path)


def test_default_path_is_under_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    save_global_config(GlobalConfig(show_tips=False))

    assert (tmp_path / ".stackwork" / "config.toml").exists()
    assert load_global_config().show_tips is False


def test_set_config_value_parses_booleans() -> None:
    config = set_config_value(GlobalConfig(), "auto_stash", "TRUE")

    assert config.auto_stash is True
    assert set_config_value(config, "remote", "fork").remote == "fork"


def test_set_config_value_rejects_bad_input() -> None:
    with pytest.raises(KeyError):
        set_config_value(GlobalConfig(), "nope", "1")
    with pytest.raises(ValueError):
        set_config_value(GlobalConfig(), "show_tips", "maybe")


def test_trunk_round_trips_through_pyproject(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "demo"\n', encoding="utf-8")

    assert read_trunk_from_pyproject(tmp_path) is None
    write_trunk_to_pyproject(tmp_path, "develop")

    assert read_trunk_from_pyproject(tmp_path) == "develop"
    assert 'name = "demo"' in (tmp_path / "pyproject.toml").read_text(encoding="utf-8")


def test_trunk_absent_without_pyproject(tmp_path: Path) -> None:
    assert read_trunk_from_pyproject(tmp_path) is None
