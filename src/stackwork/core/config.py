"""Global configuration data structures and loading.

Provides immutable global config data loaded from ~/.stackwork/config.toml.
A missing file yields the defaults, so no init step is needed.
"""

import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path

import tomlkit

DEFAULT_REMOTE = "origin"


@dataclass(frozen=True)
class GlobalConfig:
    """Immutable global configuration data.

    Loaded once at CLI entry point and stored in StackContext.
    """

    remote: str = DEFAULT_REMOTE
    auto_stash: bool = False
    show_tips: bool = True


CONFIG_KEYS = tuple(f.name for f in fields(GlobalConfig))


def global_config_path() -> Path:
    return Path.home() / ".stackwork" / "config.toml"


def load_global_config(path: Path | None = None) -> GlobalConfig:
    """Load global config from ~/.stackwork/config.toml.

    Args:
        path: Config file path (defaults to ~/.stackwork/config.toml)

    Returns:
        GlobalConfig with loaded values; defaults for anything not set

    Raises:
        ValueError: If the file is not valid TOML
    """
    config_path = path if path is not None else global_config_path()
    if not config_path.exists():
        return GlobalConfig()

    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e

    return GlobalConfig(
        remote=str(data.get("remote", DEFAULT_REMOTE)),
        auto_stash=bool(data.get("auto_stash", False)),
        show_tips=bool(data.get("show_tips", True)),
    )


def save_global_config(config: GlobalConfig, path: Path | None = None) -> None:
    """Save global config, keeping comments and unknown keys already in the file."""
    config_path = path if path is not None else global_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            doc = tomlkit.load(f)
    else:
        doc = tomlkit.document()
        doc.add(tomlkit.comment("Global stackwork configuration"))

    doc["remote"] = config.remote
    doc["auto_stash"] = config.auto_stash
    doc["show_tips"] = config.show_tips

    with config_path.open("w", encoding="utf-8") as f:
        tomlkit.dump(doc, f)


def set_config_value(config: GlobalConfig, key: str, value: str) -> GlobalConfig:
    """Return a copy of `config` with one key parsed from its string form.

    Raises:
        KeyError: If `key` is not a config key
        ValueError: If a boolean key gets something other than true/false
    """
    if key not in CONFIG_KEYS:
        raise KeyError(key)
    if key == "remote":
        return replace(config, remote=value)

    lowered = value.lower()
    if lowered not in ("true", "false"):
        raise ValueError(f"Invalid boolean value: {value}")
    return replace(config, **{key: lowered == "true"})


def read_trunk_from_pyproject(repo_root: Path) -> str | None:
    """Read trunk branch configuration from pyproject.toml.

    Args:
        repo_root: Path to the repository root directory

    Returns:
        Configured trunk branch name, or None if not configured
    """
    pyproject_path = repo_root / "pyproject.toml"

    if not pyproject_path.exists():
        return None

    with pyproject_path.open("rb") as f:
        data = tomllib.load(f)

    stackwork_section = data.get("tool", {}).get("stackwork")
    if stackwork_section is None:
        return None

    return stackwork_section.get("trunk_branch")


def write_trunk_to_pyproject(repo_root: Path, trunk: str) -> None:
    """Write trunk branch configuration to pyproject.toml.

    Creates or updates the [tool.stackwork] section with trunk_branch setting.
    Preserves existing formatting and comments using tomlkit.
    """
    pyproject_path = repo_root / "pyproject.toml"

    if pyproject_path.exists():
        with pyproject_path.open("r", encoding="utf-8") as f:
            doc = tomlkit.load(f)
    else:
        doc = tomlkit.document()

    if "tool" not in doc:
        doc["tool"] = tomlkit.table()  # type: ignore[index]

    if "stackwork" not in doc["tool"]:  # type: ignore[operator]
        doc["tool"]["stackwork"] = tomlkit.table()  # type: ignore[index]

    doc["tool"]["stackwork"]["trunk_branch"] = trunk  # type: ignore[index]

    with pyproject_path.open("w", encoding="utf-8") as f:
        tomlkit.dump(doc, f)
