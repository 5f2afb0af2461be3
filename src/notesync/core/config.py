"""Configuration for notesync.

This module provides:
- SyncConfig: Immutable settings for one sync run
- ConfigError: Raised for missing or malformed settings
- get_config_dir / get_config_file / load_config: Read-only config file access

The config file is never written by notesync; the caller (or the user) owns it.
"""

from __future__ import annotations

import json
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

DEFAULT_LOCAL_PATH = "~/Notes"
DEFAULT_REMOTE_PATH = 'gdrive:"notes_vault"'
DEFAULT_MAX_LOCK_RETRIES = 3
DEFAULT_RCLONE_BINARY = "rclone"
CONFIG_FILENAME = "config.json"
DEFAULT_MERGE_TOOL: tuple[str, ...] = ("meld",)

# Prefix used when running inside a Flatpak sandbox
FLATPAK_HOST_COMMAND: tuple[str, ...] = ("flatpak-spawn", "--host")


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""


def _as_command(value: Any, key: str) -> tuple[str, ...]:
    """Normalize a command given as a string or a list of arguments."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"{key} must be a string or a list of strings, got {value!r}")


@dataclass(frozen=True)
class SyncConfig:
    """Settings for a sync run.

    Supplied by the caller and read-only to the orchestrator.

    Attributes:
        local_path: Local directory (the vault).
        remote_path: rclone remote target, passed through verbatim.
        auto_resolve_conflicts: Push the merged result after resolving a conflict.
        max_lock_retries: Consecutive stale-lock recoveries before giving up.
        rclone_binary: Executable name or path of rclone.
        host_command: Prefix to run commands outside a sandbox (e.g. flatpak-spawn --host).
        merge_tool: Interactive merge tool command; two paths are appended.
    """

    local_path: str
    remote_path: str
    auto_resolve_conflicts: bool = False
    max_lock_retries: int = DEFAULT_MAX_LOCK_RETRIES
    rclone_binary: str = DEFAULT_RCLONE_BINARY
    host_command: tuple[str, ...] = ()
    merge_tool: tuple[str, ...] = field(default=DEFAULT_MERGE_TOOL)

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.local_path or not str(self.local_path).strip():
            raise ConfigError("local_path must not be empty")
        if not self.remote_path or not str(self.remote_path).strip():
            raise ConfigError("remote_path must not be empty")
        if self.max_lock_retries < 0:
            raise ConfigError("max_lock_retries must be >= 0")
        if not self.rclone_binary:
            raise ConfigError("rclone_binary must not be empty")
        if not self.merge_tool:
            raise ConfigError("merge_tool must not be empty")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SyncConfig:
        """Build a config from a mapping, filling in defaults.

        Unknown keys are ignored. `~` in the local path is expanded; the
        remote path is left untouched.

        Args:
            data: Mapping such as the content of the config file.

        Returns:
            A validated SyncConfig.

        Raises:
            ConfigError: If a value has the wrong type or is empty.
        """
        local_path = data.get("local_path") or DEFAULT_LOCAL_PATH
        remote_path = data.get("remote_path") or DEFAULT_REMOTE_PATH
        if not isinstance(local_path, str) or not isinstance(remote_path, str):
            raise ConfigError("local_path and remote_path must be strings")

        max_lock_retries = data.get("max_lock_retries", DEFAULT_MAX_LOCK_RETRIES)
        if isinstance(max_lock_retries, bool) or not isinstance(max_lock_retries, int):
            raise ConfigError(f"max_lock_retries must be an integer, got {max_lock_retries!r}")

        merge_tool = _as_command(data.get("merge_tool"), "merge_tool") or DEFAULT_MERGE_TOOL

        return cls(
            local_path=str(Path(local_path).expanduser()),
            remote_path=remote_path,
            auto_resolve_conflicts=bool(data.get("auto_resolve_conflicts", False)),
            max_lock_retries=max_lock_retries,
            rclone_binary=str(data.get("rclone_binary") or DEFAULT_RCLONE_BINARY),
            host_command=_as_command(data.get("host_command"), "host_command"),
            merge_tool=merge_tool,
        )

    def with_overrides(self, **overrides: Any) -> SyncConfig:
        """Return a copy with the given non-None fields replaced."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        if "local_path" in changes:
            changes["local_path"] = str(Path(changes["local_path"]).expanduser())
        for key in ("host_command", "merge_tool"):
            if key in changes:
                changes[key] = _as_command(changes[key], key)
        return replace(self, **changes)


def get_config_dir() -> Path:
    """Get the configuration directory for notesync.

    Returns:
        Path to ~/.notesync.
    """
    return Path.home() / ".notesync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from a JSON file.

    Args:
        path: Config file to read (defaults to get_config_file()).

    Returns:
        The decoded mapping, or an empty dict if the file does not exist.

    Raises:
        ConfigError: If the file cannot be read or is not a JSON object.
    """
    config_file = path or get_config_file()
    if not config_file.exists():
        return {}
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a JSON object")
    return data
