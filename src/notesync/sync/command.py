"""Argument vectors for rclone.

This module provides:
- build_sync_command: Argument vector for a push, pull or bisync run
- wrap_host_command: Prefix a command with the host indirection from config
- EXCLUDE_PATTERNS / SYNC_FLAGS: Fixed flags appended to every run
"""

from __future__ import annotations

from notesync.core.config import SyncConfig
from notesync.core.types import SyncDirection

# Application metadata directory of the vault
APP_METADATA_DIR = ".obsidian"
VCS_DIR = ".git"

EXCLUDE_PATTERNS: tuple[str, ...] = (
    f"{APP_METADATA_DIR}/**",
    f"{VCS_DIR}/**",
)

# Progress without an interactive terminal or ANSI colors
SYNC_FLAGS: tuple[str, ...] = (
    "--progress",
    "--stats-one-line",
    "--color",
    "NEVER",
)


def _exclude_flags() -> list[str]:
    flags: list[str] = []
    for pattern in EXCLUDE_PATTERNS:
        flags.extend(["--exclude", pattern])
    return flags


def build_sync_command(direction: SyncDirection, config: SyncConfig) -> list[str]:
    """Build the rclone argument vector for a run.

    Pure function: the same direction and config always give the same
    vector. Paths are passed through verbatim.

    Args:
        direction: Which way to sync.
        config: Paths and rclone binary.

    Returns:
        The argument vector, starting with the rclone binary.
    """
    if direction == SyncDirection.PUSH:
        subcommand, source, destination = "sync", config.local_path, config.remote_path
    elif direction == SyncDirection.PULL:
        subcommand, source, destination = "sync", config.remote_path, config.local_path
    elif direction == SyncDirection.BISYNC:
        subcommand, source, destination = "bisync", config.local_path, config.remote_path
    else:
        raise ValueError(f"Unknown sync direction: {direction!r}")

    return [
        config.rclone_binary,
        subcommand,
        source,
        destination,
        *_exclude_flags(),
        *SYNC_FLAGS,
    ]


def wrap_host_command(argv: list[str], config: SyncConfig) -> list[str]:
    """Prefix a command with the host indirection, if one is configured.

    Used when running inside a sandbox (e.g. Flatpak) where rclone lives on
    the host.
    """
    return [*config.host_command, *argv]
