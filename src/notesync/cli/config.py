"""Configuration utilities for the notesync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click

from notesync.core.config import SyncConfig, get_config_file, load_config

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    """Route notesync log records to stderr.

    Args:
        verbose: Show debug records instead of warnings and errors only.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    notesync_logger = logging.getLogger("notesync")
    for existing in notesync_logger.handlers[:]:
        notesync_logger.removeHandler(existing)
    notesync_logger.addHandler(handler)
    notesync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    notesync_logger.propagate = False


def build_sync_config(config_file: Path | None, **overrides: Any) -> SyncConfig:
    """Build the effective config: defaults, then the config file, then CLI options.

    Args:
        config_file: Config file to read (defaults to ~/.notesync/config.json).
        **overrides: CLI option values; None means "not given".

    Raises:
        ConfigError: If the file or a value is invalid.
    """
    return SyncConfig.from_mapping(load_config(config_file)).with_overrides(**overrides)


def config_file_option(func: Any) -> Any:
    """Add the --config option to a command."""
    return click.option(
        "--config",
        "config_file",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help=f"Config file (default: {get_config_file()}).",
    )(func)
