"""Command-line interface for notesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- push: Make the remote match the local vault
- pull: Make the local vault match the remote
- bisync: Reconcile changes on both sides
- resolve: Stage a conflict copy and open the merge tool
- show-config: Print the effective configuration
"""

from __future__ import annotations

import click

from notesync.cli.config import build_sync_config, configure_logging
from notesync.cli.resolve import resolve, show_config
from notesync.cli.sync import bisync, pull, push


@click.group()
@click.version_option(package_name="notesync")
def cli() -> None:
    """notesync - Sync a notes vault with a cloud remote through rclone."""


# Sync commands
cli.add_command(push)
cli.add_command(pull)
cli.add_command(bisync)

# Conflict and config commands
cli.add_command(resolve)
cli.add_command(show_config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "build_sync_config",
    "cli",
    "configure_logging",
    "main",
]
