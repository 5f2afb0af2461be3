"""Conflict and config commands for the notesync CLI.

Commands:
- resolve: Stage a conflict copy and open the merge tool
- show-config: Print the effective configuration
"""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import click

from notesync.cli.config import build_sync_config, config_file_option, configure_logging
from notesync.core.config import ConfigError


@click.command()
@click.argument("conflict_copy", type=click.Path(dir_okay=False))
@click.argument("other_copy", type=click.Path(dir_okay=False))
@click.option("--merge-tool", default=None, help="Merge tool command, e.g. 'meld'.")
@config_file_option
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def resolve(
    conflict_copy: str,
    other_copy: str,
    merge_tool: str | None,
    config_file: Path | None,
    verbose: bool,
) -> None:
    """Resolve a conflict left by bisync.

    Renames CONFLICT_COPY (e.g. note.md.conflict1) back to its original name,
    opens the merge tool on it and OTHER_COPY, then deletes OTHER_COPY once
    the merge tool exits successfully.
    """
    from notesync.sync import ConflictResolver

    configure_logging(verbose)
    try:
        config = build_sync_config(config_file, merge_tool=merge_tool)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    resolver = ConflictResolver(merge_tool=config.merge_tool, host_command=config.host_command)
    result = resolver.resolve(conflict_copy, other_copy)
    if not result.success:
        click.echo(click.style(f"Error: {result.message}", fg="red"), err=True)
        sys.exit(1)
    click.echo(click.style(result.message, fg="green"))


@click.command("show-config")
@config_file_option
def show_config(config_file: Path | None) -> None:
    """Print the effective configuration."""
    try:
        config = build_sync_config(config_file)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"local_path:             {config.local_path}")
    click.echo(f"remote_path:            {config.remote_path}")
    click.echo(f"auto_resolve_conflicts: {config.auto_resolve_conflicts}")
    click.echo(f"max_lock_retries:       {config.max_lock_retries}")
    click.echo(f"rclone_binary:          {config.rclone_binary}")
    click.echo(f"host_command:           {shlex.join(config.host_command) or '(none)'}")
    click.echo(f"merge_tool:             {shlex.join(config.merge_tool)}")
