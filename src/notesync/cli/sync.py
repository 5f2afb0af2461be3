"""Sync commands for the notesync CLI.

Commands:
- push: Make the remote match the local vault
- pull: Make the local vault match the remote
- bisync: Reconcile changes on both sides
"""

from __future__ import annotations

import shlex
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from notesync.cli.config import build_sync_config, config_file_option, configure_logging
from notesync.core.config import FLATPAK_HOST_COMMAND, ConfigError, SyncConfig
from notesync.core.types import OutcomeKind, SyncDirection, SyncReport

if TYPE_CHECKING:
    from notesync.sync import SyncOrchestrator

EXIT_FAILED = 1
EXIT_CANCELLED = 130

WAIT_POLL_INTERVAL = 0.2


def sync_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by push, pull and bisync."""
    options = [
        config_file_option,
        click.option("--local", "local_path", default=None, help="Local vault directory."),
        click.option("--remote", "remote_path", default=None, help="rclone remote, e.g. gdrive:notes."),
        click.option(
            "--auto-resolve/--no-auto-resolve",
            "auto_resolve_conflicts",
            default=None,
            help="Push the merged file back after resolving a conflict.",
        ),
        click.option(
            "--max-retries",
            "max_lock_retries",
            type=click.IntRange(min=0),
            default=None,
            help="Stale lock cleanups before giving up.",
        ),
        click.option("--rclone", "rclone_binary", default=None, help="rclone executable."),
        click.option(
            "--host-command",
            default=None,
            help=f"Prefix to run commands outside a sandbox, e.g. '{shlex.join(FLATPAK_HOST_COMMAND)}'.",
        ),
        click.option("--merge-tool", default=None, help="Merge tool command, e.g. 'meld'."),
        click.option("--notify/--no-notify", default=False, help="Show a desktop notification when done."),
        click.option("--watch", "-w", is_flag=True, help="Keep running and sync after local changes."),
        click.option("--verbose", "-v", is_flag=True, help="Show debug logging."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


class ProgressPrinter:
    """Echoes output lines as the orchestrator reports them.

    The orchestrator always hands over the full list of lines; only the
    ones not printed yet are echoed.
    """

    def __init__(self) -> None:
        self._printed = 0
        self._lock = threading.Lock()

    def __call__(self, lines: list[str]) -> None:
        with self._lock:
            for line in lines[self._printed:]:
                click.echo(line)
            self._printed = len(lines)

    def reset(self) -> None:
        with self._lock:
            self._printed = 0


def print_report(report: SyncReport) -> None:
    """Print the summary line of a finished run."""
    colors = {
        OutcomeKind.SUCCESS: "green",
        OutcomeKind.CANCELLED: "yellow",
    }
    click.echo(click.style(report.summary, fg=colors.get(report.outcome.kind, "red")))


def wait_for_report(orchestrator: SyncOrchestrator) -> SyncReport:
    """Wait for the current run; Ctrl+C cancels it."""
    try:
        while True:
            report = orchestrator.wait(timeout=WAIT_POLL_INTERVAL)
            if report is not None:
                return report
    except KeyboardInterrupt:
        click.echo("\nCancelling sync...")
        orchestrator.cancel()
        report = orchestrator.wait()
        if report is None:
            raise RuntimeError("Sync finished without a report")
        return report


def exit_code_for(report: SyncReport) -> int:
    if report.outcome.kind == OutcomeKind.SUCCESS:
        return 0
    if report.outcome.kind == OutcomeKind.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def run_sync_command(direction: SyncDirection, **options: Any) -> None:
    """Shared body of push, pull and bisync."""
    from notesync.notifications import notify_report
    from notesync.sync import SyncOrchestrator, SyncWatcher

    configure_logging(options.pop("verbose"))
    notify: bool = options.pop("notify")
    watch: bool = options.pop("watch")
    config_file: Path | None = options.pop("config_file")

    try:
        config: SyncConfig = build_sync_config(config_file, **options)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    # pull may create the local directory
    if direction != SyncDirection.PULL and not Path(config.local_path).is_dir():
        click.echo(f"Error: local directory does not exist: {config.local_path}", err=True)
        sys.exit(EXIT_FAILED)

    orchestrator = SyncOrchestrator(config)
    printer = ProgressPrinter()
    orchestrator.set_on_progress(printer)

    def on_complete(report: SyncReport) -> None:
        if notify:
            notify_report(report)

    orchestrator.set_on_complete(on_complete)

    click.echo(f"Syncing {config.local_path} <-> {config.remote_path} ({direction.label})")
    orchestrator.run(direction)
    report = wait_for_report(orchestrator)
    print_report(report)

    if not watch or report.cancelled:
        sys.exit(exit_code_for(report))

    def trigger() -> None:
        if orchestrator.run(direction):
            click.echo(f"\nChange detected, syncing ({direction.label})...")

    def on_watch_complete(finished: SyncReport) -> None:
        on_complete(finished)
        print_report(finished)
        printer.reset()

    printer.reset()
    orchestrator.set_on_complete(on_watch_complete)

    click.echo("\nWatching for changes... (Ctrl+C to stop)\n")
    with SyncWatcher(Path(config.local_path), trigger):
        try:
            while True:
                time.sleep(1.0)
        except KeyboardInterrupt:
            click.echo("\nStopping...")
            if orchestrator.cancel():
                orchestrator.wait()


@click.command()
@sync_options
def push(**options: Any) -> None:
    """Make the remote match the local vault."""
    run_sync_command(SyncDirection.PUSH, **options)


@click.command()
@sync_options
def pull(**options: Any) -> None:
    """Make the local vault match the remote."""
    run_sync_command(SyncDirection.PULL, **options)


@click.command()
@sync_options
def bisync(**options: Any) -> None:
    """Reconcile changes on both sides.

    Conflicts are staged for the merge tool; with --auto-resolve the merged
    file is pushed back to the remote afterwards.
    """
    run_sync_command(SyncDirection.BISYNC, **options)
