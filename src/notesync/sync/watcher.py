"""Watch mode: run a sync after the vault has been edited.

This module provides:
- should_ignore: Paths whose changes never trigger a sync
- Debouncer: Collapses a burst of changes into one trigger
- VaultEventHandler: watchdog handler feeding the debouncer
- SyncWatcher: Observer lifecycle around the above

An editor saving a note usually produces several events (temp file,
rename, modify). The trigger fires once the vault has been quiet for
sync_delay_s seconds.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from notesync.sync.command import APP_METADATA_DIR, VCS_DIR

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

DEFAULT_SYNC_DELAY_S = 3.0
OBSERVER_JOIN_TIMEOUT = 5.0

IGNORED_DIRS = frozenset({APP_METADATA_DIR, VCS_DIR})
# Swap, backup and temp files written by editors
IGNORED_SUFFIXES = (".tmp", ".swp", ".swo", "~")

# Opened/closed events carry no change
CHANGE_EVENTS = frozenset({EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED})


def should_ignore(path: Path, base_path: Path) -> bool:
    """Check if a change to path must not trigger a sync.

    Args:
        path: Absolute path of the changed file.
        base_path: Watched directory.

    Returns:
        True for paths outside base_path, inside the directories rclone is
        told to exclude, or named like editor temp files.
    """
    try:
        parts = path.relative_to(base_path).parts
    except ValueError:
        return True
    return bool(IGNORED_DIRS.intersection(parts)) or path.name.endswith(IGNORED_SUFFIXES)


class Debouncer:
    """Calls a function once no change has been reported for `delay` seconds."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._changed: set[str] = set()

    @property
    def pending(self) -> set[str]:
        """Paths reported since the last call."""
        with self._lock:
            return set(self._changed)

    def poke(self, path: str) -> None:
        """Record a change and restart the quiet period."""
        with self._lock:
            self._changed.add(path)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._expire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop pending changes without calling back."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._changed.clear()

    def _expire(self) -> None:
        with self._lock:
            changed, self._changed = self._changed, set()
            self._timer = None
        if not changed:
            return

        logger.info("%d local change(s) settled, triggering sync", len(changed))
        logger.debug("Changed: %s", sorted(changed))
        try:
            self._callback()
        except Exception:
            logger.exception("Sync trigger failed")


class VaultEventHandler(FileSystemEventHandler):
    """Forwards relevant file changes under the vault to a Debouncer."""

    def __init__(self, base_path: Path, debouncer: Debouncer) -> None:
        super().__init__()
        self._base_path = base_path
        self._debouncer = debouncer

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in CHANGE_EVENTS:
            return
        for path in self._event_paths(event):
            if not should_ignore(path, self._base_path):
                self._debouncer.poke(str(path))

    @staticmethod
    def _event_paths(event: FileSystemEvent) -> Iterator[Path]:
        # A move touches both its source and its destination
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            yield Path(raw)


class SyncWatcher:
    """Watches a vault and calls on_trigger after changes settle.

    Usage:
        with SyncWatcher(Path("~/Notes").expanduser(), lambda: orchestrator.run(direction)):
            ...
    """

    def __init__(
        self,
        watch_path: Path,
        on_trigger: Callable[[], None],
        sync_delay_s: float = DEFAULT_SYNC_DELAY_S,
    ) -> None:
        """Initialize the watcher.

        Args:
            watch_path: Vault directory.
            on_trigger: Called once per settled burst of changes.
            sync_delay_s: Quiet time required before triggering.

        Raises:
            ValueError: If watch_path is not a directory.
        """
        resolved = Path(watch_path).expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._watch_path = resolved
        self._debouncer = Debouncer(sync_delay_s, on_trigger)
        self._handler = VaultEventHandler(resolved, self._debouncer)
        self._observer: BaseObserver | None = None

    @property
    def watch_path(self) -> Path:
        return self._watch_path

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start the observer thread. Does nothing if already running."""
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self._handler, str(self._watch_path), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self._watch_path)

    def stop(self) -> None:
        """Stop the observer and drop changes not yet synced."""
        observer, self._observer = self._observer, None
        if observer is None:
            return
        self._debouncer.cancel()
        observer.stop()
        observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
        logger.info("Stopped watching %s", self._watch_path)

    def __enter__(self) -> SyncWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
