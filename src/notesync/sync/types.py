"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, LaunchError: Exception classes
- OutputStream, OutputChunk: Raw subprocess output
- ConflictPaths: Paths extracted from a conflict notice
- ResolutionResult: Result of a conflict resolution
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from notesync.core.types import OrchestratorState, SyncReport


class SyncError(Exception):
    """Base exception for sync errors."""


class LaunchError(SyncError):
    """A subprocess could not be started.

    Attributes:
        argv: The command that failed to start.
    """

    def __init__(self, argv: list[str], reason: str) -> None:
        self.argv = argv
        self.reason = reason
        super().__init__(f"Failed to start {argv[0] if argv else '<empty command>'}: {reason}")


class OutputStream(str, Enum):
    """Which pipe a chunk of output came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputChunk:
    """A piece of raw output, with arbitrary boundaries."""

    stream: OutputStream
    text: str


@dataclass(frozen=True)
class ConflictPaths:
    """Paths named by a bisync conflict notice.

    Attributes:
        path_a: The copy rclone renamed with a conflict suffix.
        path_b: The incoming copy queued to the local side.
    """

    path_a: str
    path_b: str


@dataclass
class ResolutionResult:
    """Result of staging a conflict for manual merging."""

    success: bool
    message: str
    canonical_path: str | None = None


# Type aliases for orchestrator callbacks
ProgressCallback = Callable[[list[str]], None]
StateCallback = Callable[[OrchestratorState], None]
CompleteCallback = Callable[[SyncReport], None]
