"""Shared types for notesync.

This module defines the enums and value objects passed between the sync
components and the caller:
- SyncDirection: Which way a run moves files
- OrchestratorState: State machine states of the orchestrator
- OutcomeKind, Outcome: Classified result of one subprocess run
- ExitStatus: How a subprocess terminated
- SyncReport: Terminal notification of a whole run
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto


class SyncDirection(str, Enum):
    """Direction of a sync run."""

    PUSH = "push"  # local -> remote
    PULL = "pull"  # remote -> local
    BISYNC = "bisync"  # both ways

    @property
    def label(self) -> str:
        """Human-readable description used in summaries."""
        return {
            SyncDirection.PUSH: "local to remote",
            SyncDirection.PULL: "remote to local",
            SyncDirection.BISYNC: "bidirectional",
        }[self]


class OrchestratorState(IntEnum):
    """State of the sync orchestrator."""

    IDLE = auto()
    RUNNING = auto()
    RETRYING_AFTER_LOCK_CLEANUP = auto()
    RESOLVING_CONFLICT = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_active(self) -> bool:
        """True while a run owns the orchestrator."""
        return self in (
            OrchestratorState.RUNNING,
            OrchestratorState.RETRYING_AFTER_LOCK_CLEANUP,
            OrchestratorState.RESOLVING_CONFLICT,
        )

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrchestratorState.SUCCEEDED,
            OrchestratorState.FAILED,
            OrchestratorState.CANCELLED,
        )


class OutcomeKind(IntEnum):
    """Kind of outcome produced by classifying a finished subprocess."""

    SUCCESS = auto()
    LOCK_FILE_ERROR = auto()
    CONFLICT_DETECTED = auto()
    FATAL_ERROR = auto()
    CANCELLED = auto()


@dataclass(frozen=True)
class Outcome:
    """Classified result of one subprocess run.

    Only the fields belonging to the kind are set:
    - LOCK_FILE_ERROR: cleanup_command
    - CONFLICT_DETECTED: path_a (renamed conflict copy), path_b (incoming copy)
    - FATAL_ERROR: message

    Use the classmethod constructors rather than building instances directly.
    """

    kind: OutcomeKind
    cleanup_command: str | None = None
    path_a: str | None = None
    path_b: str | None = None
    message: str | None = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def lock_file_error(cls, cleanup_command: str) -> Outcome:
        return cls(OutcomeKind.LOCK_FILE_ERROR, cleanup_command=cleanup_command)

    @classmethod
    def conflict(cls, path_a: str, path_b: str) -> Outcome:
        return cls(OutcomeKind.CONFLICT_DETECTED, path_a=path_a, path_b=path_b)

    @classmethod
    def fatal(cls, message: str) -> Outcome:
        return cls(OutcomeKind.FATAL_ERROR, message=message)

    @classmethod
    def cancelled(cls) -> Outcome:
        return cls(OutcomeKind.CANCELLED)

    def __repr__(self) -> str:
        """Human-readable representation."""
        if self.kind == OutcomeKind.LOCK_FILE_ERROR:
            return f"Outcome(LOCK_FILE_ERROR, cleanup_command={self.cleanup_command!r})"
        if self.kind == OutcomeKind.CONFLICT_DETECTED:
            return f"Outcome(CONFLICT_DETECTED, path_a={self.path_a!r}, path_b={self.path_b!r})"
        if self.kind == OutcomeKind.FATAL_ERROR:
            return f"Outcome(FATAL_ERROR, message={self.message!r})"
        return f"Outcome({self.kind.name})"


@dataclass(frozen=True)
class ExitStatus:
    """How a subprocess terminated.

    Attributes:
        returncode: Exit code, or None if the process was killed by a signal.
        signal: Number of the terminating signal, if any.
    """

    returncode: int | None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        """Build from a Popen return code (negative means killed by signal)."""
        if returncode < 0:
            return cls(returncode=None, signal=-returncode)
        return cls(returncode=returncode)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def killed(self) -> bool:
        return self.signal is not None

    def describe(self) -> str:
        """Describe the status for error messages."""
        if self.signal is not None:
            try:
                name = signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"killed by signal {name}"
        return f"exit code {self.returncode}"


@dataclass
class SyncReport:
    """Terminal notification of a sync run.

    Attributes:
        direction: Direction of the last attempt (PUSH after an auto-push).
        outcome: Final outcome of the run.
        summary: One human-readable summary line.
        lines: Complete output lines of every attempt, in order.
        attempts: Number of sync subprocesses launched.
    """

    direction: SyncDirection
    outcome: Outcome
    summary: str
    lines: list[str] = field(default_factory=list)
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome.kind == OutcomeKind.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.outcome.kind == OutcomeKind.CANCELLED
