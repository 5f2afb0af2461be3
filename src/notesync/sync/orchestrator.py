"""Sync orchestrator: the state machine driving rclone runs.

This module provides:
- RunningSync: State of the one in-flight run
- SyncOrchestrator: Launches runs, classifies outcomes, retries and resolves

State machine:
    | From               | Trigger                  | To                          |
    |--------------------|--------------------------|-----------------------------|
    | IDLE / terminal    | run(direction)           | RUNNING                     |
    | RUNNING            | SUCCESS                  | SUCCEEDED                   |
    | RUNNING            | FATAL_ERROR, LaunchError | FAILED                      |
    | RUNNING            | LOCK_FILE_ERROR          | RETRYING_AFTER_LOCK_CLEANUP |
    | RETRYING_...       | cleanup ok               | RUNNING (same direction)    |
    | RETRYING_...       | cleanup failed, too many | FAILED                      |
    | RUNNING            | CONFLICT_DETECTED        | RESOLVING_CONFLICT          |
    | RESOLVING_CONFLICT | resolved, auto-resolve   | RUNNING (push)              |
    | RESOLVING_CONFLICT | resolved                 | SUCCEEDED                   |
    | RESOLVING_CONFLICT | failed                   | FAILED                      |
    | any active state   | cancel()                 | CANCELLED                   |

Runs execute on a worker thread so the caller stays responsive; only one
run can be active at a time and a second run() is rejected, not queued.
"""

from __future__ import annotations

import logging
import shlex
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from notesync.core.config import SyncConfig
from notesync.core.types import (
    ExitStatus,
    OrchestratorState,
    Outcome,
    OutcomeKind,
    SyncDirection,
    SyncReport,
)
from notesync.sync.buffer import OutputLineBuffer
from notesync.sync.classifier import classify
from notesync.sync.command import build_sync_command, wrap_host_command
from notesync.sync.conflict import ConflictResolver
from notesync.sync.process import ProcessHandle, ProcessRunner
from notesync.sync.types import (
    CompleteCallback,
    LaunchError,
    OutputStream,
    ProgressCallback,
    StateCallback,
)

logger = logging.getLogger(__name__)

SUMMARY_SUCCESS = "Sync completed successfully."
SUMMARY_CANCELLED = "Sync cancelled."


@dataclass
class RunningSync:
    """State of the in-flight run.

    Attributes:
        direction: Direction of the current attempt.
        config: Settings captured when the run started.
        lines: Complete output lines of every attempt, in arrival order.
        handle: Process currently owned by the run, if any.
        lock_retries: Consecutive stale-lock recoveries so far.
        attempts: Sync subprocesses launched so far.
        cancel_requested: Set by cancel().
    """

    direction: SyncDirection
    config: SyncConfig
    lines: list[str] = field(default_factory=list)
    handle: ProcessHandle | None = None
    lock_retries: int = 0
    attempts: int = 0
    cancel_requested: bool = False


class SyncOrchestrator:
    """Drives push, pull and bisync runs of rclone.

    Usage:
        orchestrator = SyncOrchestrator(SyncConfig("~/Notes", "gdrive:notes"))
        orchestrator.set_on_progress(lambda lines: print(lines[-1]))
        orchestrator.run(SyncDirection.BISYNC)
        report = orchestrator.wait()
        print(report.summary)
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        runner: ProcessRunner | None = None,
        resolver: ConflictResolver | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Settings for runs (can be set later with configure()).
            runner: Starts rclone and cleanup commands.
            resolver: Conflict resolver (built from the config if omitted).
        """
        self._config = config
        self._runner = runner or ProcessRunner()
        self._resolver = resolver

        self._state = OrchestratorState.IDLE
        self._lock = threading.RLock()
        self._current: RunningSync | None = None
        self._thread: threading.Thread | None = None
        self._last_report: SyncReport | None = None

        self._on_progress: ProgressCallback | None = None
        self._on_state_change: StateCallback | None = None
        self._on_complete: CompleteCallback | None = None

    @property
    def state(self) -> OrchestratorState:
        """Get current orchestrator state."""
        return self._state

    @property
    def config(self) -> SyncConfig | None:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._state.is_active

    @property
    def last_report(self) -> SyncReport | None:
        """Report of the last finished run."""
        return self._last_report

    def set_on_progress(self, callback: ProgressCallback) -> None:
        """Set callback receiving the full list of complete output lines."""
        self._on_progress = callback

    def set_on_state_change(self, callback: StateCallback) -> None:
        self._on_state_change = callback

    def set_on_complete(self, callback: CompleteCallback) -> None:
        """Set callback receiving the report, exactly once per run."""
        self._on_complete = callback

    def configure(self, config: SyncConfig) -> bool:
        """Replace the settings used by subsequent runs.

        Returns:
            False if a run is active (config left unchanged).
        """
        with self._lock:
            if self._state.is_active:
                logger.warning("Cannot change configuration while a sync is running")
                return False
            self._config = config
            return True

    def run(self, direction: SyncDirection) -> bool:
        """Start a sync run in the background.

        Args:
            direction: Which way to sync.

        Returns:
            True if the run started, False if it was rejected because a run
            is already active or no configuration is set.
        """
        with self._lock:
            if self._state.is_active:
                logger.warning("Sync already running, ignoring %s request", direction.value)
                return False
            if self._config is None:
                logger.warning("Sync requested before configuration")
                return False

            running = RunningSync(direction=direction, config=self._config)
            self._current = running
            self._state = OrchestratorState.RUNNING
            self._last_report = None
            self._thread = threading.Thread(
                target=self._run,
                args=(running,),
                name="SyncOrchestrator",
                daemon=True,
            )
            self._thread.start()
            logger.info("Sync started: %s", direction.label)
            return True

    def wait(self, timeout: float | None = None) -> SyncReport | None:
        """Wait for the current run to finish.

        Args:
            timeout: Maximum seconds to wait, None to wait forever.

        Returns:
            The report of the finished run, or None if it is still running.
        """
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                return None
        return self._last_report

    def cancel(self) -> bool:
        """Cancel the active run, killing its subprocess.

        Output received before the kill is kept in the report.

        Returns:
            True if a run was active, False otherwise.
        """
        with self._lock:
            running = self._current
            if running is None or not self._state.is_active:
                return False
            running.cancel_requested = True
            handle = running.handle

        logger.info("Sync cancel requested")
        if handle is not None:
            handle.kill()
        return True

    # =================================================================
    # Worker thread
    # =================================================================

    def _run(self, running: RunningSync) -> None:
        """Worker entry point: drive the run and publish exactly one report."""
        try:
            outcome, summary = self._drive(running)
        except Exception as e:
            logger.exception("Unexpected error during sync")
            outcome = Outcome.fatal(f"Unexpected error: {e}")
            summary = f"Sync failed: unexpected error: {e}"
        finally:
            self._release(running)

        report = SyncReport(
            direction=running.direction,
            outcome=outcome,
            summary=summary,
            lines=list(running.lines),
            attempts=running.attempts,
        )

        terminal = {
            OutcomeKind.SUCCESS: OrchestratorState.SUCCEEDED,
            OutcomeKind.CANCELLED: OrchestratorState.CANCELLED,
        }.get(outcome.kind, OrchestratorState.FAILED)

        with self._lock:
            self._last_report = report
            self._current = None
            self._state = terminal

        logger.info("Sync finished: %s", summary)
        self._safe_call(self._on_state_change, terminal)
        self._safe_call(self._on_complete, report)

    def _drive(self, running: RunningSync) -> tuple[Outcome, str]:
        """Run attempts until a terminal outcome is reached.

        Returns:
            Tuple of (final outcome, summary line).
        """
        config = running.config

        while True:
            if running.cancel_requested:
                return Outcome.cancelled(), SUMMARY_CANCELLED

            self._set_state(OrchestratorState.RUNNING)
            try:
                outcome = self._attempt(running)
            except LaunchError as e:
                logger.error("%s", e)
                return Outcome.fatal(str(e)), f"Sync failed: {e}"

            logger.info("Attempt %d (%s) finished: %r", running.attempts, running.direction.value, outcome)

            if outcome.kind == OutcomeKind.SUCCESS:
                return outcome, SUMMARY_SUCCESS

            if outcome.kind == OutcomeKind.CANCELLED:
                return outcome, SUMMARY_CANCELLED

            if outcome.kind == OutcomeKind.FATAL_ERROR:
                return outcome, f"Sync failed: {_first_line(outcome.message)}"

            if outcome.kind == OutcomeKind.LOCK_FILE_ERROR:
                if outcome.cleanup_command is None:
                    raise RuntimeError(f"Lock outcome without a cleanup command: {outcome!r}")
                if running.lock_retries >= config.max_lock_retries:
                    message = (
                        f"Lock file still present after {running.lock_retries} cleanup attempt(s)"
                    )
                    logger.error(message)
                    return Outcome.fatal(message), f"Sync failed: {message}"

                running.lock_retries += 1
                self._set_state(OrchestratorState.RETRYING_AFTER_LOCK_CLEANUP)
                logger.warning(
                    "Stale lock file, cleaning up (retry %d/%d)",
                    running.lock_retries,
                    config.max_lock_retries,
                )
                error = self._cleanup_lock(running, outcome.cleanup_command)
                if running.cancel_requested:
                    return Outcome.cancelled(), SUMMARY_CANCELLED
                if error is not None:
                    return Outcome.fatal(error), f"Sync failed: {error}"
                continue

            if outcome.kind == OutcomeKind.CONFLICT_DETECTED:
                if outcome.path_a is None or outcome.path_b is None:
                    raise RuntimeError(f"Conflict outcome without both paths: {outcome!r}")
                self._set_state(OrchestratorState.RESOLVING_CONFLICT)
                self._note(running, f"Conflict detected: {outcome.path_a} / {outcome.path_b}")

                resolver = self._resolver or ConflictResolver(
                    merge_tool=config.merge_tool,
                    runner=self._runner,
                    host_command=config.host_command,
                )
                result = resolver.resolve(outcome.path_a, outcome.path_b)
                self._note(running, result.message)

                if not result.success:
                    message = f"Conflict resolution failed: {result.message}"
                    return Outcome.fatal(message), f"Sync failed: {message}"
                if running.cancel_requested:
                    return Outcome.cancelled(), SUMMARY_CANCELLED

                if config.auto_resolve_conflicts:
                    logger.info("Pushing merged result to remote")
                    running.direction = SyncDirection.PUSH
                    running.lock_retries = 0
                    continue

                return Outcome.success(), f"Sync completed; conflict merged into {result.canonical_path}."

            raise RuntimeError(f"Unhandled outcome: {outcome!r}")

    def _attempt(self, running: RunningSync) -> Outcome:
        """Launch one rclone run, stream its output and classify the result.

        Raises:
            LaunchError: If rclone cannot be started.
        """
        config = running.config
        argv = wrap_host_command(build_sync_command(running.direction, config), config)

        handle = self._launch(running, argv)
        if handle is None:
            return Outcome.cancelled()
        running.attempts += 1

        status, stdout_text, stderr_text = self._stream(running, handle)
        return classify(
            running.direction,
            status,
            stdout_text,
            stderr_text,
            cancelled=running.cancel_requested,
        )

    def _cleanup_lock(self, running: RunningSync, command: str) -> str | None:
        """Run the lock-file delete command rclone suggested.

        Returns:
            None on success, an error message otherwise.
        """
        config = running.config
        try:
            argv = shlex.split(command)
        except ValueError as e:
            return f"Cannot parse lock cleanup command {command!r}: {e}"
        if argv and argv[0] == "rclone":
            argv[0] = config.rclone_binary

        self._note(running, f"Removing stale lock file: {command}")
        try:
            handle = self._launch(running, wrap_host_command(argv, config))
        except LaunchError as e:
            return f"Lock cleanup failed: {e}"
        if handle is None:
            return None

        status, _, _ = self._stream(running, handle)
        if running.cancel_requested:
            return None
        if not status.success:
            return f"Lock cleanup command failed ({status.describe()}): {command}"
        return None

    def _launch(self, running: RunningSync, argv: list[str]) -> ProcessHandle | None:
        """Launch a process owned by the run.

        Returns:
            The handle, or None if the run was cancelled before launching.
        """
        with self._lock:
            if running.cancel_requested:
                return None
            handle = self._runner.launch(argv, cwd=None)
            running.handle = handle
        return handle

    def _stream(self, running: RunningSync, handle: ProcessHandle) -> tuple[ExitStatus, str, str]:
        """Forward output to the line log until the process exits, then reap it.

        Each pipe is split into lines separately, so a partial stdout line
        is never glued to stderr text arriving in between. Completed lines
        join the shared log in arrival order.
        """
        parts: dict[OutputStream, list[str]] = {OutputStream.STDOUT: [], OutputStream.STDERR: []}
        buffers = {OutputStream.STDOUT: OutputLineBuffer(), OutputStream.STDERR: OutputLineBuffer()}
        try:
            for chunk in handle.chunks():
                parts[chunk.stream].append(chunk.text)
                completed = buffers[chunk.stream].feed(chunk.text)
                if completed:
                    running.lines.extend(completed)
                    self._emit_progress(running)
            status = handle.wait()
        finally:
            handle.close()
            with self._lock:
                running.handle = None

        tails = [line for buffer in buffers.values() for line in buffer.flush()]
        if tails:
            running.lines.extend(tails)
            self._emit_progress(running)
        return status, "".join(parts[OutputStream.STDOUT]), "".join(parts[OutputStream.STDERR])

    def _release(self, running: RunningSync) -> None:
        """Make sure no process outlives the run."""
        with self._lock:
            handle = running.handle
            running.handle = None
        if handle is not None:
            handle.close()

    def _note(self, running: RunningSync, text: str) -> None:
        """Add a status line of our own to the output log."""
        running.lines.append(text)
        self._emit_progress(running)

    def _emit_progress(self, running: RunningSync) -> None:
        self._safe_call(self._on_progress, list(running.lines))

    def _set_state(self, state: OrchestratorState) -> None:
        with self._lock:
            self._state = state
        self._safe_call(self._on_state_change, state)

    @staticmethod
    def _safe_call(callback: Callable[[Any], None] | None, value: Any) -> None:
        """Invoke a caller callback; its errors must not break the run."""
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Error in sync callback")


def _first_line(message: str | None) -> str:
    if not message:
        return "unknown error"
    for line in message.splitlines():
        if line.strip():
            return line.strip()
    return "unknown error"
