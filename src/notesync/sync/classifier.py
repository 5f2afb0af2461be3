"""Classification of finished rclone runs.

Rules, first match wins:
    | Condition                                        | Outcome           |
    |--------------------------------------------------|-------------------|
    | Run cancelled by the caller                      | CANCELLED         |
    | Failed exit, stderr has a lock delete command    | LOCK_FILE_ERROR   |
    | Failed exit                                      | FATAL_ERROR       |
    | Bisync, stdout has a conflict marker, both paths | CONFLICT_DETECTED |
    | Bisync, stdout has a conflict marker, paths lost | FATAL_ERROR       |
    | Anything else                                    | SUCCESS           |
"""

from __future__ import annotations

import logging

from notesync.core.types import ExitStatus, Outcome, SyncDirection
from notesync.sync.patterns import (
    find_conflict_paths,
    find_lock_cleanup_command,
    has_conflict_marker,
)

logger = logging.getLogger(__name__)

CONFLICT_EXTRACTION_FAILED = "conflict detected but paths not extracted"


def classify(
    direction: SyncDirection,
    exit_status: ExitStatus,
    stdout_text: str,
    stderr_text: str,
    cancelled: bool = False,
) -> Outcome:
    """Classify the result of a finished sync subprocess.

    Args:
        direction: Direction of the run.
        exit_status: How the process terminated.
        stdout_text: Everything the process wrote to stdout.
        stderr_text: Everything the process wrote to stderr.
        cancelled: Whether the caller cancelled the run.

    Returns:
        The outcome driving the orchestrator's next transition.
    """
    if cancelled:
        return Outcome.cancelled()

    if not exit_status.success:
        command = find_lock_cleanup_command(stderr_text)
        if command is not None:
            logger.debug("Stale lock detected, cleanup command: %s", command)
            return Outcome.lock_file_error(command)

        message = stderr_text.strip() or f"rclone failed ({exit_status.describe()})"
        return Outcome.fatal(message)

    if direction == SyncDirection.BISYNC and has_conflict_marker(stdout_text):
        paths = find_conflict_paths(stdout_text)
        if paths is None:
            logger.warning("Conflict marker found but conflict paths could not be extracted")
            return Outcome.fatal(CONFLICT_EXTRACTION_FAILED)
        logger.debug("Conflict detected: %s / %s", paths.path_a, paths.path_b)
        return Outcome.conflict(paths.path_a, paths.path_b)

    return Outcome.success()
