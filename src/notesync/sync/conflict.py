"""Conflict staging for manual merging.

This module provides:
- strip_conflict_suffix: Canonical name of a conflict copy
- ConflictResolver: Renames the conflict copy back, runs the merge tool,
  removes the incoming copy

The resolver never merges content itself. Any failure leaves both files on
disk.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from notesync.core.config import DEFAULT_MERGE_TOOL
from notesync.sync.process import ProcessRunner
from notesync.sync.types import LaunchError, ResolutionResult

logger = logging.getLogger(__name__)

# rclone bisync names conflict copies "file.md.conflict1" or "file.md..path1"
CONFLICT_SUFFIX_RE = re.compile(r"(?:\.conflict\d*|\.\.path[12])$")


def strip_conflict_suffix(path: str) -> str | None:
    """Remove the conflict suffix from a path.

    Args:
        path: Path of a conflict copy.

    Returns:
        The path without its suffix, or None if it has no conflict suffix.
    """
    stripped = CONFLICT_SUFFIX_RE.sub("", path)
    if stripped == path or not os.path.basename(stripped):
        return None
    return stripped


class ConflictResolver:
    """Stages a bisync conflict for a human to merge.

    Usage:
        resolver = ConflictResolver(merge_tool=("meld",))
        result = resolver.resolve("notes/a.md.conflict1", "notes/a.md.conflict2")
    """

    def __init__(
        self,
        merge_tool: tuple[str, ...] | list[str] = DEFAULT_MERGE_TOOL,
        runner: ProcessRunner | None = None,
        host_command: tuple[str, ...] | list[str] = (),
    ) -> None:
        """Initialize the resolver.

        Args:
            merge_tool: Merge tool command; the two paths are appended.
            runner: Runner used to start the merge tool.
            host_command: Prefix to run the merge tool outside a sandbox.
        """
        self._merge_tool = list(merge_tool)
        self._runner = runner or ProcessRunner()
        self._host_command = list(host_command)

    def resolve(self, path_a: str, path_b: str) -> ResolutionResult:
        """Stage a conflict and hand it to the merge tool.

        Steps:
        1. Rename path_a (the conflict copy) to its canonical name.
        2. Run the merge tool on (canonical, path_b) and wait for it.
        3. Delete path_b, unless it is the canonical file itself.

        Args:
            path_a: Conflict copy carrying a conflict suffix.
            path_b: The other candidate version.

        Returns:
            ResolutionResult; on failure no file has been deleted.
        """
        canonical = strip_conflict_suffix(path_a)
        if canonical is None:
            return ResolutionResult(False, f"No conflict suffix in {path_a}")

        source = Path(path_a)
        target = Path(canonical)
        if not source.exists():
            return ResolutionResult(False, f"Conflict copy not found: {path_a}")
        if target.exists():
            return ResolutionResult(False, f"Cannot rename {path_a}: {canonical} already exists")

        try:
            os.rename(source, target)
        except OSError as e:
            logger.error("Rename of %s to %s failed: %s", path_a, canonical, e)
            return ResolutionResult(False, f"Cannot rename {path_a} to {canonical}: {e}")
        logger.info("Renamed %s to %s", path_a, canonical)

        argv = [*self._host_command, *self._merge_tool, canonical, path_b]
        try:
            status = self._runner.run_interactive(argv)
        except LaunchError as e:
            logger.error("Merge tool could not be started: %s", e)
            return ResolutionResult(False, str(e), canonical_path=canonical)
        if not status.success:
            return ResolutionResult(
                False,
                f"Merge tool {self._merge_tool[0]} failed ({status.describe()}); "
                f"kept {canonical} and {path_b}",
                canonical_path=canonical,
            )

        incoming = Path(path_b)
        if _same_path(incoming, target):
            # Incoming copy is the merge result
            return ResolutionResult(True, f"Merged into {canonical}", canonical_path=canonical)

        try:
            incoming.unlink()
        except FileNotFoundError:
            logger.warning("Incoming copy %s vanished before cleanup", path_b)
        except OSError as e:
            logger.error("Delete of %s failed: %s", path_b, e)
            return ResolutionResult(False, f"Merged, but cannot delete {path_b}: {e}", canonical_path=canonical)

        logger.info("Conflict on %s resolved", canonical)
        return ResolutionResult(True, f"Merged into {canonical}", canonical_path=canonical)


def _same_path(a: Path, b: Path) -> bool:
    return os.path.abspath(a) == os.path.abspath(b)
