"""Pattern matching on rclone output.

All finders return None when nothing matched, never an empty string, so
callers cannot mistake a failed extraction for a real value.
"""

from __future__ import annotations

import re

from notesync.sync.types import ConflictPaths

# Printed by rclone when a stale lock blocks a run, e.g.
#   "... to remove it run: rclone deletefile /home/me/.cache/rclone/bisync/x.lck"
LOCK_COMMAND_RE = re.compile(r"""rclone[ \t]+deletefile[ \t]+(?:"[^"\r\n]*"|'[^'\r\n]*'|[^\s"']+)""")

# Either line means bisync found the same file changed on both sides
CONFLICT_MARKERS: tuple[str, ...] = (
    "Renaming Path1 copy",
    "New or changed in both paths",
)

RENAMED_COPY_RE = re.compile(r"Renaming Path1 copy[ \t]*-[ \t]*(?P<path>[^\r\n]*\S)")
QUEUED_COPY_RE = re.compile(r"Queue copy to Path1[ \t]*-[ \t]*(?P<path>[^\r\n]*\S)")


def find_lock_cleanup_command(text: str) -> str | None:
    """Find the lock-file delete command rclone suggests.

    Returns:
        The exact command substring, or None.
    """
    match = LOCK_COMMAND_RE.search(text)
    return match.group(0) if match else None


def has_conflict_marker(text: str) -> bool:
    """Check whether bisync output reports a conflict."""
    return any(marker in text for marker in CONFLICT_MARKERS)


def find_renamed_copy(text: str) -> str | None:
    """Path of the local copy bisync renamed with a conflict suffix."""
    match = RENAMED_COPY_RE.search(text)
    return match.group("path").strip() if match else None


def find_queued_copy(text: str) -> str | None:
    """Path of the incoming copy bisync queued to the local side."""
    match = QUEUED_COPY_RE.search(text)
    return match.group("path").strip() if match else None


def find_conflict_paths(text: str) -> ConflictPaths | None:
    """Extract both conflict paths.

    Returns:
        ConflictPaths if both paths were found, None if either is missing.
    """
    path_a = find_renamed_copy(text)
    path_b = find_queued_copy(text)
    if not path_a or not path_b:
        return None
    return ConflictPaths(path_a=path_a, path_b=path_b)
