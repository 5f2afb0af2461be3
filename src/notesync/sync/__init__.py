"""Sync orchestration around rclone.

Architecture:
    SyncOrchestrator → build_sync_command → ProcessRunner → OutputLineBuffer
                     → classify → ConflictResolver / lock cleanup / report

Components:
- **ProcessRunner / ProcessHandle**: Start rclone, stream interleaved output, kill and reap
- **OutputLineBuffer**: Turns arbitrary chunks into complete lines for display
- **build_sync_command**: Argument vector for push, pull and bisync
- **classify**: Maps exit status and output to an Outcome
- **ConflictResolver**: Stages a bisync conflict for the merge tool
- **SyncOrchestrator**: State machine tying the above together
- **SyncWatcher**: Triggers syncs after local changes settle
"""

from notesync.sync.buffer import OutputLineBuffer
from notesync.sync.classifier import CONFLICT_EXTRACTION_FAILED, classify
from notesync.sync.command import (
    APP_METADATA_DIR,
    EXCLUDE_PATTERNS,
    SYNC_FLAGS,
    VCS_DIR,
    build_sync_command,
    wrap_host_command,
)
from notesync.sync.conflict import ConflictResolver, strip_conflict_suffix
from notesync.sync.orchestrator import RunningSync, SyncOrchestrator
from notesync.sync.patterns import (
    find_conflict_paths,
    find_lock_cleanup_command,
    has_conflict_marker,
)
from notesync.sync.process import ProcessHandle, ProcessRunner
from notesync.sync.types import (
    CompleteCallback,
    ConflictPaths,
    LaunchError,
    OutputChunk,
    OutputStream,
    ProgressCallback,
    ResolutionResult,
    StateCallback,
    SyncError,
)
from notesync.sync.watcher import SyncWatcher

__all__ = [
    "APP_METADATA_DIR",
    "CONFLICT_EXTRACTION_FAILED",
    "EXCLUDE_PATTERNS",
    "SYNC_FLAGS",
    "VCS_DIR",
    "CompleteCallback",
    "ConflictPaths",
    "ConflictResolver",
    "LaunchError",
    "OutputChunk",
    "OutputLineBuffer",
    "OutputStream",
    "ProcessHandle",
    "ProcessRunner",
    "ProgressCallback",
    "ResolutionResult",
    "RunningSync",
    "StateCallback",
    "SyncError",
    "SyncOrchestrator",
    "SyncWatcher",
    "build_sync_command",
    "classify",
    "find_conflict_paths",
    "find_lock_cleanup_command",
    "has_conflict_marker",
    "strip_conflict_suffix",
    "wrap_host_command",
]
