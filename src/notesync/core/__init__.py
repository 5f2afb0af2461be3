"""Core module - Shared config and types."""

from notesync.core.config import (
    DEFAULT_LOCAL_PATH,
    DEFAULT_REMOTE_PATH,
    FLATPAK_HOST_COMMAND,
    ConfigError,
    SyncConfig,
    get_config_dir,
    get_config_file,
    load_config,
)
from notesync.core.types import (
    ExitStatus,
    OrchestratorState,
    Outcome,
    OutcomeKind,
    SyncDirection,
    SyncReport,
)

__all__ = [
    # Config
    "DEFAULT_LOCAL_PATH",
    "DEFAULT_REMOTE_PATH",
    "FLATPAK_HOST_COMMAND",
    "ConfigError",
    "SyncConfig",
    "get_config_dir",
    "get_config_file",
    "load_config",
    # Types
    "ExitStatus",
    "OrchestratorState",
    "Outcome",
    "OutcomeKind",
    "SyncDirection",
    "SyncReport",
]
