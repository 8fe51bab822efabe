"""Watched folders, their activity log, and the watch service."""

from .folders import ActivityLog, WatchedFolderStore
from .service import (
    EVENT_NAMES,
    CycleReport,
    WatchEvent,
    WatchService,
    watch_folder_id,
    watch_session_id,
)

__all__ = [
    "ActivityLog",
    "CycleReport",
    "EVENT_NAMES",
    "WatchEvent",
    "WatchService",
    "WatchedFolderStore",
    "watch_folder_id",
    "watch_session_id",
]
