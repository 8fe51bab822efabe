"""Watched-folder configuration and the watcher's activity log."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from jdorg.state.errors import InvalidInputError
from jdorg.state.models import Confidence, WatchAction, WatchActivity, WatchedFolder, utcnow
from jdorg.state.store import DataStore, validated

LOGGER = logging.getLogger(__name__)

FOLDERS_TABLE = "watched_folders"
ACTIVITY_TABLE = "watch_activity"
_FOLDER_FIELDS = {
    "name",
    "path",
    "is_active",
    "auto_organize",
    "confidence_threshold",
    "include_subdirs",
    "file_types",
    "notify_on_organize",
}
_RESOLVED_ACTIONS = (WatchAction.AUTO_ORGANIZED, WatchAction.SKIPPED, WatchAction.ERROR)


def _normalize_path(path: Path | str) -> str:
    return str(Path(path).expanduser().absolute())


def _threshold(value: Any) -> Confidence:
    try:
        level = value if isinstance(value, Confidence) else Confidence(str(value).lower())
    except ValueError as exc:
        raise InvalidInputError(
            f"Invalid confidence threshold {value!r}; expected low, medium, or high."
        ) from exc
    if level is Confidence.NONE:
        raise InvalidInputError("Confidence threshold must be low, medium, or high.")
    return level


class WatchedFolderStore:
    """CRUD for watched-folder configuration and its counters."""

    def __init__(self, store: DataStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def create(
        self,
        *,
        path: Path | str,
        name: str | None = None,
        is_active: bool = True,
        auto_organize: bool = False,
        confidence_threshold: Confidence | str = Confidence.MEDIUM,
        include_subdirs: bool = False,
        file_types: Iterable[str] = (),
        notify_on_organize: bool = True,
    ) -> WatchedFolder:
        """Register a folder.

        Raises:
            InvalidInputError: If the path is already watched or values are invalid.
        """
        normalized = _normalize_path(path)
        if self.get_by_path(normalized) is not None:
            raise InvalidInputError(f"{normalized} is already being watched.")
        now = self._clock()
        folder = validated(
            WatchedFolder,
            {
                "name": (name or Path(normalized).name or normalized).strip(),
                "path": normalized,
                "is_active": is_active,
                "auto_organize": auto_organize,
                "confidence_threshold": _threshold(confidence_threshold),
                "include_subdirs": include_subdirs,
                "file_types": [item.strip() for item in file_types if item.strip()],
                "notify_on_organize": notify_on_organize,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self._store.insert(FOLDERS_TABLE, folder)

    def get(self, folder_id: int) -> Optional[WatchedFolder]:
        return self._store.get(FOLDERS_TABLE, folder_id)  # type: ignore[return-value]

    def get_by_path(self, path: Path | str) -> Optional[WatchedFolder]:
        normalized = _normalize_path(path)
        rows = self._store.select(FOLDERS_TABLE, lambda row: row.path == normalized)
        return rows[0] if rows else None

    def list_folders(self, *, active_only: bool = False) -> list[WatchedFolder]:
        rows = self._store.select(FOLDERS_TABLE, lambda row: not active_only or row.is_active)
        return sorted(rows, key=lambda row: (row.name.lower(), row.id))

    def update(self, folder_id: int, **changes: Any) -> WatchedFolder:
        """Apply partial configuration changes.

        Raises:
            RecordNotFoundError: If the folder does not exist.
            InvalidInputError: On unknown fields or invalid values.
        """
        unknown = set(changes) - _FOLDER_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown watched-folder fields: {', '.join(sorted(unknown))}.")
        values = dict(changes)
        if "confidence_threshold" in values:
            values["confidence_threshold"] = _threshold(values["confidence_threshold"])
        if "path" in values:
            values["path"] = _normalize_path(values["path"])
        if "file_types" in values:
            values["file_types"] = [item.strip() for item in values["file_types"] if item.strip()]
        values["updated_at"] = self._clock()
        return self._store.update(FOLDERS_TABLE, folder_id, values)  # type: ignore[return-value]

    def delete(self, folder_id: int) -> bool:
        return self._store.delete(FOLDERS_TABLE, folder_id)

    def increment_stats(self, folder_id: int, *, organized: bool = False) -> None:
        """Count a processed file, and an organized one when ``organized``."""
        with self._store.transaction():
            self._store.increment(FOLDERS_TABLE, folder_id, "files_processed")
            if organized:
                self._store.increment(FOLDERS_TABLE, folder_id, "files_organized")

    def mark_organized(self, folder_id: int) -> None:
        """Count a file organized after it was already counted as processed."""
        self._store.increment(FOLDERS_TABLE, folder_id, "files_organized")

    def touch(self, folder_id: int) -> None:
        """Stamp ``last_checked_at`` with the current time."""
        self._store.update(FOLDERS_TABLE, folder_id, {"last_checked_at": self._clock()})


class ActivityLog:
    """Append-only log of watcher actions, one row per action."""

    def __init__(self, store: DataStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def log(
        self,
        *,
        watched_folder_id: int,
        path: Path | str,
        action: WatchAction,
        file_extension: str = "",
        file_type: str = "other",
        file_size: int = 0,
        matched_rule_id: int | None = None,
        target_folder: str | None = None,
        error_message: str | None = None,
    ) -> WatchActivity:
        row = validated(
            WatchActivity,
            {
                "watched_folder_id": watched_folder_id,
                "filename": Path(path).name,
                "path": str(path),
                "file_extension": file_extension,
                "file_type": file_type,
                "file_size": file_size,
                "action": action,
                "matched_rule_id": matched_rule_id,
                "target_folder": target_folder,
                "error_message": error_message,
                "created_at": self._clock(),
            },
        )
        return self._store.insert(ACTIVITY_TABLE, row)

    def get(self, activity_id: int) -> Optional[WatchActivity]:
        return self._store.get(ACTIVITY_TABLE, activity_id)  # type: ignore[return-value]

    def list_for_folder(
        self,
        folder_id: int,
        *,
        action: WatchAction | None = None,
        limit: int = 100,
    ) -> list[WatchActivity]:
        """Return a folder's activity newest first."""
        rows = self._store.select(
            ACTIVITY_TABLE,
            lambda row: row.watched_folder_id == folder_id
            and (action is None or row.action is action),
        )
        return self._newest_first(rows)[: max(1, limit)]

    def recent(
        self,
        *,
        action: WatchAction | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[WatchActivity]:
        """Return activity across folders newest first."""
        rows = self._store.select(
            ACTIVITY_TABLE,
            lambda row: (action is None or row.action is action)
            and (since is None or row.created_at >= since),
        )
        return self._newest_first(rows)[: max(1, limit)]

    def advance(
        self,
        activity_id: int,
        action: WatchAction,
        *,
        matched_rule_id: int | None = None,
        target_folder: str | None = None,
        error_message: str | None = None,
    ) -> WatchActivity:
        """Move a ``queued`` row to its resolved action in place.

        Raises:
            RecordNotFoundError: If the row does not exist.
            InvalidInputError: If the row is not queued or the action is not a resolution.
        """
        if action not in _RESOLVED_ACTIONS:
            raise InvalidInputError(f"Queued activity cannot move to {action.value}.")
        changes: dict[str, Any] = {"action": action}
        if matched_rule_id is not None:
            changes["matched_rule_id"] = matched_rule_id
        if target_folder is not None:
            changes["target_folder"] = target_folder
        if error_message is not None:
            changes["error_message"] = error_message
        updated = self._store.update(
            ACTIVITY_TABLE, activity_id, changes, expected={"action": WatchAction.QUEUED}
        )
        if updated is None:
            raise InvalidInputError(f"Activity {activity_id} is not queued.")
        return updated  # type: ignore[return-value]

    def find_queued(self, folder_id: int, path: Path | str) -> Optional[WatchActivity]:
        """Return the unresolved queued row for a file, if any."""
        wanted = str(path)
        rows = self._store.select(
            ACTIVITY_TABLE,
            lambda row: row.watched_folder_id == folder_id
            and row.action is WatchAction.QUEUED
            and row.path == wanted,
        )
        return self._newest_first(rows)[0] if rows else None

    def queued_counts(self) -> dict[int, int]:
        """Return the number of queued rows per watched folder."""
        counts: dict[int, int] = {}
        for row in self._store.select(ACTIVITY_TABLE, lambda row: row.action is WatchAction.QUEUED):
            counts[row.watched_folder_id] = counts.get(row.watched_folder_id, 0) + 1
        return counts

    def count(self, folder_id: int | None = None) -> int:
        if folder_id is None:
            return self._store.count(ACTIVITY_TABLE)
        return self._store.count(ACTIVITY_TABLE, lambda row: row.watched_folder_id == folder_id)

    def purge(self, days: int) -> int:
        """Delete rows older than ``days`` (floored at one day)."""
        cutoff = self._clock() - timedelta(days=max(1, int(days)))
        return self._store.delete_where(ACTIVITY_TABLE, lambda row: row.created_at < cutoff)

    def clear_folder(self, folder_id: int) -> int:
        return self._store.delete_where(
            ACTIVITY_TABLE, lambda row: row.watched_folder_id == folder_id
        )

    @staticmethod
    def _newest_first(rows: list[WatchActivity]) -> list[WatchActivity]:
        return sorted(rows, key=lambda row: (row.created_at, row.id), reverse=True)


__all__ = ["WatchedFolderStore", "ActivityLog"]
