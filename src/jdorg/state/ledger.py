"""History ledger of executed organize operations."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .errors import InvalidInputError
from .models import FileStatus, OrganizedFile, utcnow
from .store import DataStore, validated

LOGGER = logging.getLogger(__name__)

TABLE = "organized_files"
DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 1000


class LedgerStats(BaseModel):
    """Aggregate view over the ledger.

    Attributes:
        total_moved: Rows currently in ``moved`` status.
        total_tracked: Rows recorded without relocating the file.
        total_undone: Rows reverted by undo.
        total_deleted: Rows whose file was deleted externally.
        total_size: Bytes held by ``moved`` rows.
        by_type: ``moved`` rows per file type.
        top_folders: Up to ten target folders ordered by ``moved`` row count.
    """

    total_moved: int = 0
    total_tracked: int = 0
    total_undone: int = 0
    total_deleted: int = 0
    total_size: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    top_folders: list[tuple[str, int]] = Field(default_factory=list)


def _normalize_path(path: Path | str) -> str:
    return str(Path(path).expanduser().absolute())


class HistoryLedger:
    """Append-mostly record of every organize operation."""

    def __init__(self, store: DataStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        *,
        filename: str,
        original_path: Path | str,
        current_path: Path | str,
        target_folder: str,
        status: FileStatus = FileStatus.MOVED,
        matched_rule_id: Optional[int] = None,
        file_extension: str = "",
        file_type: str = "other",
        file_size: int = 0,
        notes: list[str] | None = None,
    ) -> OrganizedFile:
        """Append a ledger row.

        Raises:
            InvalidInputError: If the row would start in a terminal status.
        """
        if status not in (FileStatus.MOVED, FileStatus.TRACKED):
            raise InvalidInputError(
                f"New ledger rows must be moved or tracked, not {status.value}."
            )
        row = validated(
            OrganizedFile,
            {
                "filename": filename,
                "original_path": _normalize_path(original_path),
                "current_path": _normalize_path(current_path),
                "target_folder": target_folder,
                "status": status,
                "matched_rule_id": matched_rule_id,
                "file_extension": file_extension,
                "file_type": file_type,
                "file_size": file_size,
                "organized_at": self._clock(),
                "notes": list(notes or []),
            },
        )
        return self._store.insert(TABLE, row)

    def get(self, record_id: int) -> Optional[OrganizedFile]:
        return self._store.get(TABLE, record_id)  # type: ignore[return-value]

    def list_files(
        self,
        *,
        status: FileStatus | None = None,
        target_folder: str | None = None,
        file_type: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[OrganizedFile]:
        """Return rows newest first, filtered and paginated.

        ``limit`` is clamped to ``1..1000`` and ``offset`` to non-negative values.
        """
        limit = min(max(1, limit), MAX_LIST_LIMIT)
        offset = max(0, offset)

        def _matches(row: OrganizedFile) -> bool:
            return (
                (status is None or row.status is status)
                and (target_folder is None or row.target_folder == target_folder)
                and (file_type is None or row.file_type == file_type)
            )

        rows = self._store.select(TABLE, _matches)
        rows.sort(key=lambda row: (row.organized_at, row.id), reverse=True)
        return rows[offset : offset + limit]

    def find_by_original_path(self, path: Path | str) -> Optional[OrganizedFile]:
        """Return the newest row for ``path`` that has not been undone."""
        wanted = _normalize_path(path)
        rows = self._store.select(
            TABLE,
            lambda row: row.original_path == wanted and row.status is not FileStatus.UNDONE,
        )
        if not rows:
            return None
        return max(rows, key=lambda row: (row.organized_at, row.id))

    def recent(self, limit: int = 20) -> list[OrganizedFile]:
        """Return the most recent ``moved`` rows."""
        return self.list_files(status=FileStatus.MOVED, limit=limit)

    def count(self, status: FileStatus | None = None) -> int:
        if status is None:
            return self._store.count(TABLE)
        return self._store.count(TABLE, lambda row: row.status is status)

    def stats(self) -> LedgerStats:
        rows = self._store.select(TABLE)
        by_status = Counter(row.status for row in rows)
        moved = [row for row in rows if row.status is FileStatus.MOVED]
        folders = Counter(row.target_folder for row in moved)
        return LedgerStats(
            total_moved=by_status[FileStatus.MOVED],
            total_tracked=by_status[FileStatus.TRACKED],
            total_undone=by_status[FileStatus.UNDONE],
            total_deleted=by_status[FileStatus.DELETED],
            total_size=sum(row.file_size for row in moved),
            by_type=dict(Counter(row.file_type for row in moved)),
            top_folders=sorted(folders.items(), key=lambda item: (-item[1], item[0]))[:10],
        )

    def mark_undone(self, record_id: int, note: str | None = None) -> Optional[OrganizedFile]:
        """Flip a ``moved`` row to ``undone``.

        Returns:
            OrganizedFile | None: Updated row, or ``None`` if it was no longer ``moved``.

        Raises:
            RecordNotFoundError: If the id is unknown.
        """
        with self._store.transaction():
            current = self._store.require(TABLE, record_id)
            notes = list(current.notes) + ([note] if note else [])  # type: ignore[attr-defined]
            return self._store.update(  # type: ignore[return-value]
                TABLE,
                record_id,
                {"status": FileStatus.UNDONE, "notes": notes},
                expected={"status": FileStatus.MOVED},
            )

    def mark_deleted(self, record_id: int) -> Optional[OrganizedFile]:
        """Record that a ``moved`` or ``tracked`` file was deleted outside jdorg."""
        with self._store.transaction():
            current = self._store.require(TABLE, record_id)
            live = (FileStatus.MOVED, FileStatus.TRACKED)
            if current.status not in live:  # type: ignore[attr-defined]
                return None
            return self._store.update(  # type: ignore[return-value]
                TABLE, record_id, {"status": FileStatus.DELETED}
            )

    def purge(self, days: int) -> int:
        """Delete rows older than ``days`` (floored at one day) in every status."""
        cutoff = self._clock() - timedelta(days=max(1, int(days)))
        removed = self._store.delete_where(TABLE, lambda row: row.organized_at < cutoff)
        if removed:
            LOGGER.info("Purged %d ledger rows older than %s", removed, cutoff.isoformat())
        return removed


__all__ = ["HistoryLedger", "LedgerStats"]
