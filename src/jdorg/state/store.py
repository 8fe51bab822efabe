"""Single-writer embedded data store persisted as one JSON document."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import ValidationError

from .errors import InvalidInputError, MissingStateError, RecordNotFoundError, StateError
from .models import (
    OrganizedFile,
    RecordModel,
    Rule,
    ScannedFile,
    StoreDocument,
    WatchActivity,
    WatchedFolder,
)

LOGGER = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=RecordModel)

TABLES: dict[str, type[RecordModel]] = {
    "rules": Rule,
    "scanned_files": ScannedFile,
    "organized_files": OrganizedFile,
    "watched_folders": WatchedFolder,
    "watch_activity": WatchActivity,
}


def validated(model_cls: type[RecordT], data: Mapping[str, Any]) -> RecordT:
    """Build a record, translating pydantic failures into ``InvalidInputError``.

    Args:
        model_cls: Record model to construct.
        data: Field values.

    Returns:
        RecordT: The validated record.

    Raises:
        InvalidInputError: If the values do not validate.
    """
    try:
        return model_cls.model_validate(dict(data))
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or model_cls.__name__}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidInputError(messages) from exc


class DataStore:
    """Keep every table in memory and persist writes to a JSON document.

    All writes are serialized through one re-entrant lock. ``transaction`` groups
    writes so they persist together, or not at all when the block raises.
    ``path_lock`` serializes work on a single filesystem path across threads.
    """

    def __init__(self, path: Path | None = None) -> None:
        """Open the store.

        Args:
            path: Location of the JSON document. ``None`` keeps the store in memory.

        Raises:
            StateError: If an existing document cannot be parsed.
        """
        self._path = path.expanduser() if path is not None else None
        self._lock = threading.RLock()
        self._path_locks: dict[str, threading.RLock] = {}
        self._path_locks_guard = threading.Lock()
        self._tables: dict[str, dict[int, RecordModel]] = {name: {} for name in TABLES}
        self._sequences: dict[str, int] = {name: 0 for name in TABLES}
        self._depth = 0
        self._dirty = False
        if self._path is not None and self._path.exists():
            self._load()

    @property
    def path(self) -> Path | None:
        """Return the backing document path, if any."""
        return self._path

    @classmethod
    def open_existing(cls, path: Path) -> "DataStore":
        """Open a store that must already exist on disk.

        Raises:
            MissingStateError: If no document exists at ``path``.
        """
        resolved = path.expanduser()
        if not resolved.exists():
            raise MissingStateError(f"No data store found at {resolved}")
        return cls(resolved)

    # ------------------------------------------------------------------ #
    # Transactions and locks                                             #
    # ------------------------------------------------------------------ #

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes; the outermost block persists once or rolls back."""
        with self._lock:
            snapshot = None
            if self._depth == 0:
                snapshot = (
                    {name: dict(rows) for name, rows in self._tables.items()},
                    dict(self._sequences),
                )
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._tables, self._sequences = snapshot
                    self._dirty = False
                raise
            finally:
                self._depth -= 1
            if self._depth == 0 and self._dirty:
                try:
                    self._persist()
                except OSError as exc:
                    if snapshot is not None:
                        self._tables, self._sequences = snapshot
                    raise StateError(f"Could not write data store {self._path}: {exc}") from exc

    @contextmanager
    def path_lock(self, path: Path | str) -> Iterator[None]:
        """Hold the re-entrant lock guarding ``path``."""
        key = os.path.normcase(os.path.abspath(str(path)))
        with self._path_locks_guard:
            lock = self._path_locks.setdefault(key, threading.RLock())
        with lock:
            yield

    # ------------------------------------------------------------------ #
    # Table operations                                                   #
    # ------------------------------------------------------------------ #

    def insert(self, table: str, record: RecordT) -> RecordT:
        """Store a new record and return it with its assigned id."""
        with self.transaction():
            next_id = self._sequences[table] + 1
            self._sequences[table] = next_id
            stored = record.model_copy(update={"id": next_id}, deep=True)
            self._rows(table)[next_id] = stored
            self._dirty = True
            return stored.model_copy(deep=True)

    def get(self, table: str, record_id: int) -> Optional[RecordModel]:
        """Return a copy of the record, or ``None`` when absent."""
        with self._lock:
            record = self._rows(table).get(record_id)
            return record.model_copy(deep=True) if record is not None else None

    def require(self, table: str, record_id: int) -> RecordModel:
        """Return a copy of the record.

        Raises:
            RecordNotFoundError: If the id is unknown.
        """
        record = self.get(table, record_id)
        if record is None:
            raise RecordNotFoundError(table, record_id)
        return record

    def select(
        self,
        table: str,
        predicate: Callable[[Any], bool] | None = None,
    ) -> list[Any]:
        """Return copies of the records matching ``predicate`` in id order."""
        with self._lock:
            rows = sorted(self._rows(table).values(), key=lambda row: row.id)
            return [
                row.model_copy(deep=True) for row in rows if predicate is None or predicate(row)
            ]

    def count(self, table: str, predicate: Callable[[Any], bool] | None = None) -> int:
        """Return the number of records matching ``predicate``."""
        with self._lock:
            rows = self._rows(table).values()
            if predicate is None:
                return len(rows)
            return sum(1 for row in rows if predicate(row))

    def update(
        self,
        table: str,
        record_id: int,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> Optional[RecordModel]:
        """Apply validated field changes to a record.

        Args:
            table: Table name.
            record_id: Record id.
            changes: Field values to replace.
            expected: Optional field values the stored record must currently hold.
                When they differ nothing is written and ``None`` is returned.

        Returns:
            RecordModel | None: Updated copy, or ``None`` when ``expected`` did not hold.

        Raises:
            RecordNotFoundError: If the id is unknown.
            InvalidInputError: If the changed record does not validate.
        """
        with self.transaction():
            rows = self._rows(table)
            current = rows.get(record_id)
            if current is None:
                raise RecordNotFoundError(table, record_id)
            if expected and any(getattr(current, key) != value for key, value in expected.items()):
                return None
            merged = current.model_dump()
            merged.update(changes)
            merged["id"] = record_id
            updated = validated(type(current), merged)
            rows[record_id] = updated
            self._dirty = True
            return updated.model_copy(deep=True)

    def increment(self, table: str, record_id: int, field: str, amount: int = 1) -> Optional[int]:
        """Atomically add ``amount`` to an integer field.

        Returns:
            int | None: New value, or ``None`` when the record no longer exists.
        """
        with self.transaction():
            current = self._rows(table).get(record_id)
            if current is None:
                return None
            value = int(getattr(current, field)) + amount
            self._rows(table)[record_id] = current.model_copy(update={field: value})
            self._dirty = True
            return value

    def delete(self, table: str, record_id: int) -> bool:
        """Remove a record; return whether it existed."""
        with self.transaction():
            removed = self._rows(table).pop(record_id, None)
            if removed is not None:
                self._dirty = True
            return removed is not None

    def delete_where(self, table: str, predicate: Callable[[Any], bool]) -> int:
        """Remove every record matching ``predicate`` and return the count."""
        with self.transaction():
            rows = self._rows(table)
            doomed = [record_id for record_id, row in rows.items() if predicate(row)]
            for record_id in doomed:
                del rows[record_id]
            if doomed:
                self._dirty = True
            return len(doomed)

    # ------------------------------------------------------------------ #
    # Persistence                                                        #
    # ------------------------------------------------------------------ #

    def flush(self) -> None:
        """Persist the current contents immediately."""
        with self._lock:
            self._persist()

    def _rows(self, table: str) -> dict[int, RecordModel]:
        try:
            return self._tables[table]
        except KeyError as exc:
            raise StateError(f"Unknown table {table!r}") from exc

    def _load(self) -> None:
        assert self._path is not None
        try:
            document = StoreDocument.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            raise StateError(f"Invalid data store at {self._path}: {exc}") from exc

        for name in TABLES:
            rows: list[RecordModel] = getattr(document, name)
            self._tables[name] = {row.id: row for row in rows}
            highest = max(self._tables[name], default=0)
            self._sequences[name] = max(document.sequences.get(name, 0), highest)
        LOGGER.debug("Loaded data store from %s", self._path)

    def _persist(self) -> None:
        self._dirty = False
        if self._path is None:
            return
        document = StoreDocument(
            sequences=dict(self._sequences),
            **{
                name: sorted(rows.values(), key=lambda row: row.id)
                for name, rows in self._tables.items()
            },
        )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_name(f".{self._path.name}.tmp")
        temp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
        os.replace(temp_path, self._path)


__all__ = ["DataStore", "TABLES", "validated"]
