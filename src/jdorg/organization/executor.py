"""Executor that relocates files into the index and records reversible history."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from jdorg.classification.rules import RuleStore
from jdorg.ingestion.detectors import TypeDetector, extension_of
from jdorg.state.audit import AuditLog
from jdorg.state.errors import RecordNotFoundError, StateError
from jdorg.state.ledger import HistoryLedger
from jdorg.state.models import ConflictPolicy, FileStatus, OrganizedFile
from jdorg.state.store import DataStore

from .errors import FileOperationError, OrganizationError
from .fileops import move_file, resolve_conflict
from .index import FolderIndex
from .models import (
    ExecutionOptions,
    ItemOutcome,
    ItemResult,
    OrganizeItem,
    UndoOutcome,
    UndoResult,
)

LOGGER = logging.getLogger(__name__)


class OperationExecutor:
    """Apply organize requests and undo them.

    Items run sequentially, each under the store's lock for its source path.
    A successful move and its ledger row (plus the rule's match-count bump)
    are committed in one store transaction.
    """

    def __init__(
        self,
        store: DataStore,
        ledger: HistoryLedger,
        rules: RuleStore,
        index: FolderIndex,
        *,
        audit: AuditLog | None = None,
        detector: TypeDetector | None = None,
        undo_timeout_seconds: float = 120.0,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._rules = rules
        self._index = index
        self._audit = audit
        self._detector = detector or TypeDetector()
        self._undo_timeout = undo_timeout_seconds

    def apply(
        self,
        items: Iterable[OrganizeItem],
        options: ExecutionOptions | None = None,
    ) -> list[ItemResult]:
        """Organize each item, isolating failures per item.

        Args:
            items: Requests to execute in order.
            options: Conflict policy, dry-run flag, and move deadline.

        Returns:
            list[ItemResult]: One result per item, in input order.
        """
        options = options or ExecutionOptions()
        results: list[ItemResult] = []
        for item in items:
            try:
                result = self._apply_one(item, options)
            except OrganizationError as exc:
                LOGGER.warning("Failed to organize %s: %s", item.source_path, exc)
                result = ItemResult(
                    item=item,
                    outcome=ItemOutcome.FAILURE,
                    reason=str(exc),
                    dry_run=options.dry_run,
                )
            except Exception as exc:  # pragma: no cover - unexpected item errors
                LOGGER.exception("Unexpected error organizing %s", item.source_path)
                result = ItemResult(
                    item=item,
                    outcome=ItemOutcome.FAILURE,
                    reason=f"unexpected error: {exc}",
                    dry_run=options.dry_run,
                )
            results.append(result)
        return results

    def undo(self, record_id: int) -> UndoResult:
        """Move a ``moved`` file back to its original path and mark it ``undone``.

        Rows in any other status are left alone and reported as ``noop``.

        Raises:
            RecordNotFoundError: If the ledger has no such row.
        """
        record = self._ledger.get(record_id)
        if record is None:
            raise RecordNotFoundError("organized_files", record_id)
        if record.status is not FileStatus.MOVED:
            return UndoResult(
                record_id=record_id,
                outcome=UndoOutcome.NOOP,
                status=record.status,
                reason=f"record is {record.status.value}",
            )

        original = Path(record.original_path)
        current = Path(record.current_path)
        with self._store.path_lock(original):
            record = self._ledger.get(record_id) or record
            if record.status is not FileStatus.MOVED:
                return UndoResult(
                    record_id=record_id, outcome=UndoOutcome.NOOP, status=record.status
                )
            failure = self._undo_blocker(current, original)
            if failure is not None:
                return UndoResult(
                    record_id=record_id,
                    outcome=UndoOutcome.FAILURE,
                    status=record.status,
                    reason=failure,
                )
            try:
                original.parent.mkdir(parents=True, exist_ok=True)
                move_file(current, original, timeout=self._undo_timeout)
            except (OrganizationError, OSError) as exc:
                LOGGER.warning("Undo of record %s failed: %s", record_id, exc)
                return UndoResult(
                    record_id=record_id,
                    outcome=UndoOutcome.FAILURE,
                    status=record.status,
                    reason=str(exc),
                )
            updated = self._ledger.mark_undone(record_id, note=f"restored to {original}")

        status = updated.status if updated is not None else FileStatus.UNDONE
        LOGGER.info("Undid record %s: %s -> %s", record_id, current, original)
        self._record("undo", record_id, {"from": str(current), "to": str(original)})
        return UndoResult(
            record_id=record_id,
            outcome=UndoOutcome.UNDONE,
            status=status,
            restored_path=original,
        )

    def undo_batch(self, record_ids: Sequence[int]) -> list[UndoResult]:
        """Undo several records; unknown ids are reported as failures."""
        results: list[UndoResult] = []
        for record_id in record_ids:
            try:
                results.append(self.undo(record_id))
            except RecordNotFoundError as exc:
                results.append(
                    UndoResult(
                        record_id=record_id,
                        outcome=UndoOutcome.FAILURE,
                        reason=str(exc),
                    )
                )
        return results

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _apply_one(self, item: OrganizeItem, options: ExecutionOptions) -> ItemResult:
        source = item.source_path.expanduser().absolute()
        with self._store.path_lock(source):
            directory = self._index.folder_path(item.target_folder)
            if item.track_only:
                return self._track(item, source, options)

            if not source.is_file():
                raise FileOperationError("move", source, "source file does not exist")

            candidate = directory / source.name
            if candidate.resolve() == source.resolve():
                return ItemResult(
                    item=item,
                    outcome=ItemOutcome.SKIPPED,
                    destination=candidate,
                    reason="file is already in place",
                    dry_run=options.dry_run,
                )
            destination, conflict = resolve_conflict(candidate, options.conflict_policy)
            if destination is None:
                LOGGER.info("Skipping %s: %s already exists", source, candidate)
                return ItemResult(
                    item=item,
                    outcome=ItemOutcome.SKIPPED,
                    destination=candidate,
                    reason="destination exists",
                    conflict_applied=True,
                    dry_run=options.dry_run,
                )
            if options.dry_run:
                return ItemResult(
                    item=item,
                    outcome=ItemOutcome.SUCCESS,
                    destination=destination,
                    conflict_applied=conflict,
                    dry_run=True,
                )

            size = source.stat().st_size
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise FileOperationError(
                    "mkdir", directory, exc.strerror or str(exc), errno=exc.errno
                ) from exc
            move_file(
                source,
                destination,
                timeout=options.move_timeout_seconds,
                overwrite=conflict and options.conflict_policy is ConflictPolicy.OVERWRITE,
            )
            notes = []
            if conflict:
                notes.append(f"conflict resolved with {options.conflict_policy.value}")
            try:
                record = self._commit(item, source, destination, FileStatus.MOVED, size, notes)
            except StateError as exc:
                raise self._revert_move(source, destination, options, exc) from exc

        LOGGER.info("Moved %s -> %s", source, destination)
        self._record("move", record.id, {"from": str(source), "to": str(destination)})
        return ItemResult(
            item=item,
            outcome=ItemOutcome.SUCCESS,
            destination=destination,
            record_id=record.id,
            conflict_applied=conflict,
        )

    def _track(self, item: OrganizeItem, source: Path, options: ExecutionOptions) -> ItemResult:
        if options.dry_run:
            return ItemResult(
                item=item, outcome=ItemOutcome.SUCCESS, destination=source, dry_run=True
            )
        size = source.stat().st_size if source.is_file() else 0
        record = self._commit(item, source, source, FileStatus.TRACKED, size, [])
        self._record("track", record.id, {"path": str(source)})
        return ItemResult(
            item=item, outcome=ItemOutcome.SUCCESS, destination=source, record_id=record.id
        )

    def _commit(
        self,
        item: OrganizeItem,
        source: Path,
        destination: Path,
        status: FileStatus,
        size: int,
        notes: list[str],
    ) -> OrganizedFile:
        extension = extension_of(source.name)
        with self._store.transaction():
            record = self._ledger.record(
                filename=destination.name,
                original_path=source,
                current_path=destination,
                target_folder=item.target_folder,
                status=status,
                matched_rule_id=item.rule_id,
                file_extension=extension,
                file_type=self._detector.for_extension(extension),
                file_size=size,
                notes=notes,
            )
            if item.rule_id is not None:
                self._rules.increment_match_count(item.rule_id)
        return record

    def _revert_move(
        self,
        source: Path,
        destination: Path,
        options: ExecutionOptions,
        cause: StateError,
    ) -> FileOperationError:
        """Move a file back after its ledger row could not be written."""
        LOGGER.error("Recording %s -> %s failed: %s", source, destination, cause)
        try:
            move_file(destination, source, timeout=options.move_timeout_seconds)
        except (OrganizationError, OSError) as exc:
            return FileOperationError(
                "record",
                source,
                f"history was not recorded ({cause}) and the file remains at "
                f"{destination}: {exc}",
            )
        return FileOperationError(
            "record", source, f"history was not recorded ({cause}); file restored to {source}"
        )

    def _undo_blocker(self, current: Path, original: Path) -> str | None:
        if not current.exists():
            return f"file no longer exists at {current}"
        if original.exists():
            return f"original location {original} is occupied"
        return None

    def _record(self, action: str, record_id: int, details: dict[str, str]) -> None:
        if self._audit is not None:
            self._audit.record(action, "organized_file", record_id, details)


__all__ = ["OperationExecutor"]
