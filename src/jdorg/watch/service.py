"""Folder watcher that runs the classify/organize pipeline unattended."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Literal, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from jdorg.classification.engine import RuleClassifier, RuleSet
from jdorg.classification.models import FileDescriptor
from jdorg.classification.rules import RuleStore
from jdorg.ingestion.detectors import TypeDetector
from jdorg.ingestion.discovery import DirectoryScanner, is_ignored_file
from jdorg.ingestion.models import ScannedFileDraft
from jdorg.organization.executor import OperationExecutor
from jdorg.organization.index import FolderIndex, resolve_decision
from jdorg.organization.models import ExecutionOptions, ItemOutcome, ItemResult, OrganizeItem
from jdorg.organization.session import SessionWorkingSet
from jdorg.state.errors import InvalidInputError, RecordNotFoundError
from jdorg.state.ledger import HistoryLedger
from jdorg.state.models import (
    Decision,
    FileStatus,
    ScannedFile,
    WatchAction,
    WatchActivity,
    WatchedFolder,
    utcnow,
)
from jdorg.state.store import DataStore

from .folders import ActivityLog, WatchedFolderStore

LOGGER = logging.getLogger(__name__)

EventName = Literal["file_queued", "file_organized", "file_error"]
EVENT_NAMES: tuple[str, ...] = ("file_queued", "file_organized", "file_error")

SUBDIR_DEPTH = 10


def watch_session_id(folder_id: int) -> str:
    """Return the working-set session that collects a folder's queued files."""
    return f"watch-{folder_id}"


def watch_folder_id(session_id: str) -> Optional[int]:
    """Return the watched folder behind a ``watch-<id>`` session, if it is one."""
    prefix, _, suffix = session_id.partition("-")
    if prefix != "watch" or not suffix.isdigit():
        return None
    return int(suffix)


@dataclass
class WatchEvent:
    """Notification emitted to listeners.

    Attributes:
        name: ``file_queued``, ``file_organized`` or ``file_error``.
        folder_id: Watched folder that produced the event.
        path: File the event is about.
        activity_id: Activity row recording the outcome.
        target_folder: Suggested or used target folder.
        rule_id: Matching rule, if any.
        error: Error message for ``file_error`` events.
    """

    name: str
    folder_id: int
    path: str
    activity_id: Optional[int] = None
    target_folder: Optional[str] = None
    rule_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class CycleReport:
    """Counts for one detection cycle of one folder."""

    folder_id: int
    detected: int = 0
    organized: int = 0
    queued: int = 0
    skipped: int = 0
    errors: int = 0
    deferred: int = 0
    cancelled: bool = False
    activity_ids: list[int] = field(default_factory=list)


class WatchService:
    """Detect new or changed files in watched folders and organize or queue them.

    ``run_cycle`` performs one deterministic detection cycle and is what tests
    drive. ``watch`` repeats cycles until stopped, waking early when the
    watchdog observer reports filesystem activity.
    """

    def __init__(
        self,
        *,
        store: DataStore,
        folders: WatchedFolderStore,
        activity: ActivityLog,
        rules: RuleStore,
        classifier: RuleClassifier,
        executor: OperationExecutor,
        ledger: HistoryLedger,
        working_set: SessionWorkingSet,
        index: FolderIndex,
        detector: TypeDetector | None = None,
        options: ExecutionOptions | None = None,
        poll_interval_seconds: float = 5.0,
        debounce_seconds: float = 2.0,
        activity_retention_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._folders = folders
        self._activity = activity
        self._rules = rules
        self._classifier = classifier
        self._executor = executor
        self._ledger = ledger
        self._working_set = working_set
        self._index = index
        self._detector = detector or TypeDetector()
        self._options = options or ExecutionOptions()
        self._poll_interval = max(0.05, poll_interval_seconds)
        self._debounce = max(0.0, debounce_seconds)
        self._retention_days = activity_retention_days
        self._clock = clock
        self._snapshots: dict[int, dict[str, tuple[float, int]]] = {}
        self._listeners: dict[str, list[Callable[[WatchEvent], None]]] = {
            name: [] for name in EVENT_NAMES
        }
        self._stop_event = threading.Event()
        self._wakeup = threading.Event()
        self._observer: Optional[Observer] = None  # type: ignore[valid-type]

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def on_event(
        self, name: EventName, callback: Callable[[WatchEvent], None]
    ) -> Callable[[], None]:
        """Register a listener and return a function that unregisters it.

        Raises:
            ValueError: If ``name`` is not a known event.
        """
        if name not in self._listeners:
            raise ValueError(f"Unknown watch event {name!r}")
        self._listeners[name].append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners[name]:
                self._listeners[name].remove(callback)

        return _unsubscribe

    def run_cycle(
        self, folder_id: int, *, stop_event: threading.Event | None = None
    ) -> CycleReport:
        """Run one detection cycle for a folder.

        Files that are new or whose size/modification time changed since the
        previous cycle are processed. The first cycle treats every existing file
        as new. The stop signal is honoured between files.

        Raises:
            RecordNotFoundError: If the folder does not exist.
        """
        folder = self._folders.get(folder_id)
        if folder is None:
            raise RecordNotFoundError("watched_folders", folder_id)
        report = CycleReport(folder_id=folder_id)
        stop = stop_event or self._stop_event
        self.reconcile_queued(folder_id)

        candidates, snapshot, deferred = self._detect(folder, stop)
        report.deferred = deferred
        if stop.is_set():
            report.cancelled = True
            return report
        rule_set = self._classifier.compile(self._rules.list_rules(active_only=True))
        previous = self._snapshots.setdefault(folder_id, {})
        for draft in candidates:
            if stop.is_set():
                report.cancelled = True
                break
            self._process_file(folder, draft, rule_set, report)
            previous[draft.path] = snapshot[draft.path]

        if not report.cancelled:
            self._snapshots[folder_id] = {
                path: signature for path, signature in snapshot.items() if path in previous
            }
            self._folders.touch(folder_id)
        LOGGER.debug("Watch cycle for folder %s: %s", folder_id, report)
        return report

    def run_all_once(self, *, stop_event: threading.Event | None = None) -> list[CycleReport]:
        """Run one cycle for every active folder; a failing folder does not stop the rest."""
        stop = stop_event or self._stop_event
        reports: list[CycleReport] = []
        for folder in self._folders.list_folders(active_only=True):
            if stop.is_set():
                break
            try:
                reports.append(self.run_cycle(folder.id, stop_event=stop))
            except Exception:  # pragma: no cover - unexpected folder errors
                LOGGER.exception("Watch cycle failed for folder %s (%s)", folder.id, folder.path)
        return reports

    def watch(
        self, stop_event: threading.Event | None = None, *, use_observer: bool = True
    ) -> None:
        """Run cycles until stopped.

        Args:
            stop_event: External stop signal; ``stop()`` sets the internal one.
            use_observer: Wake early on watchdog filesystem events.
        """
        if stop_event is not None:
            self._stop_event = stop_event
        stop = self._stop_event
        if self._retention_days:
            self._activity.purge(self._retention_days)
        if use_observer:
            self._start_observer()
        try:
            while not stop.is_set():
                self.run_all_once(stop_event=stop)
                if self._wakeup.wait(timeout=self._poll_interval):
                    self._wakeup.clear()
                    if self._debounce:
                        stop.wait(self._debounce)
        finally:
            self._stop_observer()

    def stop(self) -> None:
        """Signal the watch loop to exit after the current file."""
        self._stop_event.set()
        self._wakeup.set()

    def resolve_queued(
        self,
        activity_id: int,
        decision: Decision | str,
        target_folder: str | None = None,
    ) -> WatchActivity:
        """Apply a manual decision to a queued file, updating its activity row in place.

        ``accepted`` organizes into the suggested folder, ``changed`` into
        ``target_folder``, and ``skipped`` leaves the file where it is.

        Raises:
            RecordNotFoundError: If the activity row does not exist.
            InvalidInputError: If the row is not queued or the decision lacks a target.
        """
        row = self._activity.get(activity_id)
        if row is None:
            raise RecordNotFoundError("watch_activity", activity_id)
        if row.action is not WatchAction.QUEUED:
            raise InvalidInputError(f"Activity {activity_id} is {row.action.value}, not queued.")
        try:
            chosen = decision if isinstance(decision, Decision) else Decision(str(decision).lower())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown decision {decision!r}.") from exc

        if chosen is Decision.SKIPPED:
            self._skip_session_rows(row.watched_folder_id, row.path)
            return self._activity.advance(activity_id, WatchAction.SKIPPED)
        if chosen is Decision.ACCEPTED:
            target = row.target_folder
            rule_id = row.matched_rule_id
        elif chosen is Decision.CHANGED:
            target = (target_folder or "").strip() or None
            rule_id = None
        else:
            raise InvalidInputError("Queued files can only be accepted, changed, or skipped.")
        if target is None:
            raise InvalidInputError(
                f"Activity {activity_id} has no target folder to organize into."
            )

        folder = self._folders.get(row.watched_folder_id)
        item = OrganizeItem(source_path=Path(row.path), target_folder=target, rule_id=rule_id)
        result = self._executor.apply([item], self._options)[0]
        if result.outcome is ItemOutcome.SUCCESS:
            self._drop_session_rows(row.watched_folder_id, row.path)
            self._folders.mark_organized(row.watched_folder_id)
            updated = self._activity.advance(
                activity_id, WatchAction.AUTO_ORGANIZED, target_folder=target
            )
            if folder is None or folder.notify_on_organize:
                self._emit(self._event("file_organized", updated))
            return updated
        if result.outcome is ItemOutcome.SKIPPED:
            self._skip_session_rows(row.watched_folder_id, row.path)
            return self._activity.advance(
                activity_id, WatchAction.SKIPPED, error_message=result.reason
            )
        updated = self._activity.advance(
            activity_id, WatchAction.ERROR, error_message=result.reason or "organize failed"
        )
        self._emit(self._event("file_error", updated))
        return updated

    def record_review_results(self, folder_id: int, results: Iterable[ItemResult]) -> int:
        """Resolve queued rows for files organized through the review session.

        ``jdorg organize watch-<id>`` moves queued files with the executor
        directly; this carries each outcome back onto the file's queued row.

        Returns:
            int: Number of queued rows resolved.
        """
        folder = self._folders.get(folder_id)
        resolved = 0
        for result in results:
            if result.dry_run:
                continue
            row = self._activity.find_queued(folder_id, result.item.source_path)
            if row is None:
                continue
            if result.outcome is ItemOutcome.SUCCESS:
                updated = self._activity.advance(
                    row.id,
                    WatchAction.AUTO_ORGANIZED,
                    matched_rule_id=result.item.rule_id,
                    target_folder=result.item.target_folder,
                )
                self._folders.mark_organized(folder_id)
                if folder is None or folder.notify_on_organize:
                    self._emit(self._event("file_organized", updated))
            elif result.outcome is ItemOutcome.SKIPPED:
                self._activity.advance(row.id, WatchAction.SKIPPED, error_message=result.reason)
            else:
                updated = self._activity.advance(
                    row.id, WatchAction.ERROR, error_message=result.reason or "organize failed"
                )
                self._emit(self._event("file_error", updated))
            resolved += 1
        return resolved

    def reconcile_queued(self, folder_id: int) -> int:
        """Resolve queued rows whose files were handled outside the watcher.

        A queued file that the ledger shows organized after it was queued becomes
        ``auto_organized``; one whose review row was skipped becomes ``skipped``.

        Returns:
            int: Number of queued rows resolved.
        """
        resolved = 0
        for row in self._activity.list_for_folder(
            folder_id, action=WatchAction.QUEUED, limit=self._activity.count(folder_id)
        ):
            with self._store.path_lock(row.path):
                if self._reconcile(row):
                    resolved += 1
        if resolved:
            LOGGER.info("Reconciled %d queued file(s) for folder %s", resolved, folder_id)
        return resolved

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _reconcile(self, row: WatchActivity, draft: ScannedFileDraft | None = None) -> bool:
        """Advance a stale queued row; return False while it is still awaiting a decision."""
        record = self._ledger.find_by_original_path(row.path)
        if record is not None and record.organized_at >= row.created_at:
            self._activity.advance(
                row.id,
                WatchAction.AUTO_ORGANIZED,
                matched_rule_id=record.matched_rule_id,
                target_folder=record.target_folder,
            )
            self._folders.mark_organized(row.watched_folder_id)
            self._drop_session_rows(row.watched_folder_id, row.path)
            return True
        session_rows = self._session_rows(row.watched_folder_id, row.path)
        if any(item.user_decision is Decision.SKIPPED for item in session_rows):
            self._activity.advance(row.id, WatchAction.SKIPPED)
            return True
        if draft is not None and (
            draft.file_size != row.file_size
            or (draft.file_modified_at is not None and draft.file_modified_at > row.created_at)
        ):
            self._activity.advance(
                row.id, WatchAction.SKIPPED, error_message="superseded by a newer version"
            )
            self._drop_session_rows(row.watched_folder_id, row.path)
            return True
        return False

    def _detect(
        self, folder: WatchedFolder, stop: threading.Event
    ) -> tuple[list[ScannedFileDraft], dict[str, tuple[float, int]], int]:
        root = Path(folder.path)
        scanner = DirectoryScanner(
            max_depth=SUBDIR_DEPTH if folder.include_subdirs else 0,
            detector=self._detector,
        )
        previous = self._snapshots.get(folder.id, {})
        snapshot: dict[str, tuple[float, int]] = {}
        candidates: list[ScannedFileDraft] = []
        deferred = 0
        now = time.time()
        for draft in scanner.scan(root, session_id=watch_session_id(folder.id), cancel=stop):
            mtime = draft.file_modified_at.timestamp() if draft.file_modified_at else 0.0
            signature = (mtime, draft.file_size)
            if self._debounce and now - mtime < self._debounce:
                deferred += 1
                continue
            snapshot[draft.path] = signature
            if previous.get(draft.path) != signature:
                candidates.append(draft)
        return candidates, snapshot, deferred

    def _process_file(
        self,
        folder: WatchedFolder,
        draft: ScannedFileDraft,
        rule_set: RuleSet,
        report: CycleReport,
    ) -> None:
        path = Path(draft.path)
        try:
            with self._store.path_lock(path):
                if self._already_organized(path):
                    return
                queued_row = self._activity.find_queued(folder.id, path)
                if queued_row is not None and not self._reconcile(queued_row, draft):
                    return
                if self._skipped_in_review(folder.id, draft):
                    return
                if not self._detector.matches_filter(draft.file_extension, folder.file_types):
                    row = self._log(folder, draft, WatchAction.SKIPPED)
                    report.skipped += 1
                    report.activity_ids.append(row.id)
                    return

                detected = self._log(folder, draft, WatchAction.DETECTED)
                report.detected += 1
                report.activity_ids.append(detected.id)
                self._folders.increment_stats(folder.id)

                decision = rule_set.classify(
                    FileDescriptor(
                        filename=draft.filename,
                        extension=draft.file_extension,
                        path=draft.path,
                        parent_folder=draft.parent_folder,
                        file_type=draft.file_type,
                        modified_at=draft.file_modified_at,
                    )
                )
                target = resolve_decision(self._index, decision)
                if (
                    folder.auto_organize
                    and target is not None
                    and decision.confidence.meets(folder.confidence_threshold)
                ):
                    item = OrganizeItem(
                        source_path=path, target_folder=target, rule_id=decision.rule_id
                    )
                    result = self._executor.apply([item], self._options)[0]
                    self._record_auto_result(folder, draft, result, report)
                    return

                if target is not None:
                    draft = draft.model_copy(
                        update={
                            "suggested_target": target,
                            "suggested_rule_id": decision.rule_id,
                            "suggestion_confidence": decision.confidence,
                        }
                    )
                # The queued row and its review row are written together.
                with self._store.transaction():
                    queued = self._log(
                        folder,
                        draft,
                        WatchAction.QUEUED,
                        matched_rule_id=decision.rule_id,
                        target_folder=target,
                    )
                    self._drop_session_rows(folder.id, draft.path)
                    self._working_set.add(draft)
                report.queued += 1
                report.activity_ids.append(queued.id)
                self._emit(self._event("file_queued", queued))
        except Exception as exc:
            LOGGER.exception("Watcher failed to process %s", path)
            row = self._log(folder, draft, WatchAction.ERROR, error_message=str(exc))
            report.errors += 1
            report.activity_ids.append(row.id)
            self._emit(self._event("file_error", row))

    def _record_auto_result(
        self,
        folder: WatchedFolder,
        draft: ScannedFileDraft,
        result: ItemResult,
        report: CycleReport,
    ) -> None:
        item = result.item
        if result.outcome is ItemOutcome.SUCCESS:
            row = self._log(
                folder,
                draft,
                WatchAction.AUTO_ORGANIZED,
                matched_rule_id=item.rule_id,
                target_folder=item.target_folder,
            )
            self._folders.mark_organized(folder.id)
            report.organized += 1
            report.activity_ids.append(row.id)
            if folder.notify_on_organize:
                self._emit(self._event("file_organized", row))
            return
        if result.outcome is ItemOutcome.SKIPPED:
            row = self._log(
                folder,
                draft,
                WatchAction.SKIPPED,
                matched_rule_id=item.rule_id,
                target_folder=item.target_folder,
                error_message=result.reason,
            )
            report.skipped += 1
            report.activity_ids.append(row.id)
            return
        row = self._log(
            folder,
            draft,
            WatchAction.ERROR,
            matched_rule_id=item.rule_id,
            target_folder=item.target_folder,
            error_message=result.reason,
        )
        report.errors += 1
        report.activity_ids.append(row.id)
        self._emit(self._event("file_error", row))

    def _already_organized(self, path: Path) -> bool:
        record = self._ledger.find_by_original_path(path)
        if record is None:
            return False
        # A moved row means the original file left; a file now at that path is new.
        return record.status is FileStatus.TRACKED or Path(record.current_path) == path.absolute()

    def _session_rows(self, folder_id: int, path: str) -> list[ScannedFile]:
        return [
            item
            for item in self._working_set.list_files(watch_session_id(folder_id))
            if item.path == path
        ]

    def _skipped_in_review(self, folder_id: int, draft: ScannedFileDraft) -> bool:
        """Return True when this exact version of the file was skipped during review."""
        signature = (draft.file_size, draft.file_modified_at)
        return any(
            item.user_decision is Decision.SKIPPED
            and (item.file_size, item.file_modified_at) == signature
            for item in self._session_rows(folder_id, draft.path)
        )

    def _drop_session_rows(self, folder_id: int, path: str) -> None:
        """Remove review rows for a file that no longer awaits a decision."""
        for item in self._session_rows(folder_id, path):
            self._working_set.delete(item.id)

    def _skip_session_rows(self, folder_id: int, path: str) -> None:
        for item in self._session_rows(folder_id, path):
            if item.user_decision is Decision.PENDING:
                self._working_set.skip(item.id)

    def _log(
        self,
        folder: WatchedFolder,
        draft: ScannedFileDraft,
        action: WatchAction,
        **extra: Optional[object],
    ) -> WatchActivity:
        return self._activity.log(
            watched_folder_id=folder.id,
            path=draft.path,
            action=action,
            file_extension=draft.file_extension,
            file_type=draft.file_type,
            file_size=draft.file_size,
            **extra,  # type: ignore[arg-type]
        )

    def _event(self, name: str, row: WatchActivity) -> WatchEvent:
        return WatchEvent(
            name=name,
            folder_id=row.watched_folder_id,
            path=row.path,
            activity_id=row.id,
            target_folder=row.target_folder,
            rule_id=row.matched_rule_id,
            error=row.error_message,
        )

    def _emit(self, event: WatchEvent) -> None:
        for callback in list(self._listeners.get(event.name, [])):
            try:
                callback(event)
            except Exception:  # pragma: no cover - listener isolation
                LOGGER.exception("Watch listener for %s failed", event.name)

    def _start_observer(self) -> None:
        if self._observer is not None:
            raise RuntimeError("WatchService is already running.")
        observer = Observer()
        for folder in self._folders.list_folders(active_only=True):
            path = Path(folder.path)
            if not path.is_dir():
                LOGGER.warning("Watched folder %s does not exist; polling only", path)
                continue
            observer.schedule(
                _WakeupHandler(self._wakeup), str(path), recursive=folder.include_subdirs
            )
        observer.start()
        self._observer = observer

    def _stop_observer(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None


class _WakeupHandler(FileSystemEventHandler):
    """Wake the watch loop when files appear or change."""

    def __init__(self, wakeup: threading.Event) -> None:
        self._wakeup = wakeup

    def on_created(self, event: FileSystemEvent) -> None:
        self._notify(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._notify(event)

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - watchdog-specific
        self._notify(event)

    def _notify(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        name = Path(str(getattr(event, "dest_path", "") or event.src_path)).name
        if is_ignored_file(name):
            return
        self._wakeup.set()


__all__ = [
    "WatchService",
    "WatchEvent",
    "CycleReport",
    "watch_folder_id",
    "watch_session_id",
    "EVENT_NAMES",
]
