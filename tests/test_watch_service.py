"""Watch service tests driven through single detection cycles."""

from __future__ import annotations

import errno
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from jdorg.classification import RuleClassifier, RuleStore
from jdorg.organization import (
    ConfiguredIndex,
    ItemOutcome,
    OperationExecutor,
    OrganizeItem,
    SessionWorkingSet,
    fileops,
    to_organize_items,
)
from jdorg.state import (
    DataStore,
    Decision,
    HistoryLedger,
    InvalidInputError,
    RecordNotFoundError,
    WatchAction,
)
from jdorg.watch import (
    ActivityLog,
    WatchedFolderStore,
    WatchEvent,
    WatchService,
    watch_folder_id,
    watch_session_id,
)


@dataclass
class _Harness:
    store: DataStore
    rules: RuleStore
    ledger: HistoryLedger
    working_set: SessionWorkingSet
    folders: WatchedFolderStore
    activity: ActivityLog
    index: ConfiguredIndex
    executor: OperationExecutor
    inbox: Path
    service: WatchService = field(init=False)

    def __post_init__(self) -> None:
        self.service = self.new_service()

    def new_service(self, debounce_seconds: float = 0.0) -> WatchService:
        return WatchService(
            store=self.store,
            folders=self.folders,
            activity=self.activity,
            rules=self.rules,
            classifier=RuleClassifier(),
            executor=self.executor,
            ledger=self.ledger,
            working_set=self.working_set,
            index=self.index,
            debounce_seconds=debounce_seconds,
        )


def _harness(tmp_path: Path) -> _Harness:
    """Wire a watch service over an in-memory store.

    The service runs without a debounce window so freshly written files are
    picked up by the next cycle. Two rules are registered: a compound rule for
    invoices (high confidence) and a keyword rule for reports (medium).

    Args:
        tmp_path: Temporary directory provided by pytest.

    Returns:
        _Harness: Wired components.
    """
    store = DataStore()
    rules = RuleStore(store)
    ledger = HistoryLedger(store)
    working_set = SessionWorkingSet(store)
    index = ConfiguredIndex(
        tmp_path / "index",
        areas={"10-19": "Admin"},
        categories={"11": "Finance"},
        folders={"11.01": "Invoices", "11.02": "Reports"},
    )
    executor = OperationExecutor(store, ledger, rules, index)
    rules.create(
        name="Invoices",
        rule_type="compound",
        pattern="ext:pdf,keyword:invoice",
        target_type="folder",
        target_id="11.01",
        priority=90,
    )
    rules.create(
        name="Reports",
        rule_type="keyword",
        pattern="report",
        target_type="folder",
        target_id="11.02",
    )
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    folders = WatchedFolderStore(store)
    activity = ActivityLog(store)
    return _Harness(store, rules, ledger, working_set, folders, activity, index, executor, inbox)


def _write(directory: Path, name: str, content: str = "data") -> Path:
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path


def _collect(service: WatchService) -> list[WatchEvent]:
    events: list[WatchEvent] = []
    for name in ("file_queued", "file_organized", "file_error"):
        service.on_event(name, events.append)  # type: ignore[arg-type]
    return events


def test_confident_match_is_organized_automatically(tmp_path: Path) -> None:
    """Ensure high-confidence matches move when auto-organize is on.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox, auto_organize=True, confidence_threshold="high")
    source = _write(h.inbox, "invoice_march.pdf")
    events = _collect(h.service)

    report = h.service.run_cycle(folder.id)

    destination = h.index.root.resolve() / "10-19 Admin" / "11 Finance" / "11.01 Invoices"
    assert (report.detected, report.organized, report.queued) == (1, 1, 0)
    assert not source.exists()
    assert (destination / "invoice_march.pdf").exists()
    actions = [h.activity.get(row_id).action for row_id in report.activity_ids]
    assert actions == [WatchAction.DETECTED, WatchAction.AUTO_ORGANIZED]
    assert [(event.name, event.target_folder) for event in events] == [
        ("file_organized", "11.01")
    ]
    stored = h.folders.get(folder.id)
    assert (stored.files_processed, stored.files_organized) == (1, 1)
    assert stored.last_checked_at is not None


def test_match_below_threshold_is_queued_once(tmp_path: Path) -> None:
    """Ensure weaker matches are queued for review and not queued twice.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox, auto_organize=True, confidence_threshold="high")
    source = _write(h.inbox, "quarterly_report.docx")
    events = _collect(h.service)

    report = h.service.run_cycle(folder.id)

    assert (report.detected, report.organized, report.queued) == (1, 0, 1)
    assert source.exists()
    queued = h.activity.get(report.activity_ids[-1])
    assert queued.action is WatchAction.QUEUED
    assert queued.target_folder == "11.02"
    [row] = h.working_set.list_files(watch_session_id(folder.id))
    assert row.path == str(source)
    assert row.suggested_target == "11.02"
    assert [event.name for event in events] == ["file_queued"]

    assert h.service.run_cycle(folder.id).queued == 0
    assert h.new_service().run_cycle(folder.id).queued == 0
    assert h.working_set.count(watch_session_id(folder.id)) == 1


def test_manual_folder_queues_every_file(tmp_path: Path) -> None:
    """Ensure folders without auto-organize queue even confident matches.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "invoice_march.pdf")
    _write(h.inbox, "holiday.jpg")

    report = h.service.run_cycle(folder.id)

    assert (report.detected, report.queued, report.organized) == (2, 2, 0)
    rows = {row.filename: row for row in h.working_set.list_files(watch_session_id(folder.id))}
    assert rows["invoice_march.pdf"].suggested_target == "11.01"
    assert rows["holiday.jpg"].suggested_target is None


def test_type_filter_skips_other_files(tmp_path: Path) -> None:
    """Ensure files outside the folder's type filter are logged as skipped.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox, auto_organize=True, file_types=["pdf"])
    _write(h.inbox, "holiday.jpg")

    report = h.service.run_cycle(folder.id)

    assert (report.detected, report.skipped) == (0, 1)
    assert h.activity.get(report.activity_ids[0]).action is WatchAction.SKIPPED
    assert h.folders.get(folder.id).files_processed == 0


def test_subdirectories_follow_folder_setting(tmp_path: Path) -> None:
    """Ensure nested files are only seen when include_subdirs is set.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    nested = h.inbox / "nested"
    nested.mkdir()
    _write(nested, "notes.txt")
    folder = h.folders.create(path=h.inbox)

    assert h.service.run_cycle(folder.id).detected == 0

    h.folders.update(folder.id, include_subdirs=True)
    assert h.service.run_cycle(folder.id).detected == 1


def test_recently_modified_files_are_deferred(tmp_path: Path) -> None:
    """Ensure files still inside the debounce window wait for a later cycle.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "fresh.txt")
    service = h.new_service(debounce_seconds=3600.0)

    report = service.run_cycle(folder.id)

    assert (report.deferred, report.detected) == (1, 0)
    assert h.service.run_cycle(folder.id).detected == 1


def test_tracked_file_is_not_processed(tmp_path: Path) -> None:
    """Ensure files already recorded in the ledger are left alone.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    source = _write(h.inbox, "invoice_march.pdf")
    h.executor.apply(
        [OrganizeItem(source_path=source.resolve(), target_folder="11.01", track_only=True)]
    )
    folder = h.folders.create(path=h.inbox, auto_organize=True)

    report = h.service.run_cycle(folder.id)

    assert report.activity_ids == []
    assert source.exists()


def test_stop_signal_cancels_cycle(tmp_path: Path) -> None:
    """Ensure a set stop signal cancels the cycle before any file is handled.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "a.txt")
    stop = threading.Event()
    stop.set()

    cancelled = h.service.run_cycle(folder.id, stop_event=stop)

    assert cancelled.cancelled is True
    assert cancelled.activity_ids == []
    assert h.service.run_cycle(folder.id).detected == 1


def test_listener_registration(tmp_path: Path) -> None:
    """Ensure unsubscribed listeners stop receiving events.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    received: list[WatchEvent] = []
    unsubscribe = h.service.on_event("file_queued", received.append)
    _write(h.inbox, "a.txt")
    h.service.run_cycle(folder.id)
    unsubscribe()
    _write(h.inbox, "b.txt")
    h.service.run_cycle(folder.id)

    assert [Path(event.path).name for event in received] == ["a.txt"]
    with pytest.raises(ValueError):
        h.service.on_event("file_deleted", received.append)  # type: ignore[arg-type]
    with pytest.raises(RecordNotFoundError):
        h.service.run_cycle(999)


def test_resolve_queued_accept_organizes_file(tmp_path: Path) -> None:
    """Ensure accepting a queued file moves it and resolves the row in place.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    source = _write(h.inbox, "quarterly_report.docx")
    report = h.service.run_cycle(folder.id)
    queued_id = report.activity_ids[-1]

    resolved = h.service.resolve_queued(queued_id, "accepted")

    assert resolved.id == queued_id
    assert resolved.action is WatchAction.AUTO_ORGANIZED
    assert not source.exists()
    assert h.ledger.find_by_original_path(source) is not None
    assert h.working_set.list_files(watch_session_id(folder.id)) == []
    assert h.working_set.ready_to_organize(watch_session_id(folder.id)) == []
    assert h.folders.get(folder.id).files_organized == 1
    with pytest.raises(InvalidInputError):
        h.service.resolve_queued(queued_id, "skipped")


def test_resolve_queued_change_and_skip(tmp_path: Path) -> None:
    """Ensure changed decisions need a target and skipped files stay put.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    moved = _write(h.inbox, "holiday.jpg")
    kept = _write(h.inbox, "notes.txt")
    report = h.service.run_cycle(folder.id)
    queued = {
        Path(h.activity.get(row_id).path).name: row_id
        for row_id in report.activity_ids
        if h.activity.get(row_id).action is WatchAction.QUEUED
    }

    with pytest.raises(InvalidInputError):
        h.service.resolve_queued(queued["holiday.jpg"], "accepted")
    with pytest.raises(InvalidInputError):
        h.service.resolve_queued(queued["holiday.jpg"], "changed")

    changed = h.service.resolve_queued(queued["holiday.jpg"], "changed", "11.02")
    skipped = h.service.resolve_queued(queued["notes.txt"], "skipped")

    assert changed.action is WatchAction.AUTO_ORGANIZED
    assert changed.target_folder == "11.02"
    assert not moved.exists()
    assert skipped.action is WatchAction.SKIPPED
    assert kept.exists()
    decisions = {
        row.filename: row.user_decision
        for row in h.working_set.list_files(watch_session_id(folder.id))
    }
    assert decisions == {"notes.txt": Decision.SKIPPED}


def test_folder_store_validates_configuration(tmp_path: Path) -> None:
    """Ensure duplicate paths, bad thresholds, and unknown fields are rejected."""
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox, file_types=["pdf", " ", "jpg"])

    assert h.folders.get_by_path(h.inbox).id == folder.id
    assert folder.file_types == ["pdf", "jpg"]
    assert folder.name == "inbox"
    with pytest.raises(InvalidInputError):
        h.folders.create(path=h.inbox)
    with pytest.raises(InvalidInputError):
        h.folders.create(path=tmp_path / "other", confidence_threshold="none")
    with pytest.raises(InvalidInputError):
        h.folders.update(folder.id, colour="blue")

    updated = h.folders.update(folder.id, confidence_threshold="HIGH", is_active=False)

    assert updated.confidence_threshold.value == "high"
    assert h.folders.list_folders(active_only=True) == []
    assert h.service.run_all_once() == []


def test_review_flow_resolves_queued_row(tmp_path: Path) -> None:
    """Ensure a queued file organized from its review session stops blocking the path.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "quarterly_report.docx")
    session = watch_session_id(folder.id)
    queued_id = h.service.run_cycle(folder.id).activity_ids[-1]
    [row] = h.working_set.list_files(session)
    h.working_set.accept(row.id)

    [result] = h.executor.apply(to_organize_items(h.working_set.ready_to_organize(session)))
    _write(h.inbox, "quarterly_report.docx", "second draft")
    report = h.service.run_cycle(folder.id)

    assert result.ok
    resolved = h.activity.get(queued_id)
    assert resolved.action is WatchAction.AUTO_ORGANIZED
    assert resolved.target_folder == "11.02"
    assert (report.detected, report.queued) == (1, 1)
    [fresh] = h.working_set.list_files(session)
    assert fresh.user_decision is Decision.PENDING
    assert fresh.file_size == len("second draft")
    assert h.folders.get(folder.id).files_organized == 1


def test_review_results_update_queued_rows(tmp_path: Path) -> None:
    """Ensure organize outcomes from a watch session land on the queued rows.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "invoice_june.pdf")
    _write(h.inbox, "quarterly_report.docx")
    h.service.run_cycle(folder.id)
    session = watch_session_id(folder.id)
    rows = {row.filename: row for row in h.working_set.list_files(session)}
    h.working_set.accept(rows["invoice_june.pdf"].id)
    h.working_set.change_target(rows["quarterly_report.docx"].id, "11.99")
    events = _collect(h.service)

    results = h.executor.apply(to_organize_items(h.working_set.ready_to_organize(session)))
    resolved = h.service.record_review_results(folder.id, results)

    assert sorted(result.outcome.value for result in results) == ["failure", "success"]
    assert resolved == 2
    [organized] = h.activity.list_for_folder(folder.id, action=WatchAction.AUTO_ORGANIZED)
    [failed] = h.activity.list_for_folder(folder.id, action=WatchAction.ERROR)
    assert organized.filename == "invoice_june.pdf"
    assert organized.target_folder == "11.01"
    assert failed.filename == "quarterly_report.docx"
    assert failed.error_message
    assert h.activity.list_for_folder(folder.id, action=WatchAction.QUEUED) == []
    assert sorted(event.name for event in events) == ["file_error", "file_organized"]
    assert h.service.record_review_results(folder.id, results) == 0


def test_failed_file_does_not_stop_the_cycle(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Ensure one file that cannot be moved is logged while the others proceed.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to deny one rename.
    """
    real_rename = os.rename

    def _deny_april(src: object, dst: object) -> None:
        if Path(str(src)).name == "invoice_april.pdf":
            raise PermissionError(errno.EACCES, "Permission denied")
        real_rename(src, dst)  # type: ignore[arg-type]

    monkeypatch.setattr(fileops.os, "rename", _deny_april)
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox, auto_organize=True, confidence_threshold="high")
    failing = _write(h.inbox, "invoice_april.pdf")
    moved = _write(h.inbox, "invoice_may.pdf")
    events = _collect(h.service)

    report = h.service.run_cycle(folder.id)

    assert (report.detected, report.organized, report.errors) == (2, 1, 1)
    outcomes = {
        row.filename: row
        for row in (h.activity.get(row_id) for row_id in report.activity_ids)
        if row.action is not WatchAction.DETECTED
    }
    assert outcomes["invoice_may.pdf"].action is WatchAction.AUTO_ORGANIZED
    assert outcomes["invoice_april.pdf"].action is WatchAction.ERROR
    assert "Permission denied" in (outcomes["invoice_april.pdf"].error_message or "")
    assert failing.exists()
    assert not moved.exists()
    stored = h.folders.get(folder.id)
    assert (stored.files_processed, stored.files_organized) == (2, 1)
    assert [event.name for event in events] == ["file_error", "file_organized"]


def test_unexpected_error_is_logged_and_other_folders_continue(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Ensure an error while queueing is recorded without a half-written queue entry.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to break the working set for one file.
    """
    h = _harness(tmp_path)
    other = tmp_path / "other"
    other.mkdir()
    broken = h.folders.create(path=h.inbox, name="a-inbox")
    healthy = h.folders.create(path=other, name="b-other")
    _write(h.inbox, "notes.txt")
    _write(other, "holiday.jpg")
    real_add = h.working_set.add

    def _add(draft):  # type: ignore[no-untyped-def]
        if draft.filename == "notes.txt":
            raise RuntimeError("working set unavailable")
        return real_add(draft)

    monkeypatch.setattr(h.working_set, "add", _add)
    events = _collect(h.service)

    reports = h.service.run_all_once()

    assert [report.folder_id for report in reports] == [broken.id, healthy.id]
    assert (reports[0].detected, reports[0].errors) == (1, 1)
    [error] = h.activity.list_for_folder(broken.id, action=WatchAction.ERROR)
    assert error.error_message == "working set unavailable"
    assert h.activity.list_for_folder(broken.id, action=WatchAction.QUEUED) == []
    assert h.folders.get(broken.id).files_processed == 1
    assert reports[1].queued == 1
    assert [event.name for event in events] == ["file_error", "file_queued"]


def test_skipped_review_row_keeps_file_out_of_the_queue(tmp_path: Path) -> None:
    """Ensure a file skipped during review is not queued again until it changes.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    folder = h.folders.create(path=h.inbox)
    _write(h.inbox, "holiday.jpg")
    session = watch_session_id(folder.id)
    queued_id = h.service.run_cycle(folder.id).activity_ids[-1]
    [row] = h.working_set.list_files(session)
    h.working_set.skip(row.id)

    restarted = h.new_service().run_cycle(folder.id)

    assert h.activity.get(queued_id).action is WatchAction.SKIPPED
    assert (restarted.detected, restarted.queued) == (0, 0)

    _write(h.inbox, "holiday.jpg", "edited photo")
    changed = h.new_service().run_cycle(folder.id)

    assert (changed.detected, changed.queued) == (1, 1)
    [fresh] = h.working_set.list_files(session)
    assert fresh.user_decision is Decision.PENDING
    assert watch_folder_id(session) == folder.id
    assert watch_folder_id("scan-1234") is None
