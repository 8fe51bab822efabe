"""Operation executor and file move tests."""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from pathlib import Path

import pytest

from jdorg.classification import RuleStore
from jdorg.organization import (
    ConfiguredIndex,
    ExecutionOptions,
    ItemOutcome,
    MoveTimeoutError,
    OperationExecutor,
    OrganizeItem,
    UndoOutcome,
)
from jdorg.organization import fileops
from jdorg.state import AuditLog, DataStore, FileStatus, HistoryLedger
from jdorg.state.models import ConflictPolicy

_REAL_RENAME = os.rename


@dataclass
class _Harness:
    store: DataStore
    ledger: HistoryLedger
    rules: RuleStore
    executor: OperationExecutor
    inbox: Path
    invoices: Path


def _harness(tmp_path: Path) -> _Harness:
    """Build an executor over a one-folder index rooted in ``tmp_path``.

    Args:
        tmp_path: Temporary directory provided by pytest.

    Returns:
        _Harness: Wired components plus the inbox and destination directories.
    """
    store = DataStore(tmp_path / "store.json")
    ledger = HistoryLedger(store)
    rules = RuleStore(store)
    index = ConfiguredIndex(
        tmp_path / "index",
        areas={"10-19": "Admin"},
        categories={"11": "Finance"},
        folders={"11.01": "Invoices"},
    )
    executor = OperationExecutor(
        store, ledger, rules, index, audit=AuditLog(tmp_path / "audit.log")
    )
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    invoices = tmp_path / "index" / "10-19 Admin" / "11 Finance" / "11.01 Invoices"
    return _Harness(store, ledger, rules, executor, inbox, invoices)


def _file(directory: Path, name: str, content: str = "payload") -> Path:
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path


def _item(path: Path, rule_id: int | None = None) -> OrganizeItem:
    return OrganizeItem(source_path=path, target_folder="11.01", rule_id=rule_id)


def test_apply_moves_file_and_records_history(tmp_path: Path) -> None:
    """Ensure a successful move writes the ledger row and credits the rule.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    rule = h.rules.create(
        name="Invoices",
        rule_type="keyword",
        pattern="invoice",
        target_type="folder",
        target_id="11.01",
    )
    source = _file(h.inbox, "invoice.pdf")

    [result] = h.executor.apply([_item(source, rule.id)])

    assert result.ok
    assert result.destination == h.invoices / "invoice.pdf"
    assert not source.exists()
    assert (h.invoices / "invoice.pdf").read_text(encoding="utf-8") == "payload"
    record = h.ledger.get(result.record_id)
    assert record is not None
    assert record.status is FileStatus.MOVED
    assert record.original_path == str(source)
    assert record.file_type == "document"
    assert record.file_size == len("payload")
    assert h.rules.get(rule.id).match_count == 1
    assert "move organized_file#1" in (tmp_path / "audit.log").read_text(encoding="utf-8")


def test_dry_run_touches_nothing(tmp_path: Path) -> None:
    """Ensure dry runs report destinations without moving or recording.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    source = _file(h.inbox, "invoice.pdf")

    [result] = h.executor.apply([_item(source)], ExecutionOptions(dry_run=True))

    assert result.ok and result.dry_run
    assert result.destination == h.invoices / "invoice.pdf"
    assert source.exists()
    assert not h.invoices.exists()
    assert h.ledger.count() == 0


@pytest.mark.parametrize(
    ("policy", "outcome", "expected_name"),
    [
        (ConflictPolicy.RENAME, ItemOutcome.SUCCESS, "invoice_1.pdf"),
        (ConflictPolicy.SKIP, ItemOutcome.SKIPPED, "invoice.pdf"),
        (ConflictPolicy.OVERWRITE, ItemOutcome.SUCCESS, "invoice.pdf"),
    ],
)
def test_conflict_policies(
    tmp_path: Path, policy: ConflictPolicy, outcome: ItemOutcome, expected_name: str
) -> None:
    """Ensure each conflict policy resolves an occupied destination.

    Args:
        tmp_path: Temporary directory provided by pytest.
        policy: Conflict policy under test.
        outcome: Expected item outcome.
        expected_name: Expected destination filename.
    """
    h = _harness(tmp_path)
    h.invoices.mkdir(parents=True)
    _file(h.invoices, "invoice.pdf", "existing")
    source = _file(h.inbox, "invoice.pdf", "incoming")

    [result] = h.executor.apply([_item(source)], ExecutionOptions(conflict_policy=policy))

    assert result.outcome is outcome
    assert result.conflict_applied is True
    assert result.destination == h.invoices / expected_name
    if policy is ConflictPolicy.SKIP:
        assert source.exists()
        assert (h.invoices / "invoice.pdf").read_text(encoding="utf-8") == "existing"
    else:
        assert not source.exists()
        assert (h.invoices / expected_name).read_text(encoding="utf-8") == "incoming"
    if policy is ConflictPolicy.RENAME:
        assert (h.invoices / "invoice.pdf").read_text(encoding="utf-8") == "existing"


def test_cross_device_move_falls_back_to_copy(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Ensure EXDEV renames are completed by copy and delete.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to simulate a cross-device rename.
    """

    def _exdev(src: object, dst: object) -> None:
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(fileops.os, "rename", _exdev)
    h = _harness(tmp_path)
    source = _file(h.inbox, "invoice.pdf")

    [result] = h.executor.apply([_item(source)])

    assert result.ok
    assert not source.exists()
    assert (h.invoices / "invoice.pdf").read_text(encoding="utf-8") == "payload"
    assert not (h.invoices / ".invoice.pdf.partial").exists()


def test_copy_past_deadline_leaves_no_partial_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Ensure a timed-out cross-device copy is cleaned up and the source kept.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to simulate a cross-device rename.
    """

    def _exdev(src: object, dst: object) -> None:
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(fileops.os, "rename", _exdev)
    source = _file(tmp_path, "big.bin")
    target_dir = tmp_path / "dest"
    target_dir.mkdir()

    with pytest.raises(MoveTimeoutError):
        fileops.move_file(source, target_dir / "big.bin", timeout=-1)

    assert source.exists()
    assert list(target_dir.iterdir()) == []


def test_failure_is_isolated_per_item(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure one failing item does not stop the rest of the batch.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to deny one rename.
    """

    def _deny_b(src: object, dst: object) -> None:
        if Path(str(src)).name == "b.pdf":
            raise PermissionError(errno.EACCES, "Permission denied")
        _REAL_RENAME(src, dst)  # type: ignore[arg-type]

    monkeypatch.setattr(fileops.os, "rename", _deny_b)
    h = _harness(tmp_path)
    sources = [_file(h.inbox, name) for name in ("a.pdf", "b.pdf", "c.pdf")]

    results = h.executor.apply([_item(path) for path in sources])

    assert [result.outcome for result in results] == [
        ItemOutcome.SUCCESS,
        ItemOutcome.FAILURE,
        ItemOutcome.SUCCESS,
    ]
    assert "Permission denied" in (results[1].reason or "")
    assert sources[1].exists()
    assert h.ledger.count() == 2


def test_missing_source_and_unknown_folder_fail(tmp_path: Path) -> None:
    """Ensure invalid requests fail without raising.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    present = _file(h.inbox, "x.pdf")

    results = h.executor.apply(
        [
            _item(h.inbox / "ghost.pdf"),
            OrganizeItem(source_path=present, target_folder="42.42"),
        ]
    )

    assert [result.outcome for result in results] == [ItemOutcome.FAILURE, ItemOutcome.FAILURE]
    assert "does not exist" in (results[0].reason or "")
    assert "not in the index" in (results[1].reason or "")
    assert present.exists()


def test_track_only_records_without_moving(tmp_path: Path) -> None:
    """Ensure track-only items are recorded in place.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    source = _file(h.inbox, "contract.pdf")

    [result] = h.executor.apply(
        [OrganizeItem(source_path=source, target_folder="11.01", track_only=True)]
    )

    assert result.ok
    assert source.exists()
    assert h.ledger.get(result.record_id).status is FileStatus.TRACKED
    assert h.executor.undo(result.record_id).outcome is UndoOutcome.NOOP


def test_undo_restores_file_once(tmp_path: Path) -> None:
    """Ensure undo moves the file back and is a no-op the second time.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    source = _file(h.inbox, "invoice.pdf")
    [result] = h.executor.apply([_item(source)])
    assert h.ledger.find_by_original_path(source) is not None

    first = h.executor.undo(result.record_id)
    second = h.executor.undo(result.record_id)

    assert first.outcome is UndoOutcome.UNDONE
    assert first.restored_path == source
    assert source.read_text(encoding="utf-8") == "payload"
    assert not (h.invoices / "invoice.pdf").exists()
    assert second.outcome is UndoOutcome.NOOP
    assert h.ledger.get(result.record_id).status is FileStatus.UNDONE
    assert h.ledger.find_by_original_path(source) is None


def test_undo_blockers_leave_record_moved(tmp_path: Path) -> None:
    """Ensure undo fails cleanly when the file vanished or the origin is occupied.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    occupied = _file(h.inbox, "a.pdf")
    vanished = _file(h.inbox, "b.pdf")
    first, second = h.executor.apply([_item(occupied), _item(vanished)])
    _file(h.inbox, "a.pdf", "replacement")
    (h.invoices / "b.pdf").unlink()

    results = h.executor.undo_batch([first.record_id, second.record_id, 999])

    assert [result.outcome for result in results] == [UndoOutcome.FAILURE] * 3
    assert "occupied" in (results[0].reason or "")
    assert "no longer exists" in (results[1].reason or "")
    assert h.ledger.get(first.record_id).status is FileStatus.MOVED
    assert occupied.read_text(encoding="utf-8") == "replacement"
    assert results[1].status is FileStatus.MOVED
    assert results[2].status is None
    assert "999" in (results[2].reason or "")


def test_file_already_in_target_folder_is_skipped(tmp_path: Path) -> None:
    """Ensure a file already sitting in its folder is not renamed onto itself.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    h = _harness(tmp_path)
    h.invoices.mkdir(parents=True)
    placed = _file(h.invoices, "invoice.pdf")

    [result] = h.executor.apply([_item(placed)])

    assert result.outcome is ItemOutcome.SKIPPED
    assert result.reason == "file is already in place"
    assert placed.read_text(encoding="utf-8") == "payload"
    assert sorted(path.name for path in h.invoices.iterdir()) == ["invoice.pdf"]
    assert h.ledger.count() == 0


def test_failed_history_write_restores_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Ensure a move whose ledger row cannot be saved is moved back.

    Args:
        tmp_path: Temporary directory provided by pytest.
        monkeypatch: Pytest fixture used to make the store write fail.
    """
    h = _harness(tmp_path)
    rule = h.rules.create(
        name="Invoices",
        rule_type="keyword",
        pattern="invoice",
        target_type="folder",
        target_id="11.01",
    )
    source = _file(h.inbox, "invoice.pdf")

    def _disk_full() -> None:
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(h.store, "_persist", _disk_full)

    [result] = h.executor.apply([_item(source, rule.id)])

    assert result.outcome is ItemOutcome.FAILURE
    assert "No space left on device" in (result.reason or "")
    assert f"file restored to {source}" in (result.reason or "")
    assert source.read_text(encoding="utf-8") == "payload"
    assert not (h.invoices / "invoice.pdf").exists()
    assert h.ledger.count() == 0
    assert h.rules.get(rule.id).match_count == 0
