"""End-to-end flow through scan, review, organize, history, and undo."""

from __future__ import annotations

from pathlib import Path

from jdorg.cli_support import Runtime, build_runtime
from jdorg.config.models import IndexSettings, JdorgConfig, StoreSettings
from jdorg.organization.models import ItemOutcome, OrganizeItem, UndoOutcome
from jdorg.organization.session import to_organize_items
from jdorg.state.models import Confidence, FileStatus


def _runtime(tmp_path: Path) -> Runtime:
    config = JdorgConfig(
        store=StoreSettings(
            path=str(tmp_path / "state" / "store.json"),
            audit_log=str(tmp_path / "state" / "audit.log"),
        ),
        index=IndexSettings(
            root=str(tmp_path / "index"),
            areas={"10-19": "Admin", "20-29": "Media"},
            categories={"11": "Finance", "21": "Photos"},
            folders={"11.01": "Invoices", "21.01": "Camera"},
        ),
    )
    return build_runtime(config)


def test_scan_accept_organize_and_undo(tmp_path: Path) -> None:
    """Organize a small inbox with two rules and revert it.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    runtime = _runtime(tmp_path)
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    for name in ("IMG_0001.jpg", "invoice_2024.pdf", "notes.txt"):
        (inbox / name).write_text(name, encoding="utf-8")
    photos = runtime.rules.create(
        name="Photos",
        rule_type="extension",
        pattern="jpg",
        target_type="folder",
        target_id="21.01",
        priority=80,
    )
    finance = runtime.rules.create(
        name="Finance",
        rule_type="compound",
        pattern="ext:pdf,keyword:invoice",
        target_type="folder",
        target_id="11.01",
        priority=90,
    )

    scan = runtime.pipeline.run(inbox)
    rows = {row.filename: row for row in runtime.working_set.list_files(scan.session_id)}

    assert scan.added == 3
    assert rows["IMG_0001.jpg"].suggested_target == "21.01"
    assert rows["IMG_0001.jpg"].suggestion_confidence is Confidence.HIGH
    assert rows["invoice_2024.pdf"].suggested_target == "11.01"
    assert rows["invoice_2024.pdf"].suggestion_confidence is Confidence.HIGH
    assert rows["notes.txt"].suggested_target is None

    runtime.working_set.accept(rows["IMG_0001.jpg"].id)
    runtime.working_set.accept(rows["invoice_2024.pdf"].id)
    runtime.working_set.skip(rows["notes.txt"].id)
    ready = runtime.working_set.ready_to_organize(scan.session_id)
    items = to_organize_items(ready)
    items.append(
        OrganizeItem(source_path=inbox / "notes.txt", target_folder="11.01", track_only=True)
    )
    results = runtime.executor.apply(items, runtime.execution_options())

    assert sorted(Path(row.path).name for row in ready) == ["IMG_0001.jpg", "invoice_2024.pdf"]
    assert [result.outcome for result in results] == [ItemOutcome.SUCCESS] * 3
    assert all(result.destination is not None and result.destination.exists() for result in results)
    assert (inbox / "notes.txt").exists()

    stats = runtime.ledger.stats()
    assert (stats.total_moved, stats.total_tracked) == (2, 1)
    assert runtime.rules.get(finance.id).match_count == 1
    assert runtime.rules.get(photos.id).match_count == 1

    moved = runtime.ledger.list_files(status=FileStatus.MOVED)
    undone = runtime.executor.undo_batch([record.id for record in moved])

    assert [result.outcome for result in undone] == [UndoOutcome.UNDONE] * 2
    assert (inbox / "IMG_0001.jpg").exists()
    assert (inbox / "invoice_2024.pdf").exists()
    assert runtime.ledger.count(FileStatus.UNDONE) == 2
