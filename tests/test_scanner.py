"""Directory scanner and scan pipeline tests."""

from __future__ import annotations

import threading
from pathlib import Path

from jdorg.classification import RuleClassifier, RuleStore
from jdorg.ingestion import DirectoryScanner, ScanProgress
from jdorg.ingestion.pipeline import ScanPipeline
from jdorg.organization import ConfiguredIndex, SessionWorkingSet
from jdorg.state import DataStore
from jdorg.state.models import Confidence


def _touch(path: Path, content: str = "data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _tree(root: Path) -> None:
    """Create a small tree with noise entries.

    Args:
        root: Directory to populate.
    """
    _touch(root / "invoice_2024.pdf")
    _touch(root / "IMG_0001.jpg")
    _touch(root / ".hidden.txt")
    _touch(root / "~$draft.docx")
    _touch(root / ".DS_Store")
    _touch(root / "node_modules" / "pkg" / "index.js")
    _touch(root / "nested" / "deeper" / "notes.txt")


def test_scanner_skips_noise_and_respects_depth(tmp_path: Path) -> None:
    """Ensure noise directories, hidden files, and deep files are skipped.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    _tree(tmp_path)

    shallow = DirectoryScanner(max_depth=1)
    names = [draft.filename for draft in shallow.scan(tmp_path, session_id="s")]
    assert names == ["IMG_0001.jpg", "invoice_2024.pdf"]

    deep = DirectoryScanner()
    drafts = {draft.filename: draft for draft in deep.scan(tmp_path, session_id="s")}
    assert set(drafts) == {"IMG_0001.jpg", "invoice_2024.pdf", "notes.txt"}
    assert drafts["notes.txt"].parent_folder == "deeper"
    assert drafts["IMG_0001.jpg"].file_type == "image"
    assert drafts["invoice_2024.pdf"].file_extension == "pdf"
    assert drafts["invoice_2024.pdf"].scan_session_id == "s"


def test_scanner_includes_hidden_when_requested(tmp_path: Path) -> None:
    """Ensure hidden files appear when include_hidden is set.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    _tree(tmp_path)

    scanner = DirectoryScanner(max_depth=0, include_hidden=True)
    names = {draft.filename for draft in scanner.scan(tmp_path, session_id="s")}

    assert ".hidden.txt" in names
    assert ".DS_Store" not in names
    assert "~$draft.docx" not in names


def test_scanner_reports_progress_and_missing_root(tmp_path: Path) -> None:
    """Ensure progress is reported and a missing root yields an error entry.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    _tree(tmp_path)
    seen: list[ScanProgress] = []

    list(DirectoryScanner().scan(tmp_path, session_id="s", progress=seen.append))
    assert seen[-1].scanned_files == 3
    assert seen[-1].total_size == 12

    missing: list[ScanProgress] = []
    scanner = DirectoryScanner()
    assert list(scanner.scan(tmp_path / "nope", session_id="s", progress=missing.append)) == []
    assert missing[-1].errors


def test_scanner_stops_when_cancelled(tmp_path: Path) -> None:
    """Ensure cancellation stops the walk without raising.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    for index in range(5):
        _touch(tmp_path / f"file_{index}.txt")
    cancel = threading.Event()
    found = []

    for draft in DirectoryScanner().scan(tmp_path, session_id="s", cancel=cancel):
        found.append(draft.filename)
        if len(found) == 2:
            cancel.set()

    assert found == ["file_0.txt", "file_1.txt"]


def _pipeline(tmp_path: Path) -> tuple[ScanPipeline, RuleStore, SessionWorkingSet]:
    """Build a pipeline over an in-memory store with a two-folder index.

    Args:
        tmp_path: Temporary directory provided by pytest.

    Returns:
        tuple: Pipeline, rule store, and working set.
    """
    store = DataStore()
    rules = RuleStore(store)
    working_set = SessionWorkingSet(store)
    index = ConfiguredIndex(
        tmp_path / "index",
        areas={"10-19": "Admin", "20-29": "Media"},
        categories={"11": "Finance", "21": "Photos"},
        folders={"11.01": "Invoices", "21.01": "Camera"},
    )
    pipeline = ScanPipeline(
        DirectoryScanner(), RuleClassifier(), rules, working_set, index, chunk_size=2
    )
    return pipeline, rules, working_set


def test_pipeline_stores_suggestions(tmp_path: Path) -> None:
    """Ensure scanned files are stored with resolved suggestions.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    source = tmp_path / "inbox"
    _tree(source)
    pipeline, rules, working_set = _pipeline(tmp_path)
    rules.create(
        name="Photos", rule_type="extension", pattern="jpg", target_type="category", target_id="21"
    )
    rules.create(
        name="Unknown folder",
        rule_type="extension",
        pattern="txt",
        target_type="folder",
        target_id="99.99",
    )

    result = pipeline.run(source)

    assert result.added == 3
    assert result.session_id.startswith("scan-")
    rows = {row.filename: row for row in working_set.list_files(result.session_id)}
    assert rows["IMG_0001.jpg"].suggested_target == "21.01"
    assert rows["IMG_0001.jpg"].suggestion_confidence is Confidence.HIGH
    assert rows["notes.txt"].suggested_target is None
    assert rows["invoice_2024.pdf"].suggested_target is None


def test_pipeline_rescan_replaces_session_rows(tmp_path: Path) -> None:
    """Ensure re-scanning into a session replaces its previous rows.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    source = tmp_path / "inbox"
    _touch(source / "a.txt")
    pipeline, _, working_set = _pipeline(tmp_path)
    first = pipeline.run(source)
    _touch(source / "b.txt")

    second = pipeline.run(source, session_id=first.session_id)

    assert second.session_id == first.session_id
    assert [row.filename for row in working_set.list_files(first.session_id)] == ["a.txt", "b.txt"]


def test_pipeline_cancellation_keeps_partial_results(tmp_path: Path) -> None:
    """Ensure a cancelled scan keeps the rows found before cancellation.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    source = tmp_path / "inbox"
    for index in range(6):
        _touch(source / f"file_{index}.txt")
    pipeline, _, working_set = _pipeline(tmp_path)
    cancel = threading.Event()

    def _progress(state: ScanProgress) -> None:
        if state.scanned_files >= 3:
            cancel.set()

    result = pipeline.run(source, cancel=cancel, progress=_progress)

    assert result.cancelled is True
    assert result.added == 3
    assert working_set.count(result.session_id) == 3
