"""Session working set tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from jdorg.ingestion import ScannedFileDraft
from jdorg.organization import SessionWorkingSet, to_organize_items
from jdorg.state import DataStore, InvalidInputError, RecordNotFoundError
from jdorg.state.models import Confidence, Decision


def _draft(
    name: str, session: str = "s1", target: str | None = "11.01", **extra: object
) -> ScannedFileDraft:
    values = {
        "scan_session_id": session,
        "filename": name,
        "path": f"/inbox/{name}",
        "file_extension": name.rsplit(".", 1)[-1],
        "file_type": "document",
        "file_size": 10,
        "suggested_target": target,
        "suggested_rule_id": 7 if target else None,
        "suggestion_confidence": Confidence.HIGH if target else Confidence.NONE,
    }
    values.update(extra)
    return ScannedFileDraft(**values)


def _working_set() -> SessionWorkingSet:
    return SessionWorkingSet(DataStore())


def test_new_rows_start_pending() -> None:
    working_set = _working_set()

    row = working_set.add(_draft("a.pdf"))

    assert row.id == 1
    assert row.user_decision is Decision.PENDING
    assert row.user_target is None
    assert row.final_target == "11.01"


def test_add_batch_skips_invalid_rows() -> None:
    working_set = _working_set()

    result = working_set.add_batch(
        [
            _draft("a.pdf"),
            {"scan_session_id": "s1", "filename": "b.pdf"},
            {"scan_session_id": "  ", "filename": "c.pdf", "path": "/inbox/c.pdf"},
        ]
    )

    assert (result.added, result.skipped) == (1, 2)
    assert len(result.errors) == 2
    assert working_set.count("s1") == 1


def test_changed_decision_overrides_suggestion() -> None:
    working_set = _working_set()
    row = working_set.add(_draft("a.pdf", target="20.01"))

    changed = working_set.change_target(row.id, "20.03")

    assert changed.user_decision is Decision.CHANGED
    assert changed.user_target == "20.03"
    assert changed.final_target == "20.03"


def test_decision_is_recorded_only_once() -> None:
    working_set = _working_set()
    row = working_set.add(_draft("a.pdf"))
    working_set.accept(row.id)

    with pytest.raises(InvalidInputError):
        working_set.skip(row.id)
    with pytest.raises(InvalidInputError):
        working_set.set_decision(row.id, "pending")
    with pytest.raises(RecordNotFoundError):
        working_set.accept(999)


def test_decision_arguments_are_validated() -> None:
    working_set = _working_set()
    unsuggested = working_set.add(_draft("b.pdf", target=None))

    with pytest.raises(InvalidInputError):
        working_set.accept(unsuggested.id)
    with pytest.raises(InvalidInputError):
        working_set.set_decision(unsuggested.id, "changed", "   ")
    with pytest.raises(InvalidInputError):
        working_set.set_decision(unsuggested.id, "maybe")
    assert working_set.get(unsuggested.id).user_decision is Decision.PENDING


def test_ready_to_organize_includes_accepted_and_changed_only() -> None:
    working_set = _working_set()
    accepted = working_set.add(_draft("accepted.pdf"))
    changed = working_set.add(_draft("changed.pdf", target=None))
    skipped = working_set.add(_draft("skipped.pdf"))
    pending = working_set.add(_draft("pending.pdf"))
    other_session = working_set.add(_draft("other.pdf", session="s2"))
    working_set.accept(accepted.id)
    working_set.change_target(changed.id, "20.03")
    working_set.skip(skipped.id)
    working_set.accept(other_session.id)

    ready = working_set.ready_to_organize("s1")

    assert [row.id for row in ready] == [accepted.id, changed.id]
    assert pending.id not in {row.id for row in ready}

    items = to_organize_items(ready)
    assert [(item.source_path, item.target_folder, item.rule_id) for item in items] == [
        (Path("/inbox/accepted.pdf"), "11.01", 7),
        (Path("/inbox/changed.pdf"), "20.03", None),
    ]
    assert items[0].scanned_file_id == accepted.id


def test_list_filters_and_stats() -> None:
    working_set = _working_set()
    working_set.add(_draft("b.pdf"))
    working_set.add(_draft("A.jpg", target=None, file_type="image", file_size=5))
    skipped = working_set.add(_draft("c.pdf"))
    working_set.skip(skipped.id)

    assert [row.filename for row in working_set.list_files("s1")] == ["A.jpg", "b.pdf", "c.pdf"]
    assert [row.filename for row in working_set.list_files("s1", file_type="image")] == ["A.jpg"]
    assert [row.filename for row in working_set.list_files("s1", decision="skipped")] == ["c.pdf"]
    assert len(working_set.list_files("s1", has_suggestion=False)) == 1

    stats = working_set.stats("s1")
    assert (stats.total, stats.pending, stats.skipped) == (3, 2, 1)
    assert (stats.with_suggestion, stats.without_suggestion) == (2, 1)
    assert stats.total_size == 25
    assert stats.by_type == {"image": 1, "document": 2}


def test_update_suggestion_and_clear_session() -> None:
    working_set = _working_set()
    row = working_set.add(_draft("a.pdf", target=None))
    working_set.add(_draft("b.pdf", session="s2"))

    updated = working_set.update_suggestion(row.id, "21.01", rule_id=3, confidence="bogus")
    assert updated.suggested_target == "21.01"
    assert updated.suggestion_confidence is Confidence.MEDIUM

    cleared = working_set.update_suggestion(row.id, None)
    assert cleared.suggestion_confidence is Confidence.NONE

    assert working_set.sessions() == ["s1", "s2"]
    assert working_set.clear_session("s1") == 1
    assert working_set.sessions() == ["s2"]
    assert working_set.clear_session() == 1
    assert working_set.count() == 0
