"""Session working set: scanned files awaiting review and organization."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, Field

from jdorg.ingestion.models import ScannedFileDraft
from jdorg.state.errors import InvalidInputError
from jdorg.state.models import Confidence, Decision, ScannedFile
from jdorg.state.store import DataStore, validated

from .models import OrganizeItem

LOGGER = logging.getLogger(__name__)

TABLE = "scanned_files"

Draft = Union[ScannedFileDraft, Mapping[str, Any]]


class BatchAddResult(BaseModel):
    """Outcome of a best-effort batch insert."""

    added: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class SessionStats(BaseModel):
    """Per-session counts used by review screens."""

    total: int = 0
    pending: int = 0
    accepted: int = 0
    changed: int = 0
    skipped: int = 0
    with_suggestion: int = 0
    without_suggestion: int = 0
    total_size: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)


def _coerce_decision(value: Decision | str) -> Decision:
    try:
        return value if isinstance(value, Decision) else Decision(str(value).lower())
    except ValueError as exc:
        raise InvalidInputError(f"Unknown decision {value!r}.") from exc


class SessionWorkingSet:
    """Store and review scanned files grouped by scan session.

    A row's decision starts ``pending`` and may move once to ``accepted``,
    ``changed`` (with a user target) or ``skipped``.
    """

    def __init__(self, store: DataStore) -> None:
        self._store = store

    def add(self, draft: Draft) -> ScannedFile:
        """Store one draft as a ``pending`` row.

        Raises:
            InvalidInputError: If the draft does not validate.
        """
        data = draft.model_dump() if isinstance(draft, BaseModel) else dict(draft)
        data.pop("id", None)
        data["user_decision"] = Decision.PENDING
        data["user_target"] = None
        if not str(data.get("scan_session_id") or "").strip():
            raise InvalidInputError("scan_session_id is required.")
        row = validated(ScannedFile, data)
        return self._store.insert(TABLE, row)

    def add_batch(self, drafts: Iterable[Draft]) -> BatchAddResult:
        """Store drafts best-effort; invalid ones are counted and skipped."""
        result = BatchAddResult()
        with self._store.transaction():
            for draft in drafts:
                try:
                    self.add(draft)
                except InvalidInputError as exc:
                    result.skipped += 1
                    result.errors.append(str(exc))
                    continue
                result.added += 1
        if result.skipped:
            LOGGER.info("Skipped %d invalid scan rows", result.skipped)
        return result

    def get(self, file_id: int) -> Optional[ScannedFile]:
        return self._store.get(TABLE, file_id)  # type: ignore[return-value]

    def list_files(
        self,
        session_id: str,
        *,
        decision: Decision | str | None = None,
        file_type: str | None = None,
        has_suggestion: bool | None = None,
    ) -> list[ScannedFile]:
        """Return the session's rows ordered by filename."""
        wanted = _coerce_decision(decision) if decision is not None else None

        def _matches(row: ScannedFile) -> bool:
            if row.scan_session_id != session_id:
                return False
            if wanted is not None and row.user_decision is not wanted:
                return False
            if file_type is not None and row.file_type != file_type:
                return False
            if has_suggestion is not None and (row.suggested_target is not None) != has_suggestion:
                return False
            return True

        rows = self._store.select(TABLE, _matches)
        return sorted(rows, key=lambda row: (row.filename.lower(), row.id))

    def set_decision(
        self,
        file_id: int,
        decision: Decision | str,
        target_folder: str | None = None,
    ) -> ScannedFile:
        """Record the review decision for a pending row.

        Raises:
            RecordNotFoundError: If the row does not exist.
            InvalidInputError: If the transition or its arguments are not allowed.
        """
        chosen = _coerce_decision(decision)
        if chosen is Decision.PENDING:
            raise InvalidInputError("Rows cannot be returned to pending.")
        target = (target_folder or "").strip() or None
        with self._store.transaction():
            current: ScannedFile = self._store.require(TABLE, file_id)  # type: ignore[assignment]
            if current.user_decision is not Decision.PENDING:
                raise InvalidInputError(
                    f"File {file_id} already has decision {current.user_decision.value}."
                )
            if chosen is Decision.CHANGED and target is None:
                raise InvalidInputError("A changed decision requires a target folder.")
            if chosen is Decision.ACCEPTED and current.suggested_target is None:
                raise InvalidInputError(f"File {file_id} has no suggestion to accept.")
            changes = {
                "user_decision": chosen,
                "user_target": target if chosen is Decision.CHANGED else None,
            }
            return self._store.update(TABLE, file_id, changes)  # type: ignore[return-value]

    def accept(self, file_id: int) -> ScannedFile:
        return self.set_decision(file_id, Decision.ACCEPTED)

    def skip(self, file_id: int) -> ScannedFile:
        return self.set_decision(file_id, Decision.SKIPPED)

    def change_target(self, file_id: int, target_folder: str) -> ScannedFile:
        return self.set_decision(file_id, Decision.CHANGED, target_folder)

    def update_suggestion(
        self,
        file_id: int,
        folder: str | None,
        *,
        rule_id: int | None = None,
        confidence: Confidence | str = Confidence.MEDIUM,
    ) -> ScannedFile:
        """Replace a row's suggestion. Unknown confidence values fall back to medium."""
        try:
            level = confidence if isinstance(confidence, Confidence) else Confidence(confidence)
        except ValueError:
            level = Confidence.MEDIUM
        changes = {
            "suggested_target": folder,
            "suggested_rule_id": rule_id,
            "suggestion_confidence": level if folder else Confidence.NONE,
        }
        return self._store.update(TABLE, file_id, changes)  # type: ignore[return-value]

    def delete(self, file_id: int) -> bool:
        return self._store.delete(TABLE, file_id)

    def clear_session(self, session_id: str | None = None) -> int:
        """Delete the rows of one session, or of every session when ``None``."""
        removed = self._store.delete_where(
            TABLE, lambda row: session_id is None or row.scan_session_id == session_id
        )
        LOGGER.debug("Cleared %d scanned rows (session=%s)", removed, session_id)
        return removed

    def ready_to_organize(self, session_id: str) -> list[ScannedFile]:
        """Return accepted or changed rows that resolve to a target folder."""
        rows = self.list_files(session_id)
        return [
            row
            for row in rows
            if row.user_decision in (Decision.ACCEPTED, Decision.CHANGED)
            and row.final_target is not None
        ]

    def stats(self, session_id: str) -> SessionStats:
        rows = self.list_files(session_id)
        decisions = Counter(row.user_decision for row in rows)
        with_suggestion = sum(1 for row in rows if row.suggested_target is not None)
        return SessionStats(
            total=len(rows),
            pending=decisions[Decision.PENDING],
            accepted=decisions[Decision.ACCEPTED],
            changed=decisions[Decision.CHANGED],
            skipped=decisions[Decision.SKIPPED],
            with_suggestion=with_suggestion,
            without_suggestion=len(rows) - with_suggestion,
            total_size=sum(row.file_size for row in rows),
            by_type=dict(Counter(row.file_type for row in rows)),
        )

    def count(self, session_id: str | None = None) -> int:
        if session_id is None:
            return self._store.count(TABLE)
        return self._store.count(TABLE, lambda row: row.scan_session_id == session_id)

    def sessions(self) -> list[str]:
        """Return the distinct session ids currently holding rows."""
        return sorted({row.scan_session_id for row in self._store.select(TABLE)})


def to_organize_items(rows: Iterable[ScannedFile]) -> list[OrganizeItem]:
    """Turn ready rows into executor items.

    The suggesting rule is credited only when the suggestion was accepted as is.
    """
    items: list[OrganizeItem] = []
    for row in rows:
        target = row.final_target
        if target is None:
            continue
        rule_id = row.suggested_rule_id if row.user_decision is Decision.ACCEPTED else None
        items.append(
            OrganizeItem(
                source_path=Path(row.path),
                target_folder=target,
                rule_id=rule_id,
                scanned_file_id=row.id,
            )
        )
    return items


__all__ = [
    "BatchAddResult",
    "SessionStats",
    "SessionWorkingSet",
    "to_organize_items",
]
