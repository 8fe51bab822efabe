"""Executor request and result models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from jdorg.state.models import ConflictPolicy, FileStatus


class OrganizeItem(BaseModel):
    """One file to organize.

    Attributes:
        source_path: Current location of the file.
        target_folder: Folder number in the index (``11.01``).
        rule_id: Rule credited with the match, if any.
        track_only: Record the file in the ledger without moving it.
        scanned_file_id: Working-set row the item came from, if any.
    """

    source_path: Path
    target_folder: str
    rule_id: Optional[int] = None
    track_only: bool = False
    scanned_file_id: Optional[int] = None


class ExecutionOptions(BaseModel):
    """Options applied to a whole batch.

    Attributes:
        conflict_policy: Strategy used when the destination name is taken.
        dry_run: Compute destinations without touching the filesystem or ledger.
        move_timeout_seconds: Deadline for a single cross-device copy.
    """

    conflict_policy: ConflictPolicy = ConflictPolicy.RENAME
    dry_run: bool = False
    move_timeout_seconds: float = Field(default=120.0, gt=0)


class ItemOutcome(str, Enum):
    """Per-item executor outcome."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILURE = "failure"


class ItemResult(BaseModel):
    """Result of organizing one item.

    Attributes:
        item: The request.
        outcome: Success, skipped, or failure.
        destination: Final (or, for dry runs, would-be) file path.
        record_id: Ledger row written for the item.
        reason: Failure or skip explanation.
        conflict_applied: Whether the conflict policy changed the destination.
        dry_run: Whether the result comes from a dry run.
    """

    item: OrganizeItem
    outcome: ItemOutcome
    destination: Optional[Path] = None
    record_id: Optional[int] = None
    reason: Optional[str] = None
    conflict_applied: bool = False
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is ItemOutcome.SUCCESS


class UndoOutcome(str, Enum):
    """Result of an undo request."""

    UNDONE = "undone"
    NOOP = "noop"
    FAILURE = "failure"


class UndoResult(BaseModel):
    """Outcome of reverting one ledger row."""

    record_id: int
    outcome: UndoOutcome
    status: Optional[FileStatus] = None
    restored_path: Optional[Path] = None
    reason: Optional[str] = None


class BatchSummary(BaseModel):
    """Counts over a list of item results."""

    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[str] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[ItemResult]) -> "BatchSummary":
        summary = cls()
        for result in results:
            if result.outcome is ItemOutcome.SUCCESS:
                summary.succeeded += 1
            elif result.outcome is ItemOutcome.SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1
                summary.failures.append(f"{result.item.source_path}: {result.reason}")
        return summary


__all__ = [
    "OrganizeItem",
    "ExecutionOptions",
    "ItemOutcome",
    "ItemResult",
    "UndoOutcome",
    "UndoResult",
    "BatchSummary",
]
