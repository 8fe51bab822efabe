"""Data models shared by the classification layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from jdorg.ingestion.detectors import TypeDetector, extension_of, normalize_extension
from jdorg.state.models import Confidence, TargetType


class MatchOutcome(str, Enum):
    """Result of evaluating one rule predicate."""

    MATCH = "match"
    NO_MATCH = "no_match"
    DEGRADED = "degraded"


class FileDescriptor(BaseModel):
    """File facts the classifier evaluates rules against."""

    filename: str
    extension: str = ""
    path: str
    parent_folder: str = ""
    file_type: str = "other"
    modified_at: Optional[datetime] = None

    @classmethod
    def from_path(
        cls,
        path: Path,
        *,
        detector: TypeDetector | None = None,
        stat: bool = True,
    ) -> "FileDescriptor":
        """Build a descriptor for ``path``.

        Args:
            path: File location.
            detector: Type detector used to fill ``file_type``.
            stat: Whether to read the modification time from disk.

        Returns:
            FileDescriptor: Descriptor with a normalized extension.
        """
        detector = detector or TypeDetector()
        modified_at = None
        if stat:
            try:
                modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            except OSError:
                modified_at = None
        extension = extension_of(path.name)
        return cls(
            filename=path.name,
            extension=extension,
            path=str(path),
            parent_folder=path.parent.name,
            file_type=detector.for_extension(extension),
            modified_at=modified_at,
        )

    def normalized_extension(self) -> str:
        return normalize_extension(self.extension)


class ClassificationDecision(BaseModel):
    """Classifier output for one file.

    Attributes:
        target_type: Index level of the suggestion, if any.
        target_id: Identifier of the suggested target, if any.
        rule_id: Rule that produced the suggestion; ``None`` for fallback or no match.
        confidence: Confidence attached to the suggestion.
        reason: Short human-readable explanation.
        degraded_rule_ids: Regex rules treated as non-matching because they timed
            out or failed to compile.
    """

    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    rule_id: Optional[int] = None
    confidence: Confidence = Confidence.NONE
    reason: str = "no matching rule"
    degraded_rule_ids: List[int] = Field(default_factory=list)

    @property
    def matched(self) -> bool:
        """Return whether the decision carries a target."""
        return self.target_id is not None


__all__ = ["MatchOutcome", "FileDescriptor", "ClassificationDecision"]
