"""Persistent record models shared by every store component."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


class RuleType(str, Enum):
    """Predicate kinds a rule can evaluate."""

    EXTENSION = "extension"
    KEYWORD = "keyword"
    PATH = "path"
    REGEX = "regex"
    COMPOUND = "compound"
    DATE = "date"


class TargetType(str, Enum):
    """Level of the folder index a rule points at."""

    FOLDER = "folder"
    CATEGORY = "category"
    AREA = "area"


class Confidence(str, Enum):
    """Classification confidence, ordered ``none < low < medium < high``."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def meets(self, threshold: "Confidence") -> bool:
        """Return whether this confidence is at least ``threshold``."""
        return self.rank >= threshold.rank


_CONFIDENCE_RANK = {
    Confidence.NONE: 0,
    Confidence.LOW: 1,
    Confidence.MEDIUM: 2,
    Confidence.HIGH: 3,
}


class Decision(str, Enum):
    """Review decision recorded against a scanned file."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    CHANGED = "changed"
    SKIPPED = "skipped"


class FileStatus(str, Enum):
    """Lifecycle state of a history ledger row."""

    MOVED = "moved"
    TRACKED = "tracked"
    UNDONE = "undone"
    DELETED = "deleted"


class WatchAction(str, Enum):
    """Action recorded for a file seen by the watcher."""

    DETECTED = "detected"
    QUEUED = "queued"
    AUTO_ORGANIZED = "auto_organized"
    SKIPPED = "skipped"
    ERROR = "error"


class ConflictPolicy(str, Enum):
    """How the executor reacts when the destination name is taken."""

    RENAME = "rename"
    SKIP = "skip"
    OVERWRITE = "overwrite"


class RecordModel(BaseModel):
    """Base class for persisted records."""

    model_config = ConfigDict(extra="forbid")

    id: int = 0


class Rule(RecordModel):
    """User-defined predicate mapping files to an index target."""

    name: str
    rule_type: RuleType
    pattern: str
    target_type: TargetType
    target_id: str
    priority: int = Field(default=50, ge=0, le=100)
    is_active: bool = True
    match_count: int = 0
    exclude_pattern: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ScannedFile(RecordModel):
    """A file discovered by a scan, with its suggestion and review decision."""

    scan_session_id: str
    filename: str
    path: str
    parent_folder: str = ""
    file_extension: str = ""
    file_type: str = "other"
    file_size: int = 0
    file_modified_at: Optional[datetime] = None
    suggested_target: Optional[str] = None
    suggested_rule_id: Optional[int] = None
    suggestion_confidence: Confidence = Confidence.NONE
    user_decision: Decision = Decision.PENDING
    user_target: Optional[str] = None
    scanned_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _changed_requires_target(self) -> "ScannedFile":
        if self.user_decision is Decision.CHANGED and not self.user_target:
            raise ValueError("A changed decision requires a user target.")
        return self

    @property
    def final_target(self) -> Optional[str]:
        """Return the folder the file will be organized into, if any."""
        return self.user_target or self.suggested_target


class OrganizedFile(RecordModel):
    """History ledger row describing one executed organize operation."""

    filename: str
    original_path: str
    current_path: str
    target_folder: str
    file_extension: str = ""
    file_type: str = "other"
    file_size: int = 0
    matched_rule_id: Optional[int] = None
    status: FileStatus = FileStatus.MOVED
    organized_at: datetime = Field(default_factory=utcnow)
    notes: List[str] = Field(default_factory=list)


class WatchedFolder(RecordModel):
    """Directory monitored for automatic organization."""

    name: str
    path: str
    is_active: bool = True
    auto_organize: bool = False
    confidence_threshold: Confidence = Confidence.MEDIUM
    include_subdirs: bool = False
    file_types: List[str] = Field(default_factory=list)
    notify_on_organize: bool = True
    files_processed: int = 0
    files_organized: int = 0
    last_checked_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _threshold_is_meaningful(self) -> "WatchedFolder":
        if self.confidence_threshold is Confidence.NONE:
            raise ValueError("confidence_threshold must be low, medium, or high.")
        return self


class WatchActivity(RecordModel):
    """Append-only log row describing what the watcher did with a file."""

    watched_folder_id: int
    filename: str
    path: str
    file_extension: str = ""
    file_type: str = "other"
    file_size: int = 0
    action: WatchAction
    matched_rule_id: Optional[int] = None
    target_folder: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class StoreDocument(BaseModel):
    """Serialized form of the whole data store."""

    version: int = 1
    sequences: Dict[str, int] = Field(default_factory=dict)
    rules: List[Rule] = Field(default_factory=list)
    scanned_files: List[ScannedFile] = Field(default_factory=list)
    organized_files: List[OrganizedFile] = Field(default_factory=list)
    watched_folders: List[WatchedFolder] = Field(default_factory=list)
    watch_activity: List[WatchActivity] = Field(default_factory=list)


__all__ = [
    "utcnow",
    "RuleType",
    "TargetType",
    "Confidence",
    "Decision",
    "FileStatus",
    "WatchAction",
    "ConflictPolicy",
    "RecordModel",
    "Rule",
    "ScannedFile",
    "OrganizedFile",
    "WatchedFolder",
    "WatchActivity",
    "StoreDocument",
]
