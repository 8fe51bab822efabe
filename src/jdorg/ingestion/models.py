"""Data models for directory scanning."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from jdorg.state.models import Confidence


class ScannedFileDraft(BaseModel):
    """A discovered file before it is stored in a session working set."""

    scan_session_id: str
    filename: str
    path: str
    parent_folder: str = ""
    file_extension: str = ""
    file_type: str = "other"
    file_size: int = Field(default=0, ge=0)
    file_modified_at: Optional[datetime] = None
    suggested_target: Optional[str] = None
    suggested_rule_id: Optional[int] = None
    suggestion_confidence: Confidence = Confidence.NONE


@dataclass
class ScanProgress:
    """Running totals reported while a scan walks the tree.

    Attributes:
        scanned_files: Files yielded so far.
        scanned_dirs: Directories entered so far.
        total_size: Bytes of the yielded files.
        current_path: Path most recently visited.
        errors: Per-path error messages for unreadable entries.
    """

    scanned_files: int = 0
    scanned_dirs: int = 0
    total_size: int = 0
    current_path: str = ""
    errors: List[str] = field(default_factory=list)


@dataclass
class ScanResult:
    """Summary of a completed (or cancelled) scan pipeline run.

    Attributes:
        session_id: Working-set session holding the scanned rows.
        added: Rows stored.
        skipped: Drafts rejected by validation.
        cancelled: Whether the scan stopped early on request.
        progress: Final progress snapshot.
    """

    session_id: str
    added: int = 0
    skipped: int = 0
    cancelled: bool = False
    progress: ScanProgress = field(default_factory=ScanProgress)


__all__ = ["ScannedFileDraft", "ScanProgress", "ScanResult"]
