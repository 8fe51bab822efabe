"""Scan pipeline: discover files, classify them, and fill a review session."""

from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import Callable, Optional

from jdorg.classification.engine import RuleClassifier
from jdorg.classification.models import FileDescriptor
from jdorg.classification.rules import RuleStore
from jdorg.organization.index import FolderIndex, resolve_decision
from jdorg.organization.session import SessionWorkingSet
from jdorg.state.models import Confidence

from .discovery import DirectoryScanner
from .models import ScannedFileDraft, ScanProgress, ScanResult

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


def new_session_id() -> str:
    """Return a fresh scan session identifier."""
    return f"scan-{uuid.uuid4().hex[:12]}"


class ScanPipeline:
    """Coordinate scanning, classification, and session storage."""

    def __init__(
        self,
        scanner: DirectoryScanner,
        classifier: RuleClassifier,
        rules: RuleStore,
        working_set: SessionWorkingSet,
        index: FolderIndex,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.scanner = scanner
        self.classifier = classifier
        self.rules = rules
        self.working_set = working_set
        self.index = index
        self.chunk_size = max(1, chunk_size)

    def run(
        self,
        root: Path,
        *,
        session_id: str | None = None,
        cancel: threading.Event | None = None,
        progress: Optional[Callable[[ScanProgress], None]] = None,
    ) -> ScanResult:
        """Scan ``root`` into a session.

        Passing an existing ``session_id`` re-scans: its rows are cleared first.
        Rows are stored in chunks while the walk proceeds, so a cancelled scan
        keeps what it already found.

        Args:
            root: Directory to scan.
            session_id: Session to (re)fill; a new one is created when omitted.
            cancel: Cooperative cancellation token.
            progress: Callback receiving running progress.

        Returns:
            ScanResult: Session id, counts, cancellation flag, and final progress.
        """
        if session_id is None:
            session_id = new_session_id()
        else:
            self.working_set.clear_session(session_id)

        result = ScanResult(session_id=session_id)

        def _track(state: ScanProgress) -> None:
            result.progress = state
            if progress is not None:
                progress(state)

        rule_set = self.classifier.compile(self.rules.list_rules(active_only=True))
        pending: list[ScannedFileDraft] = []
        for draft in self.scanner.scan(root, session_id=session_id, cancel=cancel, progress=_track):
            descriptor = FileDescriptor(
                filename=draft.filename,
                extension=draft.file_extension,
                path=draft.path,
                parent_folder=draft.parent_folder,
                file_type=draft.file_type,
                modified_at=draft.file_modified_at,
            )
            decision = rule_set.classify(descriptor)
            folder = resolve_decision(self.index, decision)
            if folder is not None:
                draft = draft.model_copy(
                    update={
                        "suggested_target": folder,
                        "suggested_rule_id": decision.rule_id,
                        "suggestion_confidence": decision.confidence,
                    }
                )
            elif decision.matched:
                LOGGER.debug(
                    "Target %s:%s for %s is not in the index; leaving unsuggested",
                    decision.target_type,
                    decision.target_id,
                    draft.path,
                )
            pending.append(draft)
            if len(pending) >= self.chunk_size:
                self._flush(pending, result)

        self._flush(pending, result)
        result.cancelled = cancel is not None and cancel.is_set()
        LOGGER.info(
            "Scan of %s into %s: %d added, %d skipped%s",
            root,
            session_id,
            result.added,
            result.skipped,
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _flush(self, pending: list[ScannedFileDraft], result: ScanResult) -> None:
        if not pending:
            return
        batch = self.working_set.add_batch(pending)
        result.added += batch.added
        result.skipped += batch.skipped
        pending.clear()


__all__ = ["ScanPipeline", "new_session_id"]
