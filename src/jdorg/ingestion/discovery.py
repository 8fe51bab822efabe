"""File discovery utilities."""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .detectors import TypeDetector, extension_of
from .models import ScannedFileDraft, ScanProgress

LOGGER = logging.getLogger(__name__)

SKIP_DIRECTORIES = frozenset(
    {
        "node_modules",
        ".git",
        ".svn",
        ".hg",
        "__pycache__",
        ".cache",
        ".npm",
        ".yarn",
        "vendor",
        "dist",
        "build",
        ".next",
        ".nuxt",
        "coverage",
        ".pytest_cache",
        ".mypy_cache",
        "venv",
        ".venv",
        "env",
        ".env",
        ".idea",
        ".vscode",
    }
)

SKIP_FILES = frozenset(
    {
        ".DS_Store",
        "Thumbs.db",
        "desktop.ini",
        ".gitignore",
        ".gitattributes",
        ".npmrc",
        ".yarnrc",
        "package-lock.json",
        "yarn.lock",
        "pnpm-lock.yaml",
    }
)

ProgressCallback = Callable[[ScanProgress], None]


def is_ignored_file(name: str, *, include_hidden: bool = False) -> bool:
    """Return whether a filename is system noise or a temporary/hidden file."""
    if name in SKIP_FILES:
        return True
    if name.startswith("~"):
        return True
    return not include_hidden and name.startswith(".")


class DirectoryScanner:
    """Discover files within a directory tree subject to configuration filters."""

    def __init__(
        self,
        *,
        max_depth: int = 10,
        include_hidden: bool = False,
        follow_symlinks: bool = False,
        skip_directories: Iterable[str] = (),
        detector: TypeDetector | None = None,
    ) -> None:
        self.max_depth = max(0, max_depth)
        self.include_hidden = include_hidden
        self.follow_symlinks = follow_symlinks
        self.skip_directories = SKIP_DIRECTORIES | frozenset(skip_directories)
        self.detector = detector or TypeDetector()

    def scan(
        self,
        root: Path,
        *,
        session_id: str,
        cancel: threading.Event | None = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Iterator[ScannedFileDraft]:
        """Yield drafts for files under ``root``.

        Entries are visited in sorted order. ``cancel`` is checked between
        entries; when set, the walk stops without raising. Unreadable entries
        are recorded on the progress object and skipped.

        Args:
            root: Directory to scan.
            session_id: Session id stamped on every draft.
            cancel: Cooperative cancellation token.
            progress: Callback receiving the running progress after each entry.

        Yields:
            ScannedFileDraft: One draft per discovered file.
        """
        state = ScanProgress()
        root = root.expanduser().resolve()
        if not root.is_dir():
            state.errors.append(f"{root}: not a directory")
            if progress is not None:
                progress(state)
            return

        yield from self._walk(root, 0, session_id, state, cancel, progress)

    def _walk(
        self,
        directory: Path,
        depth: int,
        session_id: str,
        state: ScanProgress,
        cancel: threading.Event | None,
        progress: Optional[ProgressCallback],
    ) -> Iterator[ScannedFileDraft]:
        state.scanned_dirs += 1
        state.current_path = str(directory)
        if progress is not None:
            progress(state)
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as exc:
            LOGGER.debug("Unable to read %s: %s", directory, exc)
            state.errors.append(f"{directory}: {exc.strerror or exc}")
            return

        for entry in entries:
            if cancel is not None and cancel.is_set():
                return
            try:
                if entry.is_dir(follow_symlinks=self.follow_symlinks):
                    if self._skip_directory(entry.name) or depth + 1 > self.max_depth:
                        continue
                    yield from self._walk(
                        Path(entry.path), depth + 1, session_id, state, cancel, progress
                    )
                    continue
                if not entry.is_file(follow_symlinks=self.follow_symlinks):
                    continue
                if is_ignored_file(entry.name, include_hidden=self.include_hidden):
                    continue
                stat = entry.stat(follow_symlinks=self.follow_symlinks)
            except OSError as exc:
                state.errors.append(f"{entry.path}: {exc.strerror or exc}")
                continue

            extension = extension_of(entry.name)
            state.scanned_files += 1
            state.total_size += stat.st_size
            state.current_path = entry.path
            yield ScannedFileDraft(
                scan_session_id=session_id,
                filename=entry.name,
                path=entry.path,
                parent_folder=directory.name,
                file_extension=extension,
                file_type=self.detector.for_extension(extension),
                file_size=stat.st_size,
                file_modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )
            if progress is not None:
                progress(state)

    def _skip_directory(self, name: str) -> bool:
        if name in self.skip_directories:
            return True
        return not self.include_hidden and name.startswith(".")


__all__ = ["DirectoryScanner", "SKIP_DIRECTORIES", "SKIP_FILES", "is_ignored_file"]
