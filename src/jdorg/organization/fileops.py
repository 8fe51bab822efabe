"""Filesystem primitives for moving files safely."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional

from jdorg.state.models import ConflictPolicy

from .errors import FileOperationError, MoveTimeoutError

LOGGER = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024
MAX_RENAME_ATTEMPTS = 1000


def resolve_conflict(
    destination: Path,
    policy: ConflictPolicy,
) -> tuple[Optional[Path], bool]:
    """Apply the conflict policy to a candidate destination.

    Args:
        destination: Desired file path.
        policy: Strategy to apply when ``destination`` exists.

    Returns:
        tuple[Path | None, bool]: Resolved path (``None`` when the item should be
        skipped) and whether a conflict was encountered.

    Raises:
        FileOperationError: If no free ``name_N.ext`` exists within the attempt limit.
    """
    if not destination.exists():
        return destination, False
    if policy is ConflictPolicy.SKIP:
        return None, True
    if policy is ConflictPolicy.OVERWRITE:
        return destination, True

    stem, suffix = destination.stem, destination.suffix
    for counter in range(1, MAX_RENAME_ATTEMPTS + 1):
        candidate = destination.with_name(f"{stem}_{counter}{suffix}")
        if not candidate.exists():
            return candidate, True
    raise FileOperationError(
        "rename", destination, f"no free name after {MAX_RENAME_ATTEMPTS} attempts"
    )


def move_file(
    source: Path,
    destination: Path,
    *,
    timeout: float,
    overwrite: bool = False,
) -> Path:
    """Move ``source`` to ``destination``.

    A same-device move is an atomic rename. Across devices the file is copied in
    chunks into a temporary sibling of ``destination`` under a deadline, swapped
    into place, and the source is deleted; a copy that misses the deadline is
    removed so no partial destination remains.

    Args:
        source: File to move.
        destination: Final file path; its directory must exist.
        timeout: Deadline in seconds for the cross-device copy.
        overwrite: Replace an existing destination.

    Returns:
        Path: The destination path.

    Raises:
        FileOperationError: If the move fails.
        MoveTimeoutError: If the cross-device copy exceeds ``timeout``.
    """
    if not overwrite and destination.exists():
        raise FileOperationError(
            "move", destination, "destination already exists", errno=errno.EEXIST
        )
    try:
        if overwrite:
            os.replace(source, destination)
        else:
            os.rename(source, destination)
        return destination
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise FileOperationError(
                "move", source, exc.strerror or str(exc), errno=exc.errno
            ) from exc

    LOGGER.debug("Cross-device move of %s; copying with %.1fs deadline", source, timeout)
    _copy_with_deadline(source, destination, time.monotonic() + timeout, timeout)
    try:
        source.unlink()
    except OSError as exc:
        raise FileOperationError(
            "delete", source, exc.strerror or str(exc), errno=exc.errno
        ) from exc
    return destination


def _copy_with_deadline(source: Path, destination: Path, deadline: float, timeout: float) -> None:
    partial = destination.with_name(f".{destination.name}.partial")
    try:
        with source.open("rb") as reader, partial.open("wb") as writer:
            while True:
                if time.monotonic() > deadline:
                    raise MoveTimeoutError(source, timeout)
                chunk = reader.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                writer.write(chunk)
        shutil.copystat(source, partial)
        os.replace(partial, destination)
    except MoveTimeoutError:
        partial.unlink(missing_ok=True)
        raise
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise FileOperationError(
            "copy", source, exc.strerror or str(exc), errno=exc.errno
        ) from exc


__all__ = ["resolve_conflict", "move_file", "COPY_CHUNK_SIZE", "MAX_RENAME_ATTEMPTS"]
