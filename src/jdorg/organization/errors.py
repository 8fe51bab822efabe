"""Errors raised while resolving destinations and moving files."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class OrganizationError(Exception):
    """Base exception for organization failures."""


class IndexLookupError(OrganizationError):
    """Raised when a target cannot be resolved through the folder index."""


class FileOperationError(OrganizationError):
    """Raised when a filesystem operation on a single file fails.

    Attributes:
        operation: Name of the failed operation (``move``, ``copy``, ``mkdir``...).
        path: Path the operation acted on.
        errno: Operating-system error number, when available.
    """

    def __init__(
        self,
        operation: str,
        path: Path | str,
        message: str,
        *,
        errno: Optional[int] = None,
    ) -> None:
        super().__init__(f"{operation} failed for {path}: {message}")
        self.operation = operation
        self.path = str(path)
        self.errno = errno


class MoveTimeoutError(FileOperationError):
    """Raised when a cross-device copy exceeds its deadline."""

    def __init__(self, path: Path | str, timeout: float) -> None:
        super().__init__("move", path, f"copy exceeded {timeout:g}s deadline")
        self.timeout = timeout


__all__ = ["OrganizationError", "IndexLookupError", "FileOperationError", "MoveTimeoutError"]
