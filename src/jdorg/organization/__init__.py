"""Review sessions, destination lookup, and file relocation."""

from .errors import FileOperationError, IndexLookupError, MoveTimeoutError, OrganizationError
from .executor import OperationExecutor
from .index import ConfiguredIndex, FolderIndex
from .models import (
    BatchSummary,
    ExecutionOptions,
    ItemOutcome,
    ItemResult,
    OrganizeItem,
    UndoOutcome,
    UndoResult,
)
from .session import SessionWorkingSet, to_organize_items

__all__ = [
    "BatchSummary",
    "ConfiguredIndex",
    "ExecutionOptions",
    "FileOperationError",
    "FolderIndex",
    "IndexLookupError",
    "ItemOutcome",
    "ItemResult",
    "MoveTimeoutError",
    "OperationExecutor",
    "OrganizationError",
    "OrganizeItem",
    "SessionWorkingSet",
    "UndoOutcome",
    "UndoResult",
    "to_organize_items",
]
