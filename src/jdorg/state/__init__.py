"""Persistent state for jdorg: data store, records, ledger, and audit trail."""

from __future__ import annotations

from .audit import AuditLog
from .errors import InvalidInputError, MissingStateError, RecordNotFoundError, StateError
from .ledger import HistoryLedger, LedgerStats
from .models import (
    Confidence,
    ConflictPolicy,
    Decision,
    FileStatus,
    OrganizedFile,
    Rule,
    RuleType,
    ScannedFile,
    TargetType,
    WatchAction,
    WatchActivity,
    WatchedFolder,
)
from .store import DataStore

__all__ = [
    "AuditLog",
    "Confidence",
    "ConflictPolicy",
    "DataStore",
    "Decision",
    "FileStatus",
    "HistoryLedger",
    "InvalidInputError",
    "LedgerStats",
    "MissingStateError",
    "OrganizedFile",
    "RecordNotFoundError",
    "Rule",
    "RuleType",
    "ScannedFile",
    "StateError",
    "TargetType",
    "WatchAction",
    "WatchActivity",
    "WatchedFolder",
]
