"""Shared helpers for the jdorg CLI: component wiring and output payloads."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from jdorg.classification.engine import RuleClassifier
from jdorg.classification.rules import RuleStore
from jdorg.config.models import JdorgConfig
from jdorg.ingestion.detectors import TypeDetector
from jdorg.ingestion.discovery import DirectoryScanner
from jdorg.ingestion.models import ScanResult
from jdorg.ingestion.pipeline import ScanPipeline
from jdorg.organization.executor import OperationExecutor
from jdorg.organization.index import ConfiguredIndex
from jdorg.organization.models import ExecutionOptions, ItemResult, UndoResult
from jdorg.organization.session import SessionWorkingSet
from jdorg.state.audit import AuditLog
from jdorg.state.ledger import HistoryLedger
from jdorg.state.models import ConflictPolicy, OrganizedFile, Rule, ScannedFile, WatchActivity
from jdorg.state.store import DataStore
from jdorg.watch.folders import ActivityLog, WatchedFolderStore
from jdorg.watch.service import WatchService


@dataclass
class Runtime:
    """Components wired from one resolved configuration."""

    config: JdorgConfig
    store: DataStore
    audit: AuditLog
    rules: RuleStore
    working_set: SessionWorkingSet
    ledger: HistoryLedger
    folders: WatchedFolderStore
    activity: ActivityLog
    classifier: RuleClassifier
    index: ConfiguredIndex
    executor: OperationExecutor
    pipeline: ScanPipeline
    watcher: WatchService

    def execution_options(
        self, *, conflict_policy: str | None = None, dry_run: bool = False
    ) -> ExecutionOptions:
        """Return executor options from configuration and command-line flags."""
        return execution_options(self.config, conflict_policy=conflict_policy, dry_run=dry_run)


def execution_options(
    config: JdorgConfig, *, conflict_policy: str | None = None, dry_run: bool = False
) -> ExecutionOptions:
    """Return executor options, letting explicit flags override configuration."""
    organization = config.organization
    return ExecutionOptions(
        conflict_policy=ConflictPolicy(conflict_policy or organization.conflict_policy),
        dry_run=dry_run,
        move_timeout_seconds=organization.move_timeout_seconds,
    )


def build_runtime(config: JdorgConfig) -> Runtime:
    """Construct every component from ``config``.

    Args:
        config: Resolved configuration.

    Returns:
        Runtime: Wired components sharing one data store.
    """
    store = DataStore(Path(config.store.path))
    audit = AuditLog(Path(config.store.audit_log) if config.store.audit_log else None)
    detector = TypeDetector()
    rules = RuleStore(store, audit=audit)
    working_set = SessionWorkingSet(store)
    ledger = HistoryLedger(store)
    folders = WatchedFolderStore(store)
    activity = ActivityLog(store)
    classifier = RuleClassifier(
        regex_timeout_ms=config.classification.regex_timeout_ms,
        fallback_targets=config.classification.fallback_targets,
    )
    index = ConfiguredIndex.from_settings(config.index)
    executor = OperationExecutor(
        store,
        ledger,
        rules,
        index,
        audit=audit,
        detector=detector,
        undo_timeout_seconds=config.organization.move_timeout_seconds,
    )
    scanner = DirectoryScanner(
        max_depth=config.scan.max_depth,
        include_hidden=config.scan.include_hidden,
        follow_symlinks=config.scan.follow_symlinks,
        skip_directories=config.scan.extra_skip_directories,
        detector=detector,
    )
    watcher = WatchService(
        store=store,
        folders=folders,
        activity=activity,
        rules=rules,
        classifier=classifier,
        executor=executor,
        ledger=ledger,
        working_set=working_set,
        index=index,
        detector=detector,
        options=execution_options(config),
        poll_interval_seconds=config.watch.poll_interval_seconds,
        debounce_seconds=config.watch.debounce_seconds,
        activity_retention_days=config.watch.activity_retention_days,
    )
    return Runtime(
        config=config,
        store=store,
        audit=audit,
        rules=rules,
        working_set=working_set,
        ledger=ledger,
        folders=folders,
        activity=activity,
        classifier=classifier,
        index=index,
        executor=executor,
        pipeline=ScanPipeline(scanner, classifier, rules, working_set, index),
        watcher=watcher,
    )


def rule_payload(rule: Rule) -> dict[str, Any]:
    """Return a JSON-serializable view of a rule."""
    return rule.model_dump(mode="json")


def scanned_payload(rows: Iterable[ScannedFile]) -> list[dict[str, Any]]:
    """Return JSON-serializable review rows."""
    return [row.model_dump(mode="json") for row in rows]


def history_payload(rows: Iterable[OrganizedFile]) -> list[dict[str, Any]]:
    """Return JSON-serializable ledger rows."""
    return [row.model_dump(mode="json") for row in rows]


def activity_payload(rows: Iterable[WatchActivity]) -> list[dict[str, Any]]:
    """Return JSON-serializable watch activity rows."""
    return [row.model_dump(mode="json") for row in rows]


def scan_payload(result: ScanResult) -> dict[str, Any]:
    """Summarize a scan run for JSON output."""
    return {
        "session_id": result.session_id,
        "added": result.added,
        "skipped": result.skipped,
        "cancelled": result.cancelled,
        "scanned_files": result.progress.scanned_files,
        "scanned_dirs": result.progress.scanned_dirs,
        "total_size": result.progress.total_size,
        "errors": list(result.progress.errors),
    }


def item_result_payload(results: Iterable[ItemResult]) -> list[dict[str, Any]]:
    """Describe executor results for JSON output."""
    payload: list[dict[str, Any]] = []
    for result in results:
        payload.append(
            {
                "source": str(result.item.source_path),
                "target_folder": result.item.target_folder,
                "outcome": result.outcome.value,
                "destination": str(result.destination) if result.destination else None,
                "record_id": result.record_id,
                "reason": result.reason,
                "conflict_applied": result.conflict_applied,
                "dry_run": result.dry_run,
            }
        )
    return payload


def undo_payload(results: Iterable[UndoResult]) -> list[dict[str, Any]]:
    """Describe undo results for JSON output."""
    return [result.model_dump(mode="json") for result in results]


def format_size(size: int) -> str:
    """Return a human-readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


__all__ = [
    "Runtime",
    "build_runtime",
    "execution_options",
    "rule_payload",
    "scanned_payload",
    "history_payload",
    "activity_payload",
    "scan_payload",
    "item_result_payload",
    "undo_payload",
    "format_size",
]
