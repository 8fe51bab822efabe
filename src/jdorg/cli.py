"""Command line interface for jdorg."""

from __future__ import annotations

import difflib
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from jdorg.classification.suggestions import suggest_rules
from jdorg.cli_support import (
    Runtime,
    activity_payload,
    build_runtime,
    format_size,
    history_payload,
    item_result_payload,
    rule_payload,
    scan_payload,
    scanned_payload,
    undo_payload,
)
from jdorg.config import ConfigError, ConfigManager, JdorgConfig, parse_assignments
from jdorg.ingestion.discovery import DirectoryScanner
from jdorg.logs import configure_logging
from jdorg.organization.errors import OrganizationError
from jdorg.organization.models import BatchSummary, UndoOutcome
from jdorg.organization.session import to_organize_items
from jdorg.state import InvalidInputError, RecordNotFoundError, StateError
from jdorg.state.models import (
    Confidence,
    Decision,
    FileStatus,
    Rule,
    RuleType,
    TargetType,
    WatchAction,
)
from jdorg.watch.service import CycleReport, WatchEvent, watch_folder_id

console = Console()

_RULE_TYPES = [item.value for item in RuleType]
_TARGET_TYPES = [item.value for item in TargetType]
_CONFLICT_POLICIES = ["rename", "skip", "overwrite"]
_THRESHOLDS = [item.value for item in Confidence if item is not Confidence.NONE]


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _error_code(exc: Exception) -> str:
    """Map an exception to the machine-readable code used in JSON errors."""
    if isinstance(exc, ConfigError):
        return "config_error"
    if isinstance(exc, RecordNotFoundError):
        return "not_found"
    if isinstance(exc, InvalidInputError):
        return "invalid_input"
    if isinstance(exc, OrganizationError):
        return "organization_error"
    if isinstance(exc, StateError):
        return "state_error"
    return "cli_error"


def _fail(exc: Exception, *, json_output: bool) -> None:
    _handle_cli_error(str(exc), code=_error_code(exc), json_output=json_output, original=exc)


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return

    important_modes = {"summary", "warning", "error"}
    if summary_only and mode not in important_modes:
        return

    console.print(message)


def _format_summary_line(command: str, subject: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands.

    Args:
        command: Command name to include in the summary.
        subject: Path or session the command acted on.
        metrics: Ordered mapping of metric names to values.

    Returns:
        str: Rich-formatted summary string.
    """

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {subject}: {parts}.[/green]"


def _output_modes(
    ctx: click.Context,
    config: JdorgConfig,
    *,
    json_output: bool,
    quiet: bool,
    summary_mode: bool,
) -> tuple[bool, bool]:
    """Resolve quiet/summary flags against configured defaults.

    Returns:
        tuple[bool, bool]: Effective quiet and summary-only flags.

    Raises:
        click.ClickException: If the flags conflict.
    """
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


def _config_manager(ctx: click.Context) -> ConfigManager:
    path = (ctx.find_root().obj or {}).get("config_path")
    return ConfigManager(Path(path) if path else None)


def _load_config(ctx: click.Context) -> JdorgConfig:
    """Load configuration for the invoked command and configure logging."""
    config = _config_manager(ctx).load()
    configure_logging(config.logging)
    return config


def _runtime(ctx: click.Context) -> Runtime:
    return build_runtime(_load_config(ctx))


def _parse_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _rules_table(rules: Iterable[Rule]) -> Table:
    table = Table(title="Rules")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Pattern")
    table.add_column("Target")
    table.add_column("Priority", justify="right")
    table.add_column("Matches", justify="right")
    table.add_column("Active")
    for rule in rules:
        table.add_row(
            str(rule.id),
            rule.name,
            rule.rule_type.value,
            rule.pattern,
            f"{rule.target_type.value}:{rule.target_id}",
            str(rule.priority),
            str(rule.match_count),
            "yes" if rule.is_active else "no",
        )
    return table


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="jdorg")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=str),
    envvar="JDORG_CONFIG",
    help="Path to the configuration file (default: ~/.jdorg/config.yaml).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """jdorg files documents into a numbered folder index using rules you define.

    Returns:
        None: This function is invoked for its side effects.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# --------------------------------------------------------------------------- #
# rules                                                                       #
# --------------------------------------------------------------------------- #


@cli.group()
def rules() -> None:
    """Create, edit, and inspect organization rules."""


@rules.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include inactive rules.")
@click.option("--type", "rule_type", type=click.Choice(_RULE_TYPES), help="Filter by rule type.")
@click.option("--json", "json_output", is_flag=True, help="Emit rules as JSON.")
@click.pass_context
def rules_list(
    ctx: click.Context, show_all: bool, rule_type: str | None, json_output: bool
) -> None:
    """List rules in evaluation order."""
    try:
        runtime = _runtime(ctx)
        items = runtime.rules.list_rules(active_only=not show_all, rule_type=rule_type)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"rules": [rule_payload(rule) for rule in items]})
        return
    if not items:
        console.print("[yellow]No rules defined.[/yellow]")
        return
    console.print(_rules_table(items))


@rules.command("add")
@click.option("--name", required=True, help="Display name for the rule.")
@click.option("--type", "rule_type", required=True, type=click.Choice(_RULE_TYPES))
@click.option("--pattern", required=True, help="Pattern evaluated against each file.")
@click.option(
    "--target-type", type=click.Choice(_TARGET_TYPES), default="folder", show_default=True
)
@click.option("--target", "target_id", required=True, help="Index id such as 11.01, 11 or 10-19.")
@click.option("--priority", type=int, help="Priority from 0 to 100 (default 50).")
@click.option("--exclude", "exclude_pattern", help="Comma-separated keywords that veto a match.")
@click.option("--notes", help="Free-form notes.")
@click.option("--inactive", is_flag=True, help="Create the rule disabled.")
@click.option("--json", "json_output", is_flag=True, help="Emit the created rule as JSON.")
@click.pass_context
def rules_add(
    ctx: click.Context,
    name: str,
    rule_type: str,
    pattern: str,
    target_type: str,
    target_id: str,
    priority: int | None,
    exclude_pattern: str | None,
    notes: str | None,
    inactive: bool,
    json_output: bool,
) -> None:
    """Create a rule.

    Raises:
        click.ClickException: If the rule does not validate.
    """
    try:
        runtime = _runtime(ctx)
        rule = runtime.rules.create(
            name=name,
            rule_type=rule_type,
            pattern=pattern,
            target_type=target_type,
            target_id=target_id,
            priority=priority,
            is_active=not inactive,
            exclude_pattern=exclude_pattern,
            notes=notes,
        )
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"rule": rule_payload(rule)})
        return
    console.print(f"[green]Created rule {rule.id} ({rule.name}).[/green]")


@rules.command("update")
@click.argument("rule_id", type=int)
@click.option("--name")
@click.option("--type", "rule_type", type=click.Choice(_RULE_TYPES))
@click.option("--pattern")
@click.option("--target-type", type=click.Choice(_TARGET_TYPES))
@click.option("--target", "target_id")
@click.option("--priority", type=int)
@click.option("--exclude", "exclude_pattern")
@click.option("--notes")
@click.option("--json", "json_output", is_flag=True, help="Emit the updated rule as JSON.")
@click.pass_context
def rules_update(ctx: click.Context, rule_id: int, json_output: bool, **fields: Any) -> None:
    """Change fields of rule RULE_ID; omitted options are left unchanged."""
    changes = {key: value for key, value in fields.items() if value is not None}
    if not changes:
        _handle_cli_error("No changes requested.", code="invalid_input", json_output=json_output)
        return
    try:
        runtime = _runtime(ctx)
        rule = runtime.rules.update(rule_id, **changes)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"rule": rule_payload(rule)})
        return
    console.print(f"[green]Updated rule {rule.id} ({', '.join(sorted(changes))}).[/green]")


@rules.command("toggle")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_toggle(ctx: click.Context, rule_id: int) -> None:
    """Enable or disable rule RULE_ID."""
    try:
        active = _runtime(ctx).rules.toggle(rule_id)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    console.print(f"[green]Rule {rule_id} is now {'active' if active else 'inactive'}.[/green]")


@rules.command("delete")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_delete(ctx: click.Context, rule_id: int) -> None:
    """Delete rule RULE_ID."""
    try:
        removed = _runtime(ctx).rules.delete(rule_id)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    if not removed:
        raise click.ClickException(f"Rule {rule_id} does not exist.")
    console.print(f"[green]Deleted rule {rule_id}.[/green]")


@rules.command("reset")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_reset(ctx: click.Context, rule_id: int) -> None:
    """Reset the match count of rule RULE_ID."""
    try:
        _runtime(ctx).rules.reset_match_count(rule_id)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    console.print(f"[green]Reset match count for rule {rule_id}.[/green]")


@rules.command("suggest")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit suggestions as JSON.")
def rules_suggest(path: str, json_output: bool) -> None:
    """Suggest rules from recurring extensions and keywords in PATH."""
    scanner = DirectoryScanner(max_depth=0)
    names = [draft.filename for draft in scanner.scan(Path(path), session_id="suggest")]
    suggestions = suggest_rules(names)

    if json_output:
        console.print_json(
            data={"suggestions": [item.model_dump(mode="json") for item in suggestions]}
        )
        return
    if not suggestions:
        console.print("[yellow]No recurring patterns found.[/yellow]")
        return
    table = Table(title=f"Suggested rules for {path}")
    table.add_column("Type")
    table.add_column("Pattern")
    table.add_column("Confidence")
    table.add_column("Reason")
    for item in suggestions:
        table.add_row(item.rule_type.value, item.pattern, item.confidence.value, item.reason)
    console.print(table)


# --------------------------------------------------------------------------- #
# scan / review / decide / organize                                           #
# --------------------------------------------------------------------------- #


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--session", "session_id", help="Re-scan into an existing session.")
@click.option("--json", "json_output", is_flag=True, help="Emit the scan summary as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def scan(
    ctx: click.Context,
    path: str,
    session_id: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Scan PATH, suggest targets, and store the files for review.

    Args:
        ctx: Click context used for parameter source inspection.
        path: Directory to scan.
        session_id: Existing session to replace, if any.
        json_output: If True, emit JSON describing the scan.
        summary_mode: When True, limit output to summary lines and warnings.
        quiet: When True, suppress non-error CLI output entirely.
    """
    try:
        runtime = _runtime(ctx)
        quiet_enabled, summary_only = _output_modes(
            ctx, runtime.config, json_output=json_output, quiet=quiet, summary_mode=summary_mode
        )
        cancel = threading.Event()
        try:
            result = runtime.pipeline.run(Path(path), session_id=session_id, cancel=cancel)
        except KeyboardInterrupt:
            cancel.set()
            raise click.Abort()
        stats = runtime.working_set.stats(result.session_id)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
        return

    if json_output:
        payload = scan_payload(result)
        payload["stats"] = stats.model_dump(mode="json")
        console.print_json(data=payload)
        return

    for error in result.progress.errors:
        _emit_message(
            f"[yellow]Skipped {error}[/yellow]",
            mode="warning",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    _emit_message(
        f"Session [bold]{result.session_id}[/bold]: {stats.with_suggestion} with suggestions, "
        f"{stats.without_suggestion} without.",
        mode="detail",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )
    _emit_message(
        _format_summary_line(
            "Scan",
            path,
            {
                "session": result.session_id,
                "files": result.added,
                "skipped": result.skipped,
                "size": format_size(result.progress.total_size),
            },
        ),
        mode="summary",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )


@cli.command()
@click.argument("session_id", required=False)
@click.option(
    "--decision",
    type=click.Choice([item.value for item in Decision]),
    help="Only show rows with this decision.",
)
@click.option("--type", "file_type", help="Only show rows of this file type.")
@click.option("--json", "json_output", is_flag=True, help="Emit rows as JSON.")
@click.pass_context
def review(
    ctx: click.Context,
    session_id: str | None,
    decision: str | None,
    file_type: str | None,
    json_output: bool,
) -> None:
    """Show scanned files of SESSION_ID, or list sessions when omitted."""
    try:
        runtime = _runtime(ctx)
        if session_id is None:
            sessions = {
                name: runtime.working_set.stats(name) for name in runtime.working_set.sessions()
            }
        else:
            rows = runtime.working_set.list_files(
                session_id, decision=decision, file_type=file_type
            )
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if session_id is None:
        if json_output:
            console.print_json(
                data={
                    "sessions": {
                        name: stats.model_dump(mode="json") for name, stats in sessions.items()
                    }
                }
            )
            return
        if not sessions:
            console.print("[yellow]No scan sessions.[/yellow]")
            return
        table = Table(title="Sessions")
        table.add_column("Session")
        table.add_column("Files", justify="right")
        table.add_column("Pending", justify="right")
        table.add_column("Ready", justify="right")
        for name, stats in sessions.items():
            ready = stats.accepted + stats.changed
            table.add_row(name, str(stats.total), str(stats.pending), str(ready))
        console.print(table)
        return

    if json_output:
        console.print_json(data={"session_id": session_id, "files": scanned_payload(rows)})
        return
    if not rows:
        console.print(f"[yellow]No files in session {session_id}.[/yellow]")
        return
    table = Table(title=f"Session {session_id}")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Suggested")
    table.add_column("Confidence")
    table.add_column("Decision")
    for row in rows:
        table.add_row(
            str(row.id),
            row.filename,
            row.file_type,
            row.user_target or row.suggested_target or "-",
            row.suggestion_confidence.value,
            row.user_decision.value,
        )
    console.print(table)


@cli.command()
@click.argument("file_id", type=int)
@click.argument("action", type=click.Choice(["accept", "skip", "change"]))
@click.option("--target", "target_folder", help="Folder number used with 'change'.")
@click.pass_context
def decide(ctx: click.Context, file_id: int, action: str, target_folder: str | None) -> None:
    """Record a review decision for scanned file FILE_ID."""
    try:
        runtime = _runtime(ctx)
        if action == "accept":
            row = runtime.working_set.accept(file_id)
        elif action == "skip":
            row = runtime.working_set.skip(file_id)
        else:
            if not target_folder:
                raise click.ClickException("'change' requires --target.")
            runtime.index.folder_path(target_folder)
            row = runtime.working_set.change_target(file_id, target_folder)
        folder_id = watch_folder_id(row.scan_session_id)
        if folder_id is not None and row.user_decision is Decision.SKIPPED:
            runtime.watcher.reconcile_queued(folder_id)
    except (ConfigError, StateError, OrganizationError) as exc:
        _fail(exc, json_output=False)
        return
    target = row.final_target if row.user_decision is not Decision.SKIPPED else None
    suffix = f" -> {target}" if target else ""
    console.print(f"[green]{row.filename}: {row.user_decision.value}{suffix}.[/green]")


@cli.command()
@click.argument("session_id")
@click.option("--dry-run", is_flag=True, help="Preview destinations without moving files.")
@click.option(
    "--conflict",
    "conflict_policy",
    type=click.Choice(_CONFLICT_POLICIES),
    help="Override the configured conflict policy.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit per-file results as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def organize(
    ctx: click.Context,
    session_id: str,
    dry_run: bool,
    conflict_policy: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Move the accepted and changed files of SESSION_ID into the index.

    Successfully organized rows leave the session; failed ones stay for another try.

    Args:
        ctx: Click context used for parameter source inspection.
        session_id: Session whose reviewed files should be organized.
        dry_run: If True, report destinations without touching files or history.
        conflict_policy: Optional override of ``organization.conflict_policy``.
        json_output: If True, emit JSON describing each item.
        summary_mode: When True, limit output to summary lines and warnings.
        quiet: When True, suppress non-error CLI output entirely.
    """
    try:
        runtime = _runtime(ctx)
        quiet_enabled, summary_only = _output_modes(
            ctx, runtime.config, json_output=json_output, quiet=quiet, summary_mode=summary_mode
        )
        items = to_organize_items(runtime.working_set.ready_to_organize(session_id))
        options = runtime.execution_options(conflict_policy=conflict_policy, dry_run=dry_run)
        results = runtime.executor.apply(items, options)
        if not dry_run:
            for result in results:
                if result.ok and result.item.scanned_file_id is not None:
                    runtime.working_set.delete(result.item.scanned_file_id)
            folder_id = watch_folder_id(session_id)
            if folder_id is not None:
                runtime.watcher.record_review_results(folder_id, results)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
        return

    summary = BatchSummary.from_results(results)
    if json_output:
        console.print_json(
            data={
                "session_id": session_id,
                "dry_run": dry_run,
                "results": item_result_payload(results),
                "summary": summary.model_dump(mode="json"),
            }
        )
        return

    prefix = "[yellow]DRY RUN[/yellow] " if dry_run else ""
    for result in results:
        if result.ok:
            _emit_message(
                f"{prefix}{result.item.source_path} -> {result.destination}",
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        elif result.reason:
            _emit_message(
                f"[yellow]{result.item.source_path}: {result.reason}[/yellow]",
                mode="warning" if result.outcome.value == "skipped" else "error",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
    _emit_message(
        _format_summary_line(
            "Organize",
            session_id,
            {
                "organized": summary.succeeded,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "dry_run": dry_run,
            },
        ),
        mode="summary",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )


@cli.command()
@click.argument("record_ids", nargs=-1, type=int, required=True)
@click.option("--json", "json_output", is_flag=True, help="Emit undo results as JSON.")
@click.pass_context
def undo(ctx: click.Context, record_ids: tuple[int, ...], json_output: bool) -> None:
    """Move organized files back to where they came from.

    Exits with status 1 when any record could not be undone.
    """
    try:
        runtime = _runtime(ctx)
        results = runtime.executor.undo_batch(list(record_ids))
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    failed = [result for result in results if result.outcome is UndoOutcome.FAILURE]
    if json_output:
        console.print_json(data={"results": undo_payload(results)})
    else:
        for result in results:
            if result.outcome is UndoOutcome.UNDONE:
                console.print(
                    f"[green]Record {result.record_id} restored to {result.restored_path}.[/green]"
                )
            elif result.outcome is UndoOutcome.NOOP:
                console.print(
                    f"[yellow]Record {result.record_id} unchanged ({result.status.value}).[/yellow]"
                )
            else:
                console.print(f"[red]Record {result.record_id}: {result.reason}[/red]")
    if failed:
        raise SystemExit(1)


# --------------------------------------------------------------------------- #
# history                                                                     #
# --------------------------------------------------------------------------- #


@cli.group()
def history() -> None:
    """Inspect and prune the history of organized files."""


@history.command("list")
@click.option(
    "--status", type=click.Choice([item.value for item in FileStatus]), help="Filter by status."
)
@click.option("--folder", "target_folder", help="Filter by target folder number.")
@click.option("--type", "file_type", help="Filter by file type.")
@click.option("--limit", type=int, help="Maximum rows to show.")
@click.option("--offset", type=int, default=0, show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Emit rows as JSON.")
@click.pass_context
def history_list(
    ctx: click.Context,
    status: str | None,
    target_folder: str | None,
    file_type: str | None,
    limit: int | None,
    offset: int,
    json_output: bool,
) -> None:
    """List organized files, newest first."""
    try:
        runtime = _runtime(ctx)
        rows = runtime.ledger.list_files(
            status=FileStatus(status) if status else None,
            target_folder=target_folder,
            file_type=file_type,
            limit=limit or runtime.config.history.recent_limit,
            offset=offset,
        )
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"files": history_payload(rows)})
        return
    if not rows:
        console.print("[yellow]No organized files recorded.[/yellow]")
        return
    table = Table(title="History")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("Folder")
    table.add_column("Status")
    table.add_column("Organized")
    for row in rows:
        table.add_row(
            str(row.id),
            row.filename,
            row.target_folder,
            row.status.value,
            row.organized_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@history.command("stats")
@click.option("--json", "json_output", is_flag=True, help="Emit statistics as JSON.")
@click.pass_context
def history_stats(ctx: click.Context, json_output: bool) -> None:
    """Show aggregate history statistics."""
    try:
        stats = _runtime(ctx).ledger.stats()
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data=stats.model_dump(mode="json"))
        return
    console.print(
        f"Moved: {stats.total_moved}  Tracked: {stats.total_tracked}  "
        f"Undone: {stats.total_undone}  Deleted: {stats.total_deleted}  "
        f"Size: {format_size(stats.total_size)}"
    )
    if stats.top_folders:
        table = Table(title="Top folders")
        table.add_column("Folder")
        table.add_column("Files", justify="right")
        for folder, count in stats.top_folders:
            table.add_row(folder, str(count))
        console.print(table)


@history.command("purge")
@click.option("--days", type=int, help="Delete rows older than this many days.")
@click.pass_context
def history_purge(ctx: click.Context, days: int | None) -> None:
    """Delete history rows older than the retention window."""
    try:
        runtime = _runtime(ctx)
        removed = runtime.ledger.purge(days or runtime.config.history.retention_days)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    console.print(f"[green]Purged {removed} history rows.[/green]")


# --------------------------------------------------------------------------- #
# watch                                                                       #
# --------------------------------------------------------------------------- #


@cli.group()
def watch() -> None:
    """Manage watched folders and run the watcher."""


@watch.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--name", help="Display name (defaults to the directory name).")
@click.option(
    "--auto", "auto_organize", is_flag=True, help="Organize confident matches automatically."
)
@click.option(
    "--threshold",
    type=click.Choice(_THRESHOLDS),
    default="medium",
    show_default=True,
    help="Minimum confidence for automatic organization.",
)
@click.option("--subdirs", "include_subdirs", is_flag=True, help="Watch subdirectories too.")
@click.option("--types", help="Comma-separated file categories or extensions to process.")
@click.option("--no-notify", is_flag=True, help="Do not emit notifications for organized files.")
@click.option("--json", "json_output", is_flag=True, help="Emit the folder as JSON.")
@click.pass_context
def watch_add(
    ctx: click.Context,
    path: str,
    name: str | None,
    auto_organize: bool,
    threshold: str,
    include_subdirs: bool,
    types: str | None,
    no_notify: bool,
    json_output: bool,
) -> None:
    """Start watching PATH."""
    try:
        folder = _runtime(ctx).folders.create(
            path=path,
            name=name,
            auto_organize=auto_organize,
            confidence_threshold=threshold,
            include_subdirs=include_subdirs,
            file_types=_parse_csv(types),
            notify_on_organize=not no_notify,
        )
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"folder": folder.model_dump(mode="json")})
        return
    mode = f"auto >= {folder.confidence_threshold.value}" if folder.auto_organize else "queue only"
    console.print(f"[green]Watching {folder.path} as folder {folder.id} ({mode}).[/green]")


@watch.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit folders as JSON.")
@click.pass_context
def watch_list(ctx: click.Context, json_output: bool) -> None:
    """List watched folders."""
    try:
        runtime = _runtime(ctx)
        folders = runtime.folders.list_folders()
        queued = runtime.activity.queued_counts()
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        payload = []
        for folder in folders:
            entry = folder.model_dump(mode="json")
            entry["queued"] = queued.get(folder.id, 0)
            payload.append(entry)
        console.print_json(data={"folders": payload})
        return
    if not folders:
        console.print("[yellow]No watched folders.[/yellow]")
        return
    table = Table(title="Watched folders")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Path")
    table.add_column("Auto")
    table.add_column("Processed", justify="right")
    table.add_column("Organized", justify="right")
    table.add_column("Queued", justify="right")
    for folder in folders:
        table.add_row(
            str(folder.id),
            folder.name,
            folder.path,
            folder.confidence_threshold.value if folder.auto_organize else "off",
            str(folder.files_processed),
            str(folder.files_organized),
            str(queued.get(folder.id, 0)),
        )
    console.print(table)


@watch.command("remove")
@click.argument("folder_id", type=int)
@click.option("--keep-activity", is_flag=True, help="Keep the folder's activity rows.")
@click.pass_context
def watch_remove(ctx: click.Context, folder_id: int, keep_activity: bool) -> None:
    """Stop watching folder FOLDER_ID."""
    try:
        runtime = _runtime(ctx)
        removed = runtime.folders.delete(folder_id)
        if removed and not keep_activity:
            runtime.activity.clear_folder(folder_id)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    if not removed:
        raise click.ClickException(f"Watched folder {folder_id} does not exist.")
    console.print(f"[green]Stopped watching folder {folder_id}.[/green]")


def _report_cycle(report: CycleReport, *, quiet: bool, summary_only: bool) -> None:
    _emit_message(
        _format_summary_line(
            "Watch",
            f"folder {report.folder_id}",
            {
                "detected": report.detected,
                "organized": report.organized,
                "queued": report.queued,
                "skipped": report.skipped,
                "errors": report.errors,
            },
        ),
        mode="summary",
        quiet=quiet,
        summary_only=summary_only,
    )


@watch.command("run")
@click.option("--once", is_flag=True, help="Run one detection cycle and exit.")
@click.option("--folder", "folder_id", type=int, help="Only process this folder (with --once).")
@click.option(
    "--json", "json_output", is_flag=True, help="Emit cycle reports as JSON (with --once)."
)
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def watch_run(
    ctx: click.Context,
    once: bool,
    folder_id: int | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Watch every active folder until interrupted.

    Args:
        ctx: Click context used for parameter source inspection.
        once: Process current contents once and exit.
        folder_id: Restrict a single cycle to one folder.
        json_output: If True, emit cycle reports as JSON.
        summary_mode: When True, limit output to summary lines and warnings.
        quiet: When True, suppress non-error CLI output entirely.
    """
    if json_output and not once:
        raise click.ClickException("--json requires --once.")
    try:
        runtime = _runtime(ctx)
        quiet_enabled, summary_only = _output_modes(
            ctx, runtime.config, json_output=json_output, quiet=quiet, summary_mode=summary_mode
        )
    except ConfigError as exc:
        _fail(exc, json_output=json_output)
        return

    service = runtime.watcher
    if not json_output:

        def _announce(event: WatchEvent) -> None:
            if event.name == "file_organized":
                message, mode = f"Organized {event.path} -> {event.target_folder}", "detail"
            elif event.name == "file_queued":
                suggestion = f" (suggested {event.target_folder})" if event.target_folder else ""
                message, mode = f"Queued {event.path}{suggestion}", "detail"
            else:
                message, mode = f"[red]Failed {event.path}: {event.error}[/red]", "error"
            _emit_message(message, mode=mode, quiet=quiet_enabled, summary_only=summary_only)

        for name in ("file_queued", "file_organized", "file_error"):
            service.on_event(name, _announce)  # type: ignore[arg-type]

    if once:
        try:
            if folder_id is not None:
                reports = [service.run_cycle(folder_id)]
            else:
                reports = service.run_all_once()
        except StateError as exc:
            _fail(exc, json_output=json_output)
            return
        if json_output:
            console.print_json(
                data={
                    "cycles": [
                        {
                            "folder_id": report.folder_id,
                            "detected": report.detected,
                            "organized": report.organized,
                            "queued": report.queued,
                            "skipped": report.skipped,
                            "errors": report.errors,
                            "deferred": report.deferred,
                            "activity_ids": report.activity_ids,
                        }
                        for report in reports
                    ]
                }
            )
            return
        if not reports:
            _emit_message(
                "[yellow]No active watched folders.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        for report in reports:
            _report_cycle(report, quiet=quiet_enabled, summary_only=summary_only)
        return

    _emit_message(
        "[cyan]Watching folders; press Ctrl+C to stop.[/cyan]",
        mode="detail",
        quiet=quiet_enabled,
        summary_only=summary_only,
    )
    try:
        service.watch()
    except KeyboardInterrupt:
        service.stop()
        _emit_message(
            "[yellow]Watch stopped.[/yellow]",
            mode="warning",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )


@watch.command("activity")
@click.option("--folder", "folder_id", type=int, help="Only show this folder.")
@click.option(
    "--action",
    type=click.Choice([item.value for item in WatchAction]),
    help="Only show this action.",
)
@click.option("--limit", type=int, default=50, show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Emit rows as JSON.")
@click.pass_context
def watch_activity(
    ctx: click.Context,
    folder_id: int | None,
    action: str | None,
    limit: int,
    json_output: bool,
) -> None:
    """Show recent watcher activity, newest first."""
    wanted = WatchAction(action) if action else None
    try:
        runtime = _runtime(ctx)
        if folder_id is not None:
            rows = runtime.activity.list_for_folder(folder_id, action=wanted, limit=limit)
        else:
            rows = runtime.activity.recent(action=wanted, limit=limit)
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=json_output)
        return

    if json_output:
        console.print_json(data={"activity": activity_payload(rows)})
        return
    if not rows:
        console.print("[yellow]No watcher activity.[/yellow]")
        return
    table = Table(title="Watcher activity")
    table.add_column("ID", justify="right")
    table.add_column("Folder", justify="right")
    table.add_column("File")
    table.add_column("Action")
    table.add_column("Target")
    table.add_column("When")
    for row in rows:
        table.add_row(
            str(row.id),
            str(row.watched_folder_id),
            row.filename,
            row.action.value,
            row.target_folder or "-",
            row.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@watch.command("resolve")
@click.argument("activity_id", type=int)
@click.argument("action", type=click.Choice(["accept", "skip", "change"]))
@click.option("--target", "target_folder", help="Folder number used with 'change'.")
@click.pass_context
def watch_resolve(
    ctx: click.Context, activity_id: int, action: str, target_folder: str | None
) -> None:
    """Resolve queued watcher file ACTIVITY_ID."""
    decisions = {"accept": Decision.ACCEPTED, "skip": Decision.SKIPPED, "change": Decision.CHANGED}
    try:
        row = _runtime(ctx).watcher.resolve_queued(
            activity_id, decisions[action], target_folder=target_folder
        )
    except (ConfigError, StateError) as exc:
        _fail(exc, json_output=False)
        return
    if row.action is WatchAction.ERROR:
        raise click.ClickException(f"{row.filename}: {row.error_message}")
    suffix = f" -> {row.target_folder}" if row.action is WatchAction.AUTO_ORGANIZED else ""
    console.print(f"[green]{row.filename}: {row.action.value}{suffix}.[/green]")


# --------------------------------------------------------------------------- #
# config                                                                      #
# --------------------------------------------------------------------------- #


@cli.group()
def config() -> None:
    """Manage jdorg configuration files and overrides.

    Returns:
        None: This function is invoked for its side effects.
    """


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        ctx: Click context carrying the configuration path.
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = _config_manager(ctx)
    try:
        resolved = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(resolved.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("assignments", nargs=-1, required=True)
@click.pass_context
def config_set(ctx: click.Context, assignments: tuple[str, ...]) -> None:
    """Persist one or more KEY=VALUE assignments such as ``watch.debounce_seconds=5``.

    Values are parsed as YAML literals.

    Raises:
        click.ClickException: If parsing or validation fails.
    """
    manager = _config_manager(ctx)
    manager.ensure_exists()
    before = manager.read_text().splitlines()
    try:
        manager.set_values(parse_assignments(assignments))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.startswith(("-# Last updated", "+# Last updated"))
    ]
    if any(line.startswith(("-", "+")) and not line.startswith(("---", "+++")) for line in diff):
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
        keys = ", ".join(item.partition("=")[0] for item in assignments)
        console.print(f"[green]Updated {keys}.[/green]")
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point.

    Returns:
        None: This function is invoked for its side effects.
    """
    cli()


if __name__ == "__main__":
    main()
