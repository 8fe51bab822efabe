"""Configuration models describing jdorg settings."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JdorgBaseModel(BaseModel):
    """Shared configuration for jdorg Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class StoreSettings(JdorgBaseModel):
    """Location of the persistent data store and the audit trail.

    Attributes:
        path: JSON document holding rules, sessions, history, and watch data.
        audit_log: Append-only, human-readable audit log. Disabled when empty.
    """

    path: str = "~/.jdorg/store.json"
    audit_log: Optional[str] = "~/.jdorg/audit.log"


class IndexSettings(JdorgBaseModel):
    """Hierarchical folder index used to resolve rule targets to directories.

    Attributes:
        root: Directory that contains the area directories.
        areas: Area ranges (``"10-19"``) mapped to display names.
        categories: Category numbers (``"11"``) mapped to display names.
        folders: Folder numbers (``"11.01"``) mapped to display names.
    """

    root: str = "~/Documents/Index"
    areas: Dict[str, str] = Field(default_factory=dict)
    categories: Dict[str, str] = Field(default_factory=dict)
    folders: Dict[str, str] = Field(default_factory=dict)

    @field_validator("areas", "categories", "folders", mode="before")
    @classmethod
    def _stringify_keys(cls, value: Any) -> Any:
        # Unquoted YAML keys such as ``11`` load as integers.
        if isinstance(value, dict):
            return {str(key): name for key, name in value.items()}
        return value


class ClassificationSettings(JdorgBaseModel):
    """Rule evaluation options.

    Attributes:
        regex_timeout_ms: Time budget for a single regex rule evaluation.
        fallback_targets: File-type categories mapped to folder numbers used when
            no rule matches.
    """

    regex_timeout_ms: int = Field(default=100, ge=1)
    fallback_targets: Dict[str, str] = Field(default_factory=dict)


class ScanSettings(JdorgBaseModel):
    """Directory scanning options.

    Attributes:
        max_depth: Maximum directory depth relative to the scan root.
        include_hidden: Whether dotfiles and dot-directories are scanned.
        follow_symlinks: Whether symbolic links are traversed.
        extra_skip_directories: Additional directory names to ignore.
    """

    max_depth: int = Field(default=10, ge=0)
    include_hidden: bool = False
    follow_symlinks: bool = False
    extra_skip_directories: List[str] = Field(default_factory=list)


class OrganizationOptions(JdorgBaseModel):
    """Settings that govern file moves.

    Attributes:
        conflict_policy: Strategy applied when the destination name is taken.
        move_timeout_seconds: Deadline for a single cross-device copy.
    """

    conflict_policy: Literal["rename", "skip", "overwrite"] = "rename"
    move_timeout_seconds: float = Field(default=120.0, gt=0)


class WatchSettings(JdorgBaseModel):
    """Watch-folder automation settings.

    Attributes:
        poll_interval_seconds: Upper bound between detection cycles.
        debounce_seconds: Delay that lets writes settle after a change event.
        activity_retention_days: Age after which activity rows are purged.
    """

    poll_interval_seconds: float = Field(default=5.0, gt=0)
    debounce_seconds: float = Field(default=2.0, ge=0)
    activity_retention_days: int = Field(default=30, ge=1)


class HistorySettings(JdorgBaseModel):
    """History ledger retention.

    Attributes:
        retention_days: Age after which ledger rows are purged.
        recent_limit: Default number of rows shown by recent listings.
    """

    retention_days: int = Field(default=90, ge=1)
    recent_limit: int = Field(default=20, ge=1)


class LoggingSettings(JdorgBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Log file path. Logging to file is disabled when empty.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = "~/.jdorg/jdorg.log"
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(JdorgBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class JdorgConfig(JdorgBaseModel):
    """Top-level configuration struct for jdorg."""

    store: StoreSettings = Field(default_factory=StoreSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    classification: ClassificationSettings = Field(default_factory=ClassificationSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    organization: OrganizationOptions = Field(default_factory=OrganizationOptions)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "JdorgBaseModel",
    "StoreSettings",
    "IndexSettings",
    "ClassificationSettings",
    "ScanSettings",
    "OrganizationOptions",
    "WatchSettings",
    "HistorySettings",
    "LoggingSettings",
    "CLIOptions",
    "JdorgConfig",
]
