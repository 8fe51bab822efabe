"""Rule store: persistence and validation for organization rules."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from jdorg.state.audit import AuditLog
from jdorg.state.errors import InvalidInputError
from jdorg.state.models import Rule, RuleType, TargetType, utcnow
from jdorg.state.store import DataStore, validated

from .engine import rule_sort_key
from .predicates import PatternError, validate_pattern

LOGGER = logging.getLogger(__name__)

TABLE = "rules"
DEFAULT_PRIORITY = 50
_LIMITS = {"name": 100, "pattern": 500, "target_id": 50}
_EDITABLE = {
    "name",
    "rule_type",
    "pattern",
    "target_type",
    "target_id",
    "priority",
    "is_active",
    "exclude_pattern",
    "notes",
}


def clamp_priority(value: Any) -> int:
    """Return ``value`` clamped into ``0..100``; non-integers become the default."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_PRIORITY
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_PRIORITY
    return min(100, max(0, number))


def _parse_enum(enum_cls: type, value: Any, field: str) -> Any:
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else str(value).lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"Invalid {field} {value!r}; expected one of: {allowed}.") from exc


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field} is required.")
    text = value.strip()
    if len(text) > _LIMITS[field]:
        raise InvalidInputError(f"{field} must be at most {_LIMITS[field]} characters.")
    return text


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class RuleStore:
    """Create, edit, and query organization rules.

    Listing operations return rules in canonical order: priority descending,
    match count descending, creation time ascending.
    """

    def __init__(
        self,
        store: DataStore,
        *,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    def create(
        self,
        *,
        name: str,
        rule_type: RuleType | str,
        pattern: str,
        target_type: TargetType | str,
        target_id: str,
        priority: Any = None,
        is_active: bool = True,
        exclude_pattern: str | None = None,
        notes: str | None = None,
    ) -> Rule:
        """Validate and store a new rule.

        Raises:
            InvalidInputError: On unknown enums, missing fields, or malformed patterns.
        """
        kind = _parse_enum(RuleType, rule_type, "rule_type")
        clean_pattern = _require_text(pattern, "pattern")
        self._check_pattern(kind, clean_pattern)
        now = self._clock()
        rule = validated(
            Rule,
            {
                "name": _require_text(name, "name"),
                "rule_type": kind,
                "pattern": clean_pattern,
                "target_type": _parse_enum(TargetType, target_type, "target_type"),
                "target_id": _require_text(target_id, "target_id"),
                "priority": clamp_priority(priority),
                "is_active": bool(is_active),
                "exclude_pattern": _optional_text(exclude_pattern),
                "notes": _optional_text(notes),
                "created_at": now,
                "updated_at": now,
            },
        )
        stored = self._store.insert(TABLE, rule)
        self._record("create", stored, {"name": stored.name, "type": stored.rule_type.value})
        return stored

    def update(self, rule_id: int, **changes: Any) -> Rule:
        """Apply partial changes to a rule.

        The regex check runs when the type becomes ``regex`` or the pattern of a
        regex rule changes; compound and date patterns are re-parsed likewise.

        Raises:
            RecordNotFoundError: If the rule does not exist.
            InvalidInputError: On invalid values.
        """
        unknown = set(changes) - _EDITABLE
        if unknown:
            raise InvalidInputError(f"Unknown rule fields: {', '.join(sorted(unknown))}.")

        with self._store.transaction():
            current: Rule = self._store.require(TABLE, rule_id)  # type: ignore[assignment]
            values: dict[str, Any] = {}
            if "name" in changes:
                values["name"] = _require_text(changes["name"], "name")
            if "rule_type" in changes:
                values["rule_type"] = _parse_enum(RuleType, changes["rule_type"], "rule_type")
            if "pattern" in changes:
                values["pattern"] = _require_text(changes["pattern"], "pattern")
            if "target_type" in changes:
                values["target_type"] = _parse_enum(
                    TargetType, changes["target_type"], "target_type"
                )
            if "target_id" in changes:
                values["target_id"] = _require_text(changes["target_id"], "target_id")
            if "priority" in changes:
                values["priority"] = clamp_priority(changes["priority"])
            if "is_active" in changes:
                values["is_active"] = bool(changes["is_active"])
            if "exclude_pattern" in changes:
                values["exclude_pattern"] = _optional_text(changes["exclude_pattern"])
            if "notes" in changes:
                values["notes"] = _optional_text(changes["notes"])

            if "rule_type" in values or "pattern" in values:
                self._check_pattern(
                    values.get("rule_type", current.rule_type),
                    values.get("pattern", current.pattern),
                )
            values["updated_at"] = self._clock()
            updated: Rule = self._store.update(TABLE, rule_id, values)  # type: ignore[assignment]
        self._record("update", updated, {key: str(value) for key, value in changes.items()})
        return updated

    def delete(self, rule_id: int) -> bool:
        """Hard-delete a rule. Ledger and activity rows keep their dangling ids."""
        rule = self.get(rule_id)
        removed = self._store.delete(TABLE, rule_id)
        if removed and rule is not None:
            self._record("delete", rule, {"name": rule.name})
        return removed

    def get(self, rule_id: int) -> Optional[Rule]:
        return self._store.get(TABLE, rule_id)  # type: ignore[return-value]

    def get_by_target(self, target_type: TargetType | str, target_id: str) -> list[Rule]:
        """Return active rules pointing at the given target, in canonical order."""
        kind = _parse_enum(TargetType, target_type, "target_type")
        rules = self._store.select(
            TABLE,
            lambda rule: rule.is_active
            and rule.target_type is kind
            and rule.target_id == target_id,
        )
        return sorted(rules, key=rule_sort_key)

    def list_rules(
        self,
        *,
        active_only: bool = True,
        rule_type: RuleType | str | None = None,
    ) -> list[Rule]:
        """Return rules in canonical order, optionally filtered."""
        kind = _parse_enum(RuleType, rule_type, "rule_type") if rule_type is not None else None
        rules = self._store.select(
            TABLE,
            lambda rule: (not active_only or rule.is_active)
            and (kind is None or rule.rule_type is kind),
        )
        return sorted(rules, key=rule_sort_key)

    def toggle(self, rule_id: int) -> bool:
        """Flip ``is_active`` and return the new state."""
        with self._store.transaction():
            current: Rule = self._store.require(TABLE, rule_id)  # type: ignore[assignment]
            updated: Rule = self._store.update(  # type: ignore[assignment]
                TABLE,
                rule_id,
                {"is_active": not current.is_active, "updated_at": self._clock()},
            )
        self._record("toggle", updated, {"is_active": updated.is_active})
        return updated.is_active

    def increment_match_count(self, rule_id: int) -> Optional[int]:
        """Add one to the rule's match count.

        Returns:
            int | None: New count, or ``None`` when the rule no longer exists.
        """
        with self._store.transaction():
            value = self._store.increment(TABLE, rule_id, "match_count")
            if value is None:
                LOGGER.debug("Rule %s no longer exists; match count not updated", rule_id)
                return None
            self._store.update(TABLE, rule_id, {"updated_at": self._clock()})
        return value

    def reset_match_count(self, rule_id: int) -> Rule:
        updated: Rule = self._store.update(  # type: ignore[assignment]
            TABLE, rule_id, {"match_count": 0, "updated_at": self._clock()}
        )
        return updated

    def count(self, *, active_only: bool = False) -> int:
        if active_only:
            return self._store.count(TABLE, lambda rule: rule.is_active)
        return self._store.count(TABLE)

    def _check_pattern(self, rule_type: RuleType, pattern: str) -> None:
        try:
            validate_pattern(rule_type, pattern)
        except PatternError as exc:
            raise InvalidInputError(f"Invalid {rule_type.value} pattern: {exc}") from exc

    def _record(self, action: str, rule: Rule, details: dict[str, Any]) -> None:
        if self._audit is not None:
            self._audit.record(action, "rule", rule.id, details)


__all__ = ["RuleStore", "clamp_priority", "DEFAULT_PRIORITY"]
