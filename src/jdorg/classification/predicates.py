"""Rule predicates keyed by rule type.

Each rule type contributes a parser that validates its pattern, a predicate
evaluated against a :class:`FileDescriptor`, and a fixed confidence level.
Patterns are parsed once by :func:`compile_rule` so batch classification does
not repeat the work per file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import regex

from jdorg.ingestion.detectors import normalize_extension
from jdorg.state.models import Confidence, Rule, RuleType

from .dates import DateConstraints, extract_date, parse_date_pattern
from .models import FileDescriptor, MatchOutcome

LOGGER = logging.getLogger(__name__)

RULE_CONFIDENCE: dict[RuleType, Confidence] = {
    RuleType.EXTENSION: Confidence.HIGH,
    RuleType.KEYWORD: Confidence.MEDIUM,
    RuleType.PATH: Confidence.MEDIUM,
    RuleType.REGEX: Confidence.MEDIUM,
    RuleType.COMPOUND: Confidence.HIGH,
    RuleType.DATE: Confidence.MEDIUM,
}


class PatternError(ValueError):
    """Raised when a rule pattern cannot be parsed for its rule type."""


@dataclass(frozen=True)
class CompoundPattern:
    """Parsed ``ext:<v>,keyword:<v>,...`` pattern."""

    extensions: frozenset[str]
    keywords: tuple[str, ...]


@dataclass
class CompiledRule:
    """A rule together with its parsed pattern.

    Attributes:
        rule: The stored rule.
        parsed: Rule-type specific parsed pattern.
        exclusions: Lower-cased exclude tokens.
        required_extensions: Extensions the file must have for the rule to
            possibly match; empty when any extension can match.
        broken: Compile error for regex rules loaded with invalid patterns.
    """

    rule: Rule
    parsed: Any = None
    exclusions: tuple[str, ...] = ()
    required_extensions: frozenset[str] = field(default_factory=frozenset)
    broken: Optional[str] = None

    @property
    def confidence(self) -> Confidence:
        return RULE_CONFIDENCE[self.rule.rule_type]


def split_tokens(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated list into trimmed, lower-cased, non-empty tokens."""
    if not value:
        return ()
    return tuple(token.strip().lower() for token in value.split(",") if token.strip())


def parse_compound(pattern: str) -> CompoundPattern:
    extensions: set[str] = set()
    keywords: list[str] = []
    for token in pattern.split(","):
        token = token.strip()
        if not token:
            continue
        key, sep, value = token.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if not sep or not value:
            raise PatternError(f"Compound condition {token!r} must look like key:value.")
        if key in ("ext", "extension"):
            extensions.add(normalize_extension(value))
        elif key in ("keyword", "kw"):
            keywords.append(value.lower())
        else:
            raise PatternError(f"Unknown compound condition {key!r}.")
    if not extensions or not keywords:
        raise PatternError("Compound patterns need at least one ext: and one keyword: condition.")
    return CompoundPattern(frozenset(extensions), tuple(keywords))


def compile_regex(pattern: str) -> "regex.Pattern[str]":
    try:
        return regex.compile(pattern, regex.IGNORECASE)
    except regex.error as exc:
        raise PatternError(f"Invalid regular expression: {exc}") from exc


def validate_pattern(rule_type: RuleType, pattern: str) -> None:
    """Check that ``pattern`` is well formed for ``rule_type``.

    Raises:
        PatternError: If the pattern cannot be used.
    """
    if rule_type is RuleType.REGEX:
        compile_regex(pattern)
    elif rule_type is RuleType.COMPOUND:
        parse_compound(pattern)
    elif rule_type is RuleType.DATE:
        try:
            parse_date_pattern(pattern)
        except ValueError as exc:
            raise PatternError(str(exc)) from exc
    elif rule_type is RuleType.EXTENSION and not normalize_extension(pattern):
        raise PatternError("Extension patterns must name an extension.")


def compile_rule(rule: Rule) -> CompiledRule:
    """Parse a rule's pattern for repeated evaluation.

    Invalid regex patterns do not raise; the compiled rule is marked broken and
    evaluates as :attr:`MatchOutcome.DEGRADED`.
    """
    compiled = CompiledRule(rule=rule, exclusions=split_tokens(rule.exclude_pattern))
    try:
        if rule.rule_type is RuleType.EXTENSION:
            extension = normalize_extension(rule.pattern)
            compiled.parsed = extension
            compiled.required_extensions = frozenset({extension})
        elif rule.rule_type is RuleType.KEYWORD:
            compiled.parsed = split_tokens(rule.pattern) or (rule.pattern.lower(),)
        elif rule.rule_type is RuleType.PATH:
            compiled.parsed = rule.pattern.lower()
        elif rule.rule_type is RuleType.REGEX:
            compiled.parsed = compile_regex(rule.pattern)
        elif rule.rule_type is RuleType.COMPOUND:
            compound = parse_compound(rule.pattern)
            compiled.parsed = compound
            compiled.required_extensions = compound.extensions
        elif rule.rule_type is RuleType.DATE:
            compiled.parsed = parse_date_pattern(rule.pattern)
    except ValueError as exc:
        compiled.broken = str(exc)
    return compiled


def _match_extension(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    return _outcome(file.normalized_extension() == compiled.parsed)


def _match_keyword(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    name = file.filename.lower()
    return _outcome(any(keyword in name for keyword in compiled.parsed))


def _match_path(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    return _outcome(compiled.parsed in file.path.lower())


def _match_regex(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    try:
        found = compiled.parsed.search(file.filename, timeout=budget)
    except TimeoutError:
        LOGGER.warning(
            "Regex rule %s (%r) exceeded %.0f ms on %s; treating as no match.",
            compiled.rule.id,
            compiled.rule.pattern,
            budget * 1000,
            file.filename,
        )
        return MatchOutcome.DEGRADED
    return _outcome(found is not None)


def _match_compound(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    compound: CompoundPattern = compiled.parsed
    if file.normalized_extension() not in compound.extensions:
        return MatchOutcome.NO_MATCH
    name = file.filename.lower()
    return _outcome(any(keyword in name for keyword in compound.keywords))


def _match_date(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    found = extract_date(file.filename)
    if found is None:
        return MatchOutcome.NO_MATCH
    constraints: DateConstraints = compiled.parsed
    return _outcome(constraints.accepts(found))


def _outcome(matched: bool) -> MatchOutcome:
    return MatchOutcome.MATCH if matched else MatchOutcome.NO_MATCH


PREDICATES: dict[RuleType, Callable[[CompiledRule, FileDescriptor, float], MatchOutcome]] = {
    RuleType.EXTENSION: _match_extension,
    RuleType.KEYWORD: _match_keyword,
    RuleType.PATH: _match_path,
    RuleType.REGEX: _match_regex,
    RuleType.COMPOUND: _match_compound,
    RuleType.DATE: _match_date,
}


def evaluate(compiled: CompiledRule, file: FileDescriptor, budget: float) -> MatchOutcome:
    """Evaluate one compiled rule against ``file``.

    Args:
        compiled: Rule prepared by :func:`compile_rule`.
        file: File under classification.
        budget: Regex time budget in seconds.

    Returns:
        MatchOutcome: Match, no match, or degraded (regex timeout or broken pattern).
    """
    if compiled.broken is not None:
        if compiled.rule.rule_type is RuleType.REGEX:
            LOGGER.warning(
                "Regex rule %s has an invalid pattern (%s); treating as no match.",
                compiled.rule.id,
                compiled.broken,
            )
            return MatchOutcome.DEGRADED
        return MatchOutcome.NO_MATCH
    name = file.filename.lower()
    if any(token in name for token in compiled.exclusions):
        return MatchOutcome.NO_MATCH
    return PREDICATES[compiled.rule.rule_type](compiled, file, budget)


__all__ = [
    "RULE_CONFIDENCE",
    "PatternError",
    "CompoundPattern",
    "CompiledRule",
    "split_tokens",
    "parse_compound",
    "compile_regex",
    "validate_pattern",
    "compile_rule",
    "evaluate",
    "PREDICATES",
]
