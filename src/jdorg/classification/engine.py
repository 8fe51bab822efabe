"""Rule-based classification engine.

The engine is pure: it receives the ordered rule list and a file descriptor
and returns a decision without touching the store or the filesystem. A
:class:`RuleSet` holds compiled rules so batches parse patterns only once.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from jdorg.state.models import Confidence, Rule, TargetType

from .models import ClassificationDecision, FileDescriptor, MatchOutcome
from .predicates import CompiledRule, compile_rule, evaluate

LOGGER = logging.getLogger(__name__)

DEFAULT_REGEX_TIMEOUT_MS = 100


def rule_sort_key(rule: Rule) -> tuple:
    """Canonical rule order: priority desc, match count desc, created asc, id asc."""
    return (-rule.priority, -rule.match_count, rule.created_at, rule.id)


class RuleSet:
    """Active rules compiled once and kept in canonical order."""

    def __init__(
        self,
        rules: Iterable[Rule],
        *,
        regex_timeout_ms: int = DEFAULT_REGEX_TIMEOUT_MS,
        fallback_targets: Mapping[str, str] | None = None,
    ) -> None:
        ordered = sorted((rule for rule in rules if rule.is_active), key=rule_sort_key)
        self._compiled: list[CompiledRule] = [compile_rule(rule) for rule in ordered]
        self._budget = max(1, regex_timeout_ms) / 1000.0
        self._fallback = dict(fallback_targets or {})

    def __len__(self) -> int:
        return len(self._compiled)

    def classify(self, file: FileDescriptor) -> ClassificationDecision:
        """Return the decision of the first matching rule, or the fallback.

        Args:
            file: File to classify.

        Returns:
            ClassificationDecision: Rule match, low-confidence fallback, or no match.
        """
        extension = file.normalized_extension()
        degraded: list[int] = []
        for compiled in self._compiled:
            if compiled.required_extensions and extension not in compiled.required_extensions:
                continue
            outcome = evaluate(compiled, file, self._budget)
            if outcome is MatchOutcome.DEGRADED:
                degraded.append(compiled.rule.id)
                continue
            if outcome is MatchOutcome.MATCH:
                rule = compiled.rule
                return ClassificationDecision(
                    target_type=rule.target_type,
                    target_id=rule.target_id,
                    rule_id=rule.id,
                    confidence=compiled.confidence,
                    reason=f"matched {rule.rule_type.value} rule {rule.name!r}",
                    degraded_rule_ids=degraded,
                )
        return self._fallback_decision(file, degraded)

    def classify_many(self, files: Iterable[FileDescriptor]) -> list[ClassificationDecision]:
        return [self.classify(file) for file in files]

    def _fallback_decision(
        self, file: FileDescriptor, degraded: list[int]
    ) -> ClassificationDecision:
        target = self._fallback.get(file.file_type)
        if target:
            return ClassificationDecision(
                target_type=TargetType.FOLDER,
                target_id=target,
                confidence=Confidence.LOW,
                reason=f"fallback for {file.file_type} files",
                degraded_rule_ids=degraded,
            )
        return ClassificationDecision(degraded_rule_ids=degraded)


class RuleClassifier:
    """Classify files against rules using configured budgets and fallbacks."""

    def __init__(
        self,
        *,
        regex_timeout_ms: int = DEFAULT_REGEX_TIMEOUT_MS,
        fallback_targets: Mapping[str, str] | None = None,
    ) -> None:
        self._regex_timeout_ms = regex_timeout_ms
        self._fallback_targets = dict(fallback_targets or {})

    def compile(self, rules: Iterable[Rule]) -> RuleSet:
        """Compile ``rules`` for repeated classification."""
        return RuleSet(
            rules,
            regex_timeout_ms=self._regex_timeout_ms,
            fallback_targets=self._fallback_targets,
        )

    def classify(self, file: FileDescriptor, rules: Sequence[Rule]) -> ClassificationDecision:
        """Classify a single file against ``rules``."""
        return self.compile(rules).classify(file)

    def classify_batch(
        self, files: Iterable[FileDescriptor], rules: Sequence[Rule]
    ) -> list[ClassificationDecision]:
        """Classify many files, compiling ``rules`` once."""
        rule_set = self.compile(rules)
        decisions = rule_set.classify_many(files)
        LOGGER.debug("Classified %d files against %d rules", len(decisions), len(rule_set))
        return decisions


__all__ = ["RuleClassifier", "RuleSet", "rule_sort_key", "DEFAULT_REGEX_TIMEOUT_MS"]
