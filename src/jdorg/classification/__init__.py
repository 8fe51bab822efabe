"""Rule storage and rule-based classification."""

from .engine import RuleClassifier, RuleSet, rule_sort_key
from .models import ClassificationDecision, FileDescriptor, MatchOutcome
from .rules import RuleStore, clamp_priority
from .suggestions import RuleSuggestion, suggest_rules

__all__ = [
    "ClassificationDecision",
    "FileDescriptor",
    "MatchOutcome",
    "RuleClassifier",
    "RuleSet",
    "RuleStore",
    "RuleSuggestion",
    "clamp_priority",
    "rule_sort_key",
    "suggest_rules",
]
