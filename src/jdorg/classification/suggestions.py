"""Rule suggestions derived from the files already sitting in a folder."""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable

from pydantic import BaseModel

from jdorg.ingestion.detectors import extension_of
from jdorg.state.models import Confidence, RuleType

_SEPARATORS = re.compile(r"[-_.\s]+")


class RuleSuggestion(BaseModel):
    """Candidate rule proposed from recurring filename features."""

    rule_type: RuleType
    pattern: str
    confidence: Confidence
    reason: str


def filename_keywords(filename: str) -> list[str]:
    """Split a filename (without extension) into lower-cased words longer than two characters."""
    stem = re.sub(r"\.[^.]+$", "", filename).lower()
    return [word for word in _SEPARATORS.split(stem) if len(word) > 2]


def suggest_rules(filenames: Iterable[str]) -> list[RuleSuggestion]:
    """Propose extension and keyword rules for a set of filenames.

    An extension seen at least three times yields an extension rule; a keyword of
    four or more characters seen at least three times yields a keyword rule.
    Suggestions are ordered by confidence, strongest first.
    """
    names = list(filenames)
    extensions = Counter(ext for ext in (extension_of(name) for name in names) if ext)
    keywords: Counter[str] = Counter()
    for name in names:
        keywords.update(filename_keywords(name))

    suggestions: list[RuleSuggestion] = []
    for extension, count in sorted(extensions.items()):
        if count < 3:
            continue
        confidence = (
            Confidence.HIGH if count >= 10 else Confidence.MEDIUM if count >= 5 else Confidence.LOW
        )
        suggestions.append(
            RuleSuggestion(
                rule_type=RuleType.EXTENSION,
                pattern=extension,
                confidence=confidence,
                reason=f"{count} .{extension} files found",
            )
        )
    for keyword, count in sorted(keywords.items()):
        if count < 3 or len(keyword) < 4:
            continue
        confidence = (
            Confidence.HIGH if count >= 8 else Confidence.MEDIUM if count >= 5 else Confidence.LOW
        )
        suggestions.append(
            RuleSuggestion(
                rule_type=RuleType.KEYWORD,
                pattern=keyword,
                confidence=confidence,
                reason=f'"{keyword}" appears in {count} filenames',
            )
        )
    suggestions.sort(key=lambda item: -item.confidence.rank)
    return suggestions


__all__ = ["RuleSuggestion", "filename_keywords", "suggest_rules"]
