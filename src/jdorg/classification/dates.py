"""Date extraction from filenames and date-rule pattern parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}  # fmt: skip

_MONTH_NAME = (
    r"(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?"
    r"|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

_ISO = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_US = re.compile(r"(\d{2})[-/](\d{2})[-/](\d{4})")
_COMPACT = re.compile(r"(?<!\d)(20\d{2})(\d{2})(\d{2})(?!\d)")
_YEAR_MONTH = re.compile(r"(?<!\d)(20\d{2})[-_](\d{2})(?!\d)")
_MONTH_YEAR = re.compile(_MONTH_NAME + r"[_\-\s]?(20\d{2})", re.IGNORECASE)
_QUARTER = re.compile(r"(20\d{2})[-_]?Q([1-4])|Q([1-4])[-_]?(20\d{2})", re.IGNORECASE)
_YEAR = re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)")

_EXPLICIT_YEAR_MONTH = re.compile(r"^(\d{4})[-_/](\d{1,2})$")
_EXPLICIT_YEAR = re.compile(r"^(\d{4})$")
_EXPLICIT_QUARTER = re.compile(r"^(\d{4})[-_]?Q([1-4])$", re.IGNORECASE)


@dataclass(frozen=True)
class FilenameDate:
    """Date components found in a filename.

    ``quarter`` is derived from ``month`` when the filename names a month.
    """

    year: int
    month: Optional[int] = None
    quarter: Optional[int] = None
    source: str = ""
    format: str = ""


def _valid_month(value: int) -> bool:
    return 1 <= value <= 12


def _quarter_of(month: Optional[int]) -> Optional[int]:
    return (month - 1) // 3 + 1 if month else None


# (pattern, year group, month group, label) for formats that carry a month, strongest first.
_MONTH_FORMATS = (
    (_ISO, 1, 2, "YYYY-MM-DD"),
    (_US, 3, 1, "MM-DD-YYYY"),
    (_COMPACT, 1, 2, "YYYYMMDD"),
    (_YEAR_MONTH, 1, 2, "YYYY-MM"),
)


def extract_date(filename: str) -> Optional[FilenameDate]:
    """Return the first date found in ``filename``, strongest formats first."""
    for pattern, year_group, month_group, label in _MONTH_FORMATS:
        match = pattern.search(filename)
        if match and _valid_month(int(match.group(month_group))):
            month = int(match.group(month_group))
            return FilenameDate(
                int(match.group(year_group)), month, _quarter_of(month), match.group(0), label
            )

    match = _MONTH_YEAR.search(filename)
    if match:
        month = _MONTHS[match.group(1)[:3].lower()]
        return FilenameDate(
            int(match.group(2)), month, _quarter_of(month), match.group(0), "Month-YYYY"
        )

    match = _QUARTER.search(filename)
    if match:
        if match.group(1):
            year, quarter = int(match.group(1)), int(match.group(2))
        else:
            year, quarter = int(match.group(4)), int(match.group(3))
        return FilenameDate(year, None, quarter, match.group(0), "Quarter")

    match = _YEAR.search(filename)
    if match:
        return FilenameDate(int(match.group(1)), source=match.group(0), format="YYYY")
    return None


@dataclass(frozen=True)
class DateConstraints:
    """Constraints a date rule places on the filename date.

    ``None`` means the component is unconstrained. With no constraints at all,
    any recognizable filename date satisfies the rule.
    """

    year: Optional[int] = None
    month: Optional[int] = None
    quarter: Optional[int] = None

    def accepts(self, found: FilenameDate) -> bool:
        if self.year is not None and found.year != self.year:
            return False
        if self.month is not None and found.month != self.month:
            return False
        if self.quarter is not None and found.quarter != self.quarter:
            return False
        return True


def parse_date_pattern(pattern: str) -> DateConstraints:
    """Parse a date-rule pattern into constraints.

    Accepts explicit tokens (``2024-03``, ``2024``, ``2024-Q1``, ``*``) and
    ``year:``/``month:``/``quarter:``/``pattern:`` pairs, comma separated. When
    both forms constrain the same component, the key/value pair wins.

    Raises:
        ValueError: If a token is not understood.
    """
    explicit: dict[str, int] = {}
    keyed: dict[str, int] = {}
    tokens = [token.strip() for token in pattern.split(",") if token.strip()]
    if not tokens:
        raise ValueError("Date pattern is empty.")

    for token in tokens:
        key, sep, value = token.partition(":")
        if sep:
            key = key.strip().lower()
            value = value.strip()
            if key == "pattern":
                if value not in ("", "*"):
                    raise ValueError(f"Unsupported date pattern value {value!r}.")
                continue
            if key == "year" and value.isdigit() and len(value) == 4:
                keyed["year"] = int(value)
            elif key == "month" and value.isdigit() and _valid_month(int(value)):
                keyed["month"] = int(value)
            elif key == "quarter" and value.upper().lstrip("Q") in ("1", "2", "3", "4"):
                keyed["quarter"] = int(value.upper().lstrip("Q"))
            else:
                raise ValueError(f"Invalid date constraint {token!r}.")
            continue

        if token == "*":
            continue
        match = _EXPLICIT_YEAR_MONTH.match(token)
        if match and _valid_month(int(match.group(2))):
            explicit["year"] = int(match.group(1))
            explicit["month"] = int(match.group(2))
            continue
        match = _EXPLICIT_QUARTER.match(token)
        if match:
            explicit["year"] = int(match.group(1))
            explicit["quarter"] = int(match.group(2))
            continue
        match = _EXPLICIT_YEAR.match(token)
        if match:
            explicit["year"] = int(match.group(1))
            continue
        raise ValueError(f"Invalid date token {token!r}.")

    merged = {**explicit, **keyed}
    return DateConstraints(
        year=merged.get("year"),
        month=merged.get("month"),
        quarter=merged.get("quarter"),
    )


__all__ = ["FilenameDate", "DateConstraints", "extract_date", "parse_date_pattern"]
