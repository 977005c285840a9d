# sonium/domain/decades.py

"""Decade filter labels and release-date parsing."""

from __future__ import annotations

import re

from sonium.domain.models import UNKNOWN_RELEASE_DATE
from sonium.errors import InvalidInput

ALL_DECADES = "all"

_DECADE_LABEL = re.compile(r"^(\d{3})0s$")
_ISO_DATE = re.compile(
    r"^(?P<date>(?P<year>\d{4})(?:-(?P<month>\d{2})(?:-(?P<day>\d{2}))?)?)"
    r"(?:[T ][0-9:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$"
)


def decade_range(label: str) -> tuple[int, int] | None:
    """Return the closed year range for a decade label.

    "all" means no filter and returns None; "1990s" returns (1990, 1999).
    Every decade is closed, including the current one.
    """
    text = label.strip().lower()
    if text == ALL_DECADES:
        return None

    match = _DECADE_LABEL.match(text)
    if match is None:
        msg = f"Unknown decade filter: {label!r}"
        raise InvalidInput(msg)

    start = int(match.group(1)) * 10
    return start, start + 9


def parse_release_date(value: str | None) -> tuple[int, int, int] | None:
    """Parse a full or partial ISO date into a sortable (year, month, day) key.

    Missing month/day parts become 0. A trailing time part, as databases
    serialise DATE columns ("1991-09-24T00:00:00.000Z"), is ignored.
    Returns None for the "Unknown" sentinel and anything unparseable.
    """
    match = _match_date(value)
    if match is None:
        return None

    year, month, day = match.group("year", "month", "day")
    return int(year), int(month or 0), int(day or 0)


def _match_date(value: str | None) -> re.Match[str] | None:
    if not value or value == UNKNOWN_RELEASE_DATE:
        return None
    return _ISO_DATE.match(value.strip())


def normalize_release_date(value: str | None) -> str:
    """Return the date part if parseable, otherwise the sentinel."""
    match = _match_date(value)
    if match is None:
        return UNKNOWN_RELEASE_DATE
    return match.group("date")


def release_year(value: str | None) -> int | None:
    key = parse_release_date(value)
    return None if key is None else key[0]


def in_decade(release_date: str | None, label: str) -> bool:
    """True if the release year falls into the decade (always True for "all")."""
    bounds = decade_range(label)
    if bounds is None:
        return True
    year = release_year(release_date)
    if year is None:
        return False
    return bounds[0] <= year <= bounds[1]
