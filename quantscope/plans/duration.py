"""Duration tokens: the compact period notation used for plan date limits.

Tokens look like ``P3Y``, ``P6M``, ``P2W`` or ``P1D``: a quantity followed by a
single unit letter.  ``P0D`` is the sentinel for "unlimited history".

``duration_to_date()`` returns ``None`` for both the sentinel and for tokens
that don't match the grammar, so callers that need to tell them apart should
use ``parse_duration()`` instead.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

UNLIMITED = "P0D"

_TOKEN_RE = re.compile(r"^P(\d+)([YMWD])$")

_UNIT_NAMES = {"Y": "year", "M": "month", "W": "week", "D": "day"}


class DurationKind(str, Enum):
    UNLIMITED = "unlimited"
    OFFSET = "offset"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Duration:
    """Decoded duration token."""

    token: str
    kind: DurationKind
    amount: int = 0
    unit: str = ""  # Y | M | W | D

    @property
    def is_unlimited(self) -> bool:
        return self.kind is DurationKind.UNLIMITED

    @property
    def is_malformed(self) -> bool:
        return self.kind is DurationKind.MALFORMED


def is_duration_token(value: object) -> bool:
    """True if ``value`` is a string matching the ``P<n><unit>`` grammar."""
    return isinstance(value, str) and _TOKEN_RE.match(value) is not None


def parse_duration(token: str) -> Duration:
    if token == UNLIMITED:
        return Duration(token=token, kind=DurationKind.UNLIMITED)
    match = _TOKEN_RE.match(token) if isinstance(token, str) else None
    if not match:
        return Duration(token=str(token), kind=DurationKind.MALFORMED)
    return Duration(
        token=token,
        kind=DurationKind.OFFSET,
        amount=int(match.group(1)),
        unit=match.group(2),
    )


def _sub_months(dt: datetime, months: int) -> datetime:
    total = dt.year * 12 + (dt.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def subtract_duration(dt: datetime, duration: Duration) -> datetime:
    """Move ``dt`` back by a calendar offset.

    Years and months shift calendar fields (clamping the day to the end of
    the target month), weeks are seven days.
    """
    if duration.kind is not DurationKind.OFFSET:
        raise ValueError(f"Cannot subtract non-offset duration: {duration.token}")
    if duration.unit == "Y":
        return _sub_months(dt, duration.amount * 12)
    if duration.unit == "M":
        return _sub_months(dt, duration.amount)
    if duration.unit == "W":
        return dt - timedelta(days=7 * duration.amount)
    return dt - timedelta(days=duration.amount)


def duration_to_date(token: str, now: datetime | None = None) -> datetime | None:
    """Earliest queryable moment for a limit token, or None for no lower bound."""
    duration = parse_duration(token)
    if duration.kind is not DurationKind.OFFSET:
        return None
    return subtract_duration(now or datetime.now(), duration)


def format_duration(token: str) -> str:
    """Render a token for humans: ``P3Y`` -> ``3 years``."""
    duration = parse_duration(token)
    if duration.is_unlimited:
        return "unlimited"
    if duration.is_malformed:
        return token
    name = _UNIT_NAMES[duration.unit]
    return f"{duration.amount} {name}{'' if duration.amount == 1 else 's'}"
