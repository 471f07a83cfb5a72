"""
Datetime conventions for the cutover ledger.

Every timestamp is stored UTC-naive: cutover dates, lock dates and
received_at on opening balances are compared with plain < and >, so mixing
aware and naive values would raise or, worse, silently shift a lock by an
offset. Values are converted at the edges (request parsing and JSON output)
and nowhere else.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time, UTC-naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: Union[datetime, date]) -> datetime:
    """
    Canonical form for comparisons against lock and cutover dates.

    A bare date means midnight UTC; a naive datetime is already UTC.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse request input such as "2024-01-01", "2024-01-01T08:30" or
    "2024-01-01T08:30:00-05:00" into the canonical form.

    Blank input is None; anything unparseable raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "Zz":
        text = f"{text[:-1]}+00:00"
    return as_utc_naive(datetime.fromisoformat(text))


def to_utc_z(value: Optional[datetime]) -> Optional[str]:
    """JSON form: whole seconds with a trailing Z ("2024-01-01T00:00:00Z")."""
    if value is None:
        return None
    return as_utc_naive(value).replace(microsecond=0).isoformat() + "Z"
