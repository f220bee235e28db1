"""Client-side checks for proposed bookings.

The only business rule enforced before submission is that a booking must
end strictly after it starts. Overlaps with existing bookings are left to
the remote API.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

DateTimeInput = Union[datetime, str, None]

RANGE_INVERTED = "End time must be later than the start time."
RANGE_MISSING = "Please fill in both the start and the end time."
RANGE_UNPARSABLE = "Start and end must be valid dates and times."


@dataclass(frozen=True)
class RangeCheck:
    """Outcome of :func:`validate_booking_range`."""

    ok: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "RangeCheck":
        return cls(ok=True)

    @classmethod
    def reject(cls, reason: str) -> "RangeCheck":
        return cls(ok=False, reason=reason)


def parse_datetime(value: DateTimeInput) -> Optional[datetime]:
    """Parse a ``datetime-local`` style string (``YYYY-MM-DDTHH:MM``).

    ``datetime`` instances are returned unchanged, blank input gives ``None``
    and anything unparsable raises ``ValueError``. A trailing ``Z`` is read
    as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _comparable(start: datetime, end: datetime) -> tuple:
    # Naive values are treated as UTC when the other side carries a timezone.
    if (start.tzinfo is None) != (end.tzinfo is None):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        else:
            end = end.replace(tzinfo=timezone.utc)
    return start, end


def validate_booking_range(start: DateTimeInput, end: DateTimeInput) -> RangeCheck:
    """Decide whether a booking from ``start`` to ``end`` may be submitted.

    Equal and inverted ranges are rejected, as are missing or unparsable
    values. This is a pure function: no network call is made.
    """
    try:
        start_at = parse_datetime(start)
        end_at = parse_datetime(end)
    except ValueError:
        return RangeCheck.reject(RANGE_UNPARSABLE)
    if start_at is None or end_at is None:
        return RangeCheck.reject(RANGE_MISSING)
    start_at, end_at = _comparable(start_at, end_at)
    if end_at <= start_at:
        return RangeCheck.reject(RANGE_INVERTED)
    return RangeCheck.accept()
