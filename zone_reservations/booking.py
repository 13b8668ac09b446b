from __future__ import annotations

import re

from .errors import MalformedTimeError

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")


def to_minutes(value: str) -> int:
    """Convert an ``HH:MM`` wall-clock value into minutes after midnight."""
    if not isinstance(value, str):
        raise MalformedTimeError(value)

    match = _HHMM_RE.match(value.strip())
    if match is None:
        raise MalformedTimeError(value)
    return int(match.group("hour")) * 60 + int(match.group("minute"))


def to_time(minutes: int) -> str:
    """Render a minute offset as ``HH:MM``, wrapping offsets past midnight."""
    wrapped = minutes % MINUTES_PER_DAY
    return f"{wrapped // 60:02d}:{wrapped % 60:02d}"


def window_span(start: int, end: int) -> tuple[int, bool]:
    """Return ``(normalized_end, crosses_midnight)`` for an operating window.

    A window whose end is not after its start wraps past midnight, so the end is
    pushed into the next day (``end + 1440``).
    """
    if end <= start:
        return end + MINUTES_PER_DAY, True
    return end, False


def normalize_start(start: int, open_minutes: int, crosses_midnight: bool) -> int:
    """Place a start offset on the operating window's own timeline.

    For a window that wraps midnight, early-morning starts belong to the tail of
    the window that opened the previous evening.
    """
    if crosses_midnight and start < open_minutes:
        return start + MINUTES_PER_DAY
    return start


def has_time_overlap(new_start: int, new_end: int, exist_start: int, exist_end: int) -> bool:
    """Return True when two minute intervals overlap by even one minute.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and exist_start < new_end
