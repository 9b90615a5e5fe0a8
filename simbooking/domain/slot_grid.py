"""Slot grid generation and HH:MM arithmetic."""

from __future__ import annotations

import re

from simbooking.domain.models import OperatingHours


MINUTES_PER_DAY = 24 * 60

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-4]):([0-5]\d)$")


def parse_hhmm(value: str) -> int:
    """Convert ``HH:MM`` (``24:00`` allowed) into minutes after midnight."""
    match = _HHMM_PATTERN.fullmatch(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"time must follow HH:MM format, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        raise ValueError(f"time must not be later than 24:00, got {value!r}")
    return total


def format_minutes(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def generate_slot_grid(hours: OperatingHours) -> list[tuple[int, int]]:
    """Return ``(start, end)`` minute pairs for one day, in order.

    Slots start at the opening minute and step by the configured
    granularity. A trailing slot that would run past closing is dropped,
    so every slot ends at or before the closing minute.
    """
    step = hours.slot_duration_minutes
    if step <= 0:
        return []

    grid: list[tuple[int, int]] = []
    start = hours.opening_minute
    closing = hours.closing_minute
    while start + step <= closing:
        grid.append((start, start + step))
        start += step
    return grid


def slot_starts(hours: OperatingHours) -> list[str]:
    return [format_minutes(start) for start, _ in generate_slot_grid(hours)]


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a
