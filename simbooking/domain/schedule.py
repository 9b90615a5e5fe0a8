"""Day schedule classification over the slot grid."""

from __future__ import annotations

from typing import Iterable, Optional

from simbooking.domain.models import AdvanceBooking, DaySchedule, SlotStatus, TimeSlot
from simbooking.domain.slot_grid import format_minutes, intervals_overlap, parse_hhmm
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


def build_slot_id(machine_id: int, date: str, start_time: str) -> str:
    return f"slot-{machine_id}-{date}-{start_time}"


def _blocking_intervals(
    machine_id: int,
    date: str,
    bookings: Iterable[AdvanceBooking],
) -> list[tuple[int, int, int]]:
    intervals: list[tuple[int, int, int]] = []
    for booking in bookings:
        if booking.machine_id != machine_id or booking.booking_date != date:
            continue
        if not booking.status.blocks_slot:
            continue
        try:
            start = parse_hhmm(booking.start_time)
            end = parse_hhmm(booking.end_time)
        except ValueError:
            logger.warning(
                "Skipping booking %s with unreadable interval %s-%s",
                booking.booking_id,
                booking.start_time,
                booking.end_time,
            )
            continue
        intervals.append((start, end, booking.booking_id))
    intervals.sort()
    return intervals


def classify_slot(
    slot_start: int,
    slot_end: int,
    *,
    is_elapsed_day: bool,
    is_reference_day: bool,
    reference_minutes: int,
    intervals: list[tuple[int, int, int]],
) -> tuple[SlotStatus, Optional[int]]:
    # Elapsed wins over booked: neither can be acted upon.
    if is_elapsed_day or (is_reference_day and slot_end <= reference_minutes):
        return SlotStatus.PASSED, None
    for start, end, booking_id in intervals:
        if intervals_overlap(slot_start, slot_end, start, end):
            return SlotStatus.BOOKED, booking_id
    return SlotStatus.AVAILABLE, None


def build_day_schedule(
    machine_id: int,
    date: str,
    grid: list[tuple[int, int]],
    bookings: Iterable[AdvanceBooking],
    reference_date: str,
    reference_minutes: int,
) -> DaySchedule:
    """Classify every grid slot of ``date`` for one machine.

    Dates compare lexically because both sides are ``YYYY-MM-DD``.
    """
    intervals = _blocking_intervals(machine_id, date, bookings)
    is_reference_day = date == reference_date
    is_elapsed_day = date < reference_date

    time_slots: list[TimeSlot] = []
    for slot_start, slot_end in grid:
        status, booking_id = classify_slot(
            slot_start,
            slot_end,
            is_elapsed_day=is_elapsed_day,
            is_reference_day=is_reference_day,
            reference_minutes=reference_minutes,
            intervals=intervals,
        )
        start_time = format_minutes(slot_start)
        time_slots.append(
            TimeSlot(
                slot_id=build_slot_id(machine_id, date, start_time),
                start_time=start_time,
                end_time=format_minutes(slot_end),
                status=status,
                booking_id=booking_id,
            )
        )

    return DaySchedule(
        machine_id=machine_id,
        date=date,
        time_slots=time_slots,
        total_slots=len(time_slots),
        available_slots=sum(1 for slot in time_slots if slot.status is SlotStatus.AVAILABLE),
        booked_slots=sum(1 for slot in time_slots if slot.status is SlotStatus.BOOKED),
        passed_slots=sum(1 for slot in time_slots if slot.status is SlotStatus.PASSED),
    )


def find_free_start(
    schedule: DaySchedule,
    duration_minutes: int,
    *,
    not_before: Optional[str] = None,
) -> Optional[str]:
    """Return the first slot start from which ``duration_minutes`` fit on free slots."""
    slots = schedule.time_slots
    threshold = parse_hhmm(not_before) if not_before else None
    for index, slot in enumerate(slots):
        start = parse_hhmm(slot.start_time)
        if threshold is not None and start < threshold:
            continue
        end_needed = start + duration_minutes
        cursor = index
        covered_until = start
        while covered_until < end_needed and cursor < len(slots):
            candidate = slots[cursor]
            if candidate.status is not SlotStatus.AVAILABLE:
                break
            if parse_hhmm(candidate.start_time) != covered_until:
                break
            covered_until = parse_hhmm(candidate.end_time)
            cursor += 1
        if covered_until >= end_needed:
            return slot.start_time
    return None
