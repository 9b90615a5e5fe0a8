"""Day schedule classification over the 10:00-22:00 half-hour grid."""

from __future__ import annotations

from simbooking.domain.models import AdvanceBooking, BookingStatus, OperatingHours, SlotStatus
from simbooking.domain.schedule import build_day_schedule, find_free_start
from simbooking.domain.slot_grid import generate_slot_grid


GRID = generate_slot_grid(OperatingHours(open_hour=10, close_hour=22, slot_duration_minutes=30))


def _booking(booking_id: int, start: str, end: str, status: BookingStatus = BookingStatus.CONFIRMED, **overrides) -> AdvanceBooking:
    values = {
        "booking_id": booking_id,
        "machine_id": 1,
        "customer_name": "Test Driver",
        "customer_phone": "0812345678",
        "booking_date": "2026-10-20",
        "start_time": start,
        "end_time": end,
        "duration_minutes": 60,
        "status": status,
    }
    values.update(overrides)
    return AdvanceBooking(**values)


def _slot(schedule, start_time: str):
    return next(slot for slot in schedule.time_slots if slot.start_time == start_time)


def test_booked_and_passed_slots_on_reference_day() -> None:
    schedule = build_day_schedule(
        1,
        "2026-10-20",
        GRID,
        [_booking(7, "14:00", "15:00")],
        reference_date="2026-10-20",
        reference_minutes=13 * 60,
    )

    assert schedule.total_slots == 24
    assert schedule.passed_slots == 6
    assert schedule.booked_slots == 2
    assert schedule.available_slots == 16
    assert _slot(schedule, "12:30").status is SlotStatus.PASSED
    assert _slot(schedule, "13:00").status is SlotStatus.AVAILABLE
    assert _slot(schedule, "13:30").status is SlotStatus.AVAILABLE
    assert _slot(schedule, "14:00").status is SlotStatus.BOOKED
    assert _slot(schedule, "14:00").booking_id == 7
    assert _slot(schedule, "14:30").status is SlotStatus.BOOKED
    assert _slot(schedule, "15:00").status is SlotStatus.AVAILABLE


def test_counts_always_sum_to_total() -> None:
    bookings = [
        _booking(1, "10:00", "11:00"),
        _booking(2, "18:00", "21:00", BookingStatus.PENDING, duration_minutes=180),
    ]
    for minutes in (0, 600, 700, 1000, 1320, 1439):
        schedule = build_day_schedule(1, "2026-10-20", GRID, bookings, "2026-10-20", minutes)
        assert (
            schedule.available_slots + schedule.booked_slots + schedule.passed_slots
            == schedule.total_slots
        )


def test_past_date_is_entirely_passed() -> None:
    schedule = build_day_schedule(
        1,
        "2026-10-19",
        GRID,
        [_booking(1, "14:00", "15:00", booking_date="2026-10-19")],
        reference_date="2026-10-20",
        reference_minutes=0,
    )
    assert schedule.passed_slots == schedule.total_slots
    assert all(slot.booking_id is None for slot in schedule.time_slots)


def test_future_date_ignores_reference_time() -> None:
    schedule = build_day_schedule(1, "2026-10-21", GRID, [], "2026-10-20", 23 * 60)
    assert schedule.available_slots == 24


def test_cancelled_and_completed_bookings_do_not_block() -> None:
    bookings = [
        _booking(1, "14:00", "15:00", BookingStatus.CANCELLED),
        _booking(2, "16:00", "17:00", BookingStatus.COMPLETED),
    ]
    schedule = build_day_schedule(1, "2026-10-20", GRID, bookings, "2026-10-20", 0)
    assert schedule.booked_slots == 0


def test_other_machines_and_unreadable_rows_are_ignored() -> None:
    bookings = [
        _booking(1, "14:00", "15:00", machine_id=2),
        _booking(2, "bad", "15:00"),
    ]
    schedule = build_day_schedule(1, "2026-10-20", GRID, bookings, "2026-10-20", 0)
    assert schedule.booked_slots == 0


def test_slot_ids_are_unique_and_stable() -> None:
    schedule = build_day_schedule(3, "2026-10-20", GRID, [], "2026-10-20", 0)
    ids = [slot.slot_id for slot in schedule.time_slots]

    assert len(set(ids)) == len(ids)
    assert ids[0] == "slot-3-2026-10-20-10:00"


def test_find_free_start_skips_booked_run() -> None:
    schedule = build_day_schedule(
        1,
        "2026-10-20",
        GRID,
        [_booking(1, "10:00", "11:00"), _booking(2, "11:30", "12:00")],
        "2026-10-20",
        0,
    )
    assert find_free_start(schedule, 30) == "11:00"
    assert find_free_start(schedule, 60) == "12:00"
    assert find_free_start(schedule, 60, not_before="15:00") == "15:00"


def test_find_free_start_returns_none_when_nothing_fits() -> None:
    schedule = build_day_schedule(1, "2026-10-20", GRID, [], "2026-10-20", 21 * 60 + 30)
    assert find_free_start(schedule, 60) is None
    assert find_free_start(schedule, 30) == "21:30"
