from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from simbooking.domain.errors import ConflictError, IllegalActionError, NotFoundError, ValidationError
from simbooking.domain.models import BookingStatus, OperatingHours, SlotStatus
from simbooking.domain.slot_grid import intervals_overlap, parse_hhmm
from simbooking.repository.data_repository import DataRepository
from simbooking.services.booking_service import BookingLedger
from simbooking.services.clock_service import ShopClock
from simbooking.utils.config import get_settings


TODAY = "2026-10-20"
TOMORROW = "2026-10-21"


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        shop_timezone="Asia/Bangkok",
        operating_hours=OperatingHours(open_hour=10, close_hour=22, slot_duration_minutes=30),
        advance_booking_days=7,
        booking_default_status=BookingStatus.CONFIRMED,
        seed_machine_count=4,
        **overrides,
    )


def _build_ledger(tmp_path, shop_hour: int = 9, shop_minute: int = 0) -> BookingLedger:
    settings = _build_test_settings(tmp_path, "ledger.db")
    moment = datetime(2026, 10, 20, shop_hour - 7, shop_minute, tzinfo=timezone.utc)
    clock = ShopClock(settings, utc_now=lambda: moment)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_default_machines()
    return BookingLedger(repository=repository, clock=clock, settings=settings)


def _book(ledger: BookingLedger, start: str, duration: int = 60, machine_id: int = 1, booking_date: str = TOMORROW, **kwargs):
    return ledger.create(
        machine_id=machine_id,
        booking_date=booking_date,
        start_time=start,
        duration_minutes=duration,
        customer_name=kwargs.pop("customer_name", "Test Driver"),
        customer_phone=kwargs.pop("customer_phone", "0812345678"),
        **kwargs,
    )


def test_create_computes_end_and_defaults_to_confirmed(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 120, notes="birthday")

    assert booking.end_time == "16:00"
    assert booking.status is BookingStatus.CONFIRMED
    assert booking.notes == "birthday"
    assert ledger.get_by_id(booking.booking_id) == booking


def test_overlapping_booking_is_rejected_with_next_start(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    first = _book(ledger, "14:00", 60)

    with pytest.raises(ConflictError) as excinfo:
        _book(ledger, "14:30", 30)

    conflict = excinfo.value
    assert conflict.conflicting_booking_id == first.booking_id
    assert conflict.conflicting_start == "14:00"
    assert conflict.conflicting_end == "15:00"
    assert conflict.next_available_start == "15:00"
    assert conflict.to_dict()["machine_id"] == 1


def test_adjacent_and_other_machine_bookings_are_accepted(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    _book(ledger, "14:00", 60)
    _book(ledger, "15:00", 60)
    _book(ledger, "13:00", 60)
    _book(ledger, "14:00", 60, machine_id=2)

    schedule = ledger.get_day_schedule(1, TOMORROW)
    assert schedule.booked_slots == 6


def test_pending_booking_also_blocks(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    _book(ledger, "14:00", 60, status=BookingStatus.PENDING)
    with pytest.raises(ConflictError):
        _book(ledger, "14:00", 30)


def test_cancel_frees_the_interval_for_rebooking(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60)

    assert ledger.cancel(booking.booking_id) is True
    assert ledger.cancel(booking.booking_id) is True
    assert ledger.get_by_id(booking.booking_id).status is BookingStatus.CANCELLED

    rebooked = _book(ledger, "14:00", 60)
    assert rebooked.booking_id != booking.booking_id


def test_cancel_unknown_or_completed_booking(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    with pytest.raises(NotFoundError):
        ledger.cancel(999)

    booking = _book(ledger, "14:00", 60)
    ledger.complete(booking.booking_id)
    with pytest.raises(ValidationError):
        ledger.cancel(booking.booking_id)


def test_concurrent_identical_requests_book_once(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)

    def attempt(index: int) -> str:
        try:
            _book(ledger, "18:00", 60, customer_name=f"Racer {index}")
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 7
    assert len(ledger.get_by_machine_and_date(1, TOMORROW)) == 1


def test_concurrent_mixed_requests_never_overlap(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    requests = [("14:00", 60), ("14:30", 60), ("15:00", 30), ("14:00", 30), ("15:30", 120), ("16:00", 60)] * 2

    def attempt(item):
        start, duration = item
        try:
            return _book(ledger, start, duration)
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=6) as pool:
        created = [booking for booking in pool.map(attempt, requests) if booking is not None]

    stored = ledger.get_by_machine_and_date(1, TOMORROW)
    assert len(stored) == len(created)
    intervals = [(parse_hhmm(b.start_time), parse_hhmm(b.end_time)) for b in stored]
    for index, (start_a, end_a) in enumerate(intervals):
        for start_b, end_b in intervals[index + 1:]:
            assert not intervals_overlap(start_a, end_a, start_b, end_b)


def test_reschedule_checks_overlap_excluding_itself(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    moving = _book(ledger, "14:00", 60)
    other = _book(ledger, "17:00", 60)

    shifted = ledger.update(moving.booking_id, start_time="14:30")
    assert (shifted.start_time, shifted.end_time) == ("14:30", "15:30")

    with pytest.raises(ConflictError) as excinfo:
        ledger.update(moving.booking_id, start_time="16:30")
    assert excinfo.value.conflicting_booking_id == other.booking_id
    assert ledger.get_by_id(moving.booking_id).start_time == "14:30"

    longer = ledger.update(moving.booking_id, duration_minutes=120)
    assert longer.end_time == "16:30"


def test_reschedule_to_another_day(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60)
    moved = ledger.update(booking.booking_id, booking_date="2026-10-22")

    assert moved.booking_date == "2026-10-22"
    assert ledger.is_slot_available(1, TOMORROW, "14:00", 60) is True
    assert ledger.is_slot_available(1, "2026-10-22", "14:00", 60) is False


def test_status_transitions(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60, status=BookingStatus.PENDING)

    confirmed = ledger.update(booking.booking_id, status=BookingStatus.CONFIRMED)
    assert confirmed.status is BookingStatus.CONFIRMED
    with pytest.raises(ValidationError):
        ledger.update(booking.booking_id, status=BookingStatus.PENDING)

    ledger.cancel(booking.booking_id)
    with pytest.raises(ValidationError):
        ledger.update(booking.booking_id, status=BookingStatus.CONFIRMED)
    with pytest.raises(ValidationError):
        ledger.update(booking.booking_id, start_time="15:00")
    assert ledger.update(booking.booking_id, status=BookingStatus.CANCELLED).status is BookingStatus.CANCELLED


def test_customer_fields_update_without_touching_schedule(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60)
    updated = ledger.update(booking.booking_id, customer_name="New Name", notes="VIP")

    assert updated.customer_name == "New Name"
    assert updated.notes == "VIP"
    assert updated.start_time == "14:00"


@pytest.mark.parametrize(
    ("start", "duration", "booking_date"),
    [
        ("14:00", 45, TOMORROW),
        ("14:15", 60, TOMORROW),
        ("21:30", 60, TOMORROW),
        ("09:30", 30, TOMORROW),
        ("14:00", 60, "2026-10-19"),
        ("14:00", 60, "2026-10-27"),
        ("14:00", 60, "2026-02-30"),
        ("14:00", 60, "20261021"),
        ("25:00", 60, TOMORROW),
    ],
)
def test_invalid_requests_are_rejected(tmp_path, start, duration, booking_date) -> None:
    ledger = _build_ledger(tmp_path)
    with pytest.raises(ValidationError):
        _book(ledger, start, duration, booking_date=booking_date)


def test_last_day_of_window_is_bookable(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    assert _book(ledger, "14:00", 60, booking_date="2026-10-26").booking_date == "2026-10-26"


def test_customer_validation(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    with pytest.raises(ValidationError):
        _book(ledger, "14:00", 60, customer_name="A")
    with pytest.raises(ValidationError):
        _book(ledger, "14:00", 60, customer_phone="12345")


def test_unknown_machine(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    with pytest.raises(NotFoundError):
        _book(ledger, "14:00", 60, machine_id=99)


def test_passed_start_today_is_rejected(tmp_path) -> None:
    ledger = _build_ledger(tmp_path, shop_hour=13, shop_minute=10)

    with pytest.raises(ValidationError):
        _book(ledger, "12:00", 60, booking_date=TODAY)
    booking = _book(ledger, "13:00", 30, booking_date=TODAY)
    assert booking.start_time == "13:00"


def test_today_schedule_marks_elapsed_slots(tmp_path) -> None:
    ledger = _build_ledger(tmp_path, shop_hour=13)
    _book(ledger, "14:00", 60, booking_date=TODAY)

    schedule = ledger.get_day_schedule(1, TODAY)
    assert (schedule.passed_slots, schedule.booked_slots, schedule.available_slots) == (6, 2, 16)
    assert schedule.time_slots[0].status is SlotStatus.PASSED
    assert ledger.find_next_available_start(1, TODAY, 60) == "13:00"


def test_suggested_start_prefers_requested_time_then_earliest(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    _book(ledger, "14:00", 60)
    _book(ledger, "21:00", 60)

    assert ledger.suggest_start(1, TOMORROW, 60, "14:00") == "15:00"
    assert ledger.suggest_start(1, TOMORROW, 60, "12:00") == "12:00"
    assert ledger.suggest_start(1, TOMORROW, 60, "20:30") == "10:00"
    assert ledger.is_slot_available(1, TOMORROW, "14:00", 60) is False


def test_lookup_helpers(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    _book(ledger, "14:00", 60, customer_phone="081-111-2222")
    _book(ledger, "16:00", 60, customer_phone="0899999999")

    assert len(ledger.get_by_customer_phone("0811112222")) == 1
    dates = ledger.get_available_dates()
    assert dates[0] == TODAY
    assert len(dates) == 7

    stats = ledger.get_stats()
    assert stats["confirmed"] == 2
    assert stats["total"] == 2
    assert stats["cancelled"] == 0


def _interleave_after_first_read(monkeypatch, ledger: BookingLedger, action) -> None:
    """Run ``action`` right after the ledger's first booking read returns."""
    repository = ledger._repository
    original_get = repository.get_booking
    pending = [action]

    def get_booking(booking_id):
        found = original_get(booking_id)
        if pending:
            pending.pop()()
        return found

    monkeypatch.setattr(repository, "get_booking", get_booking)


def test_update_rereads_status_after_concurrent_cancel_and_rebook(tmp_path, monkeypatch) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60, status=BookingStatus.PENDING)

    def cancel_and_rebook() -> None:
        ledger.cancel(booking.booking_id)
        _book(ledger, "14:00", 60)

    _interleave_after_first_read(monkeypatch, ledger, cancel_and_rebook)
    with pytest.raises(ValidationError):
        ledger.update(booking.booking_id, status=BookingStatus.CONFIRMED)

    blocking = [b for b in ledger.get_by_machine_and_date(1, TOMORROW) if b.status.blocks_slot]
    assert len(blocking) == 1
    assert blocking[0].booking_id != booking.booking_id
    assert ledger.get_by_id(booking.booking_id).status is BookingStatus.CANCELLED


def test_cancel_rereads_status_after_concurrent_completion(tmp_path, monkeypatch) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60)

    _interleave_after_first_read(monkeypatch, ledger, lambda: ledger.complete(booking.booking_id))
    with pytest.raises(ValidationError):
        ledger.cancel(booking.booking_id)

    assert ledger.get_by_id(booking.booking_id).status is BookingStatus.COMPLETED


def test_repository_refuses_write_when_stored_status_changed(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60, status=BookingStatus.PENDING)
    ledger.cancel(booking.booking_id)

    with pytest.raises(IllegalActionError):
        ledger._repository.update_booking(
            booking.booking_id,
            {"status": BookingStatus.CONFIRMED},
            updated_at="2026-10-20T09:00:00+07:00",
            recheck_overlap=False,
            expected_status=BookingStatus.PENDING,
        )
    assert ledger.get_by_id(booking.booking_id).status is BookingStatus.CANCELLED


def test_repository_rechecks_overlap_when_booking_becomes_blocking(tmp_path) -> None:
    ledger = _build_ledger(tmp_path)
    booking = _book(ledger, "14:00", 60)
    ledger.cancel(booking.booking_id)
    replacement = _book(ledger, "14:30", 60)

    with pytest.raises(ConflictError) as excinfo:
        ledger._repository.update_booking(
            booking.booking_id,
            {"status": BookingStatus.CONFIRMED},
            updated_at="2026-10-20T09:00:00+07:00",
            recheck_overlap=False,
        )
    assert excinfo.value.conflicting_booking_id == replacement.booking_id
