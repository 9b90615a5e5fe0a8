"""Booking ledger: creation, rescheduling and cancellation of advance bookings."""

from __future__ import annotations

import re
from contextlib import ExitStack
from datetime import date as date_type
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Optional

from simbooking.domain.constraints import (
    normalize_customer_name,
    normalize_customer_phone,
    validate_duration_catalog,
    validate_operating_hours,
)
from simbooking.domain.errors import ConflictError, IllegalActionError, NotFoundError, ValidationError
from simbooking.domain.models import (
    AdvanceBooking,
    BookingStatus,
    DaySchedule,
    DurationOption,
    Machine,
    OperatingHours,
)
from simbooking.domain.schedule import build_day_schedule, find_free_start
from simbooking.domain.slot_grid import format_minutes, generate_slot_grid, parse_hhmm
from simbooking.repository.data_repository import DataRepository
from simbooking.services.clock_service import ShopClock
from simbooking.services.occupancy_service import OccupancyFeed
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.COMPLETED}
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

_RESCHEDULE_FIELDS = frozenset({"booking_date", "start_time", "duration_minutes"})
_UPDATABLE_FIELDS = _RESCHEDULE_FIELDS | {"customer_name", "customer_phone", "notes", "status"}


def parse_booking_date(value: str) -> date_type:
    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        raise ValidationError(f"booking_date must follow YYYY-MM-DD format, got {value!r}")
    try:
        return date_type.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"booking_date is not a valid calendar date: {value!r}") from exc


def check_transition(current: BookingStatus, target: BookingStatus) -> None:
    if current is target:
        return
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise ValidationError(
            f"Booking cannot move from {current.value} to {target.value}"
        )


class BookingLedger:
    """Owns the booking invariants.

    Per (machine, date) there is never more than one pending or confirmed
    booking covering any minute. Every mutation holds an in-process
    lock for the key and the repository re-checks overlap inside a write
    transaction, so concurrent callers in other processes are covered too.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        clock: Optional[ShopClock] = None,
        settings: Optional[Settings] = None,
        feed: Optional[OccupancyFeed] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or ShopClock(self._settings)
        self._feed = feed
        validate_operating_hours(self._settings.operating_hours)
        validate_duration_catalog(self._settings.duration_catalog)
        self._grid = generate_slot_grid(self._settings.operating_hours)
        self._registry_lock = Lock()
        self._key_locks: dict[tuple[int, str], Lock] = {}

    @property
    def operating_hours(self) -> OperatingHours:
        return self._settings.operating_hours

    @property
    def duration_catalog(self) -> tuple[DurationOption, ...]:
        return self._settings.duration_catalog

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, machine_id: int, booking_date: str) -> Lock:
        with self._registry_lock:
            return self._key_locks.setdefault((machine_id, booking_date), Lock())

    def _booking_locks(self, machine_id: int, *booking_dates: str) -> ExitStack:
        stack = ExitStack()
        for booking_date in sorted(set(booking_dates)):
            stack.enter_context(self._lock_for(machine_id, booking_date))
        return stack

    def _notify(self) -> None:
        if self._feed is not None:
            self._feed.invalidate()

    def _timestamp(self) -> str:
        return self._clock.now().isoformat(timespec="seconds")

    def _require_machine(self, machine_id: int) -> Machine:
        machine = self._repository.get_machine(machine_id)
        if machine is None:
            raise NotFoundError(f"Machine {machine_id} not found")
        return machine

    def _require_booking(self, booking_id: int) -> AdvanceBooking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _validate_interval(
        self,
        booking_date: str,
        start_time: str,
        duration_minutes: int,
    ) -> tuple[str, str]:
        """Return normalised ``(start, end)`` or raise ``ValidationError``."""
        if duration_minutes not in self._settings.duration_minutes_offered:
            raise ValidationError(
                f"duration_minutes must be one of {list(self._settings.duration_minutes_offered)}"
            )

        requested_day = parse_booking_date(booking_date)
        now = self._clock.now()
        today = now.date()
        if requested_day < today:
            raise ValidationError(f"booking_date {booking_date} is in the past")
        last_day = today + timedelta(days=max(self._settings.advance_booking_days, 1) - 1)
        if requested_day > last_day:
            raise ValidationError(
                f"booking_date must be within {self._settings.advance_booking_days} days from today"
            )

        try:
            start = parse_hhmm(start_time)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        hours = self._settings.operating_hours
        grid_starts = {slot_start for slot_start, _ in self._grid}
        if self._settings.booking_require_grid_alignment and start not in grid_starts:
            raise ValidationError(f"start_time {start_time} is not on the booking slot grid")
        end = start + duration_minutes
        if start < hours.opening_minute or end > hours.closing_minute:
            raise ValidationError(
                f"Booking {format_minutes(start)}-{format_minutes(end)} "
                f"falls outside operating hours "
                f"{format_minutes(hours.opening_minute)}-{format_minutes(hours.closing_minute)}"
            )

        if requested_day == today:
            now_minutes = now.hour * 60 + now.minute
            if start + hours.slot_duration_minutes <= now_minutes:
                raise ValidationError(f"start_time {start_time} has already passed today")

        return format_minutes(start), format_minutes(end)

    def _resolve_initial_status(self, status: Optional[BookingStatus]) -> BookingStatus:
        resolved = status or self._settings.booking_default_status
        if not resolved.blocks_slot:
            raise ValidationError("New bookings must be pending or confirmed")
        return resolved

    def _with_next_available(
        self,
        exc: ConflictError,
        duration_minutes: int,
        requested_start: str,
    ) -> ConflictError:
        try:
            next_start = self.suggest_start(
                exc.machine_id,
                exc.booking_date,
                duration_minutes,
                requested_start,
            )
        except ValidationError:
            next_start = None
        return exc.with_next_available(next_start)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        machine_id: int,
        booking_date: str,
        start_time: str,
        duration_minutes: int,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str] = None,
        status: Optional[BookingStatus] = None,
    ) -> AdvanceBooking:
        if not self._settings.operating_hours.is_enabled:
            raise ValidationError("Advance booking is currently disabled")
        machine = self._require_machine(machine_id)
        if not machine.is_active:
            raise ValidationError(f"Machine {machine_id} is not accepting bookings")

        resolved_status = self._resolve_initial_status(status)
        name = normalize_customer_name(
            customer_name,
            self._settings.customer_name_min_length,
            self._settings.customer_name_max_length,
        )
        phone = normalize_customer_phone(
            customer_phone,
            self._settings.customer_phone_min_digits,
            self._settings.customer_phone_max_digits,
        )
        start, end = self._validate_interval(booking_date, start_time, duration_minutes)

        with self._lock_for(machine_id, booking_date):
            try:
                booking = self._repository.insert_booking_if_free(
                    machine_id=machine_id,
                    booking_date=booking_date,
                    start_time=start,
                    end_time=end,
                    duration_minutes=duration_minutes,
                    customer_name=name,
                    customer_phone=phone,
                    status=resolved_status,
                    notes=notes,
                    created_at=self._timestamp(),
                )
            except ConflictError as exc:
                logger.info(
                    "Rejected booking on machine %s %s %s-%s: overlaps booking %s",
                    machine_id,
                    booking_date,
                    start,
                    end,
                    exc.conflicting_booking_id,
                )
                raise self._with_next_available(exc, duration_minutes, start) from exc

        logger.info(
            "Created booking %s on machine %s %s %s-%s (%s)",
            booking.booking_id,
            machine_id,
            booking_date,
            start,
            end,
            booking.status.value,
        )
        self._notify()
        return booking

    def update(self, booking_id: int, **fields: Any) -> AdvanceBooking:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported booking fields: {sorted(unknown)}")
        snapshot = self._require_booking(booking_id)
        new_date = fields.get("booking_date") or snapshot.booking_date

        with self._booking_locks(snapshot.machine_id, snapshot.booking_date, new_date):
            current = self._require_booking(booking_id)
            if current.booking_date != snapshot.booking_date:
                raise IllegalActionError(
                    f"Booking {booking_id} was moved to {current.booking_date}; reload and retry"
                )
            changes: dict[str, Any] = {}

            if fields.get("customer_name") is not None:
                changes["customer_name"] = normalize_customer_name(
                    fields["customer_name"],
                    self._settings.customer_name_min_length,
                    self._settings.customer_name_max_length,
                )
            if fields.get("customer_phone") is not None:
                changes["customer_phone"] = normalize_customer_phone(
                    fields["customer_phone"],
                    self._settings.customer_phone_min_digits,
                    self._settings.customer_phone_max_digits,
                )
            if "notes" in fields:
                changes["notes"] = fields["notes"]

            target_status = current.status
            if fields.get("status") is not None:
                try:
                    target_status = BookingStatus(fields["status"])
                except ValueError as exc:
                    raise ValidationError(f"Unknown booking status {fields['status']!r}") from exc
                check_transition(current.status, target_status)
                if target_status is not current.status:
                    changes["status"] = target_status

            new_start = fields.get("start_time") or current.start_time
            new_duration = fields.get("duration_minutes") or current.duration_minutes
            rescheduled = (
                new_date != current.booking_date
                or new_start != current.start_time
                or new_duration != current.duration_minutes
            )
            if rescheduled:
                if not target_status.blocks_slot:
                    raise ValidationError(
                        f"A {target_status.value} booking cannot be rescheduled"
                    )
                start, end = self._validate_interval(new_date, new_start, new_duration)
                changes.update(
                    booking_date=new_date,
                    start_time=start,
                    end_time=end,
                    duration_minutes=new_duration,
                )

            if not changes:
                return current

            try:
                updated = self._repository.update_booking(
                    booking_id,
                    changes,
                    updated_at=self._timestamp(),
                    recheck_overlap=rescheduled,
                    expected_status=current.status,
                )
            except ConflictError as exc:
                requested_start = changes.get("start_time", current.start_time)
                raise self._with_next_available(exc, new_duration, requested_start) from exc

        logger.info("Updated booking %s: %s", booking_id, sorted(changes))
        self._notify()
        return updated

    def cancel(self, booking_id: int) -> bool:
        snapshot = self._require_booking(booking_id)
        with self._booking_locks(snapshot.machine_id, snapshot.booking_date):
            booking = self._require_booking(booking_id)
            if booking.status is BookingStatus.CANCELLED:
                return True
            check_transition(booking.status, BookingStatus.CANCELLED)
            self._repository.update_booking(
                booking_id,
                {"status": BookingStatus.CANCELLED},
                updated_at=self._timestamp(),
                recheck_overlap=False,
                expected_status=booking.status,
            )
        logger.info("Cancelled booking %s", booking_id)
        self._notify()
        return True

    def complete(self, booking_id: int) -> AdvanceBooking:
        return self.update(booking_id, status=BookingStatus.COMPLETED)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_day_schedule(
        self,
        machine_id: int,
        booking_date: str,
        reference_time: Optional[datetime] = None,
    ) -> DaySchedule:
        parse_booking_date(booking_date)
        self._require_machine(machine_id)
        reference = (
            self._clock.now() if reference_time is None else self._clock.localize(reference_time)
        )
        return build_day_schedule(
            machine_id,
            booking_date,
            self._grid,
            self._repository.list_bookings(machine_id, booking_date),
            reference_date=reference.strftime("%Y-%m-%d"),
            reference_minutes=reference.hour * 60 + reference.minute,
        )

    def get_by_machine_and_date(self, machine_id: int, booking_date: str) -> list[AdvanceBooking]:
        parse_booking_date(booking_date)
        return self._repository.list_bookings(machine_id, booking_date)

    def get_by_id(self, booking_id: int) -> AdvanceBooking:
        return self._require_booking(booking_id)

    def get_by_customer_phone(self, customer_phone: str) -> list[AdvanceBooking]:
        phone = normalize_customer_phone(
            customer_phone,
            self._settings.customer_phone_min_digits,
            self._settings.customer_phone_max_digits,
        )
        return self._repository.list_bookings_by_phone(phone)

    def find_next_available_start(
        self,
        machine_id: int,
        booking_date: str,
        duration_minutes: int,
        not_before: Optional[str] = None,
        reference_time: Optional[datetime] = None,
    ) -> Optional[str]:
        schedule = self.get_day_schedule(machine_id, booking_date, reference_time)
        return find_free_start(schedule, duration_minutes, not_before=not_before)

    def suggest_start(
        self,
        machine_id: int,
        booking_date: str,
        duration_minutes: int,
        requested_start: str,
        reference_time: Optional[datetime] = None,
    ) -> Optional[str]:
        """First free start at or after ``requested_start``, else the day's earliest."""
        return self.find_next_available_start(
            machine_id,
            booking_date,
            duration_minutes,
            not_before=requested_start,
            reference_time=reference_time,
        ) or self.find_next_available_start(
            machine_id,
            booking_date,
            duration_minutes,
            reference_time=reference_time,
        )

    def is_slot_available(
        self,
        machine_id: int,
        booking_date: str,
        start_time: str,
        duration_minutes: int,
        reference_time: Optional[datetime] = None,
    ) -> bool:
        try:
            start = format_minutes(parse_hhmm(start_time))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        found = self.find_next_available_start(
            machine_id,
            booking_date,
            duration_minutes,
            not_before=start,
            reference_time=reference_time,
        )
        return found == start

    def get_available_dates(self, days_ahead: Optional[int] = None) -> list[str]:
        days = self._settings.advance_booking_days if days_ahead is None else days_ahead
        today = self._clock.now().date()
        return [(today + timedelta(days=offset)).isoformat() for offset in range(max(days, 0))]

    def get_stats(self) -> dict[str, int]:
        counts = self._repository.count_bookings_by_status()
        stats = {status.value: int(counts.get(status.value, 0)) for status in BookingStatus}
        stats["total"] = sum(stats.values())
        return stats
