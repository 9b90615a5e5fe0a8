"""Staff session actions: check-in and end session."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from simbooking.domain.constraints import normalize_customer_name
from simbooking.domain.errors import IllegalActionError, NotFoundError, ValidationError
from simbooking.domain.models import (
    AdvanceBooking,
    Machine,
    MachineStatus,
    QueueStatus,
    Session,
    WalkInEntry,
)
from simbooking.repository.data_repository import DataRepository
from simbooking.services.clock_service import ShopClock
from simbooking.services.occupancy_service import OccupancyFeed
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


class SessionService:
    """Opens and closes live sessions on machines."""

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

    def _notify(self) -> None:
        if self._feed is not None:
            self._feed.invalidate()

    def _require_machine(self, machine_id: int) -> Machine:
        machine = self._repository.get_machine(machine_id)
        if machine is None:
            raise NotFoundError(f"Machine {machine_id} not found")
        return machine

    def _linked_booking(self, machine_id: int, booking_id: int, today: str) -> AdvanceBooking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.machine_id != machine_id:
            raise ValidationError(f"Booking {booking_id} belongs to machine {booking.machine_id}")
        if booking.booking_date != today:
            raise ValidationError(f"Booking {booking_id} is for {booking.booking_date}, not today")
        if not booking.status.blocks_slot:
            raise IllegalActionError(f"Booking {booking_id} is already {booking.status.value}")
        return booking

    def _linked_queue_entry(self, machine_id: int, entry_id: int) -> WalkInEntry:
        entry = self._repository.get_queue_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        if entry.machine_id != machine_id:
            raise ValidationError(f"Queue entry {entry_id} is queued for machine {entry.machine_id}")
        if entry.status is not QueueStatus.WAITING:
            raise IllegalActionError(f"Queue entry {entry_id} is {entry.status.value}, not waiting")
        return entry

    def check_in(
        self,
        machine_id: int,
        customer_name: Optional[str] = None,
        booking_id: Optional[int] = None,
        queue_entry_id: Optional[int] = None,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Session:
        """Start a session on an idle machine.

        The customer name and duration default to those of the linked
        booking or queue entry. A walk-in without either is allowed.
        """
        machine = self._require_machine(machine_id)
        if not machine.is_active:
            raise IllegalActionError(f"Machine {machine_id} is deactivated")
        if machine.status is MachineStatus.MAINTENANCE:
            raise IllegalActionError(f"Machine {machine_id} is under maintenance")
        if any(session.station_id == machine_id for session in self._repository.list_active_sessions()):
            raise IllegalActionError(f"Machine {machine_id} already has an active session")

        now = self._clock.now()
        booking = None
        entry = None
        if booking_id is not None:
            booking = self._linked_booking(machine_id, booking_id, now.strftime("%Y-%m-%d"))
        if queue_entry_id is not None:
            entry = self._linked_queue_entry(machine_id, queue_entry_id)

        source = booking or entry
        name = customer_name or (source.customer_name if source else None)
        if name is None:
            raise ValidationError("customer_name is required for a walk-in check-in")
        name = normalize_customer_name(
            name,
            self._settings.customer_name_min_length,
            self._settings.customer_name_max_length,
        )
        if duration_minutes is None:
            duration_minutes = (
                source.duration_minutes if source else self._settings.walk_in_default_duration_minutes
            )
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be > 0")

        session = self._repository.start_session(
            station_id=machine_id,
            customer_name=name,
            started_at=now.isoformat(timespec="seconds"),
            duration_minutes=duration_minutes,
            booking_id=booking_id,
            queue_entry_id=queue_entry_id,
            notes=notes,
        )
        logger.info(
            "Checked in session %s on machine %s (booking=%s, queue_entry=%s)",
            session.session_id,
            machine_id,
            booking_id,
            queue_entry_id,
        )
        self._notify()
        return session

    def end_session(self, session_id: int) -> Session:
        session = self.get_session(session_id)
        if not session.is_active:
            raise IllegalActionError(f"Session {session_id} has already ended")

        now = self._clock.now()
        try:
            started = self._clock.localize(datetime.fromisoformat(session.start_time))
            actual_minutes = max(0, int((now - started).total_seconds() // 60))
        except ValueError:
            logger.warning("Session %s has unreadable start time %r", session_id, session.start_time)
            actual_minutes = 0

        ended = self._repository.end_session(
            session_id,
            ended_at=now.isoformat(timespec="seconds"),
            duration_minutes=actual_minutes,
            shop_date=now.strftime("%Y-%m-%d"),
            shop_time=now.strftime("%H:%M"),
        )
        logger.info(
            "Ended session %s on machine %s after %s minutes",
            session_id,
            ended.station_id,
            actual_minutes,
        )
        self._notify()
        return ended

    def get_active_sessions(self) -> list[Session]:
        return self._repository.list_active_sessions()

    def get_session(self, session_id: int) -> Session:
        session = self._repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_station_history(self, machine_id: int, limit: int = 30) -> list[Session]:
        self._require_machine(machine_id)
        return self._repository.list_sessions_for_station(machine_id, limit=limit)
