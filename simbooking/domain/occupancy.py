"""Derivation of one authoritative occupancy state per machine.

Nothing here is stored. The state is recomputed from the machine flag,
the live session and today's bookings on every read, so a stale cached
status can never win over the live data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from simbooking.domain.models import (
    AdvanceBooking,
    BookingStatus,
    Machine,
    MachineStatus,
    OccupancyState,
    Session,
    StationAction,
)
from simbooking.domain.slot_grid import parse_hhmm


@dataclass(frozen=True)
class OccupancyResolution:
    machine_id: int
    state: OccupancyState
    is_overdue: bool
    active_session: Optional[Session]
    reserved_booking: Optional[AdvanceBooking]
    allowed_actions: tuple[StationAction, ...]


def _start_minutes(booking: AdvanceBooking) -> Optional[int]:
    try:
        return parse_hhmm(booking.start_time)
    except ValueError:
        return None


def find_active_session(machine_id: int, sessions: Iterable[Session]) -> Optional[Session]:
    for session in sessions:
        if session.station_id == machine_id and session.is_active:
            return session
    return None


def find_reserved_booking(
    machine_id: int,
    bookings: Iterable[AdvanceBooking],
    today: str,
) -> Optional[AdvanceBooking]:
    """Earliest confirmed booking of today for the machine, if any."""
    candidates = [
        booking
        for booking in bookings
        if booking.machine_id == machine_id
        and booking.booking_date == today
        and booking.status is BookingStatus.CONFIRMED
        and _start_minutes(booking) is not None
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda booking: (_start_minutes(booking), booking.booking_id))


def allowed_actions_for(state: OccupancyState, has_waiting_queue: bool) -> tuple[StationAction, ...]:
    if state is OccupancyState.OCCUPIED:
        return (StationAction.END_SESSION,)
    if state is OccupancyState.RESERVED:
        return (StationAction.CHECK_IN,)
    if state is OccupancyState.AVAILABLE:
        if has_waiting_queue:
            return (StationAction.CHECK_IN, StationAction.CALL_NEXT)
        return (StationAction.CHECK_IN,)
    return ()


def resolve_occupancy(
    machine: Machine,
    sessions: Iterable[Session],
    bookings: Iterable[AdvanceBooking],
    today: str,
    now_minutes: int,
    has_waiting_queue: bool = False,
) -> OccupancyResolution:
    """Resolve the state in priority order occupied > reserved > maintenance > available.

    Overdue only annotates a reservation whose start has gone by without a
    check-in; it does not change which actions are legal.
    """
    active_session = find_active_session(machine.machine_id, sessions)
    if active_session is not None:
        state = OccupancyState.OCCUPIED
        return OccupancyResolution(
            machine_id=machine.machine_id,
            state=state,
            is_overdue=False,
            active_session=active_session,
            reserved_booking=None,
            allowed_actions=allowed_actions_for(state, has_waiting_queue),
        )

    reserved = find_reserved_booking(machine.machine_id, bookings, today)
    if reserved is not None:
        state = OccupancyState.RESERVED
        start = _start_minutes(reserved)
        return OccupancyResolution(
            machine_id=machine.machine_id,
            state=state,
            is_overdue=start is not None and start < now_minutes,
            active_session=None,
            reserved_booking=reserved,
            allowed_actions=allowed_actions_for(state, has_waiting_queue),
        )

    if machine.status is MachineStatus.MAINTENANCE:
        state = OccupancyState.MAINTENANCE
    else:
        state = OccupancyState.AVAILABLE
    return OccupancyResolution(
        machine_id=machine.machine_id,
        state=state,
        is_overdue=False,
        active_session=None,
        reserved_booking=None,
        allowed_actions=allowed_actions_for(state, has_waiting_queue),
    )
