"""Control board: per-station occupancy views and their broadcast feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from itertools import count
from threading import RLock
from typing import Callable, Optional

from simbooking.domain.errors import NotFoundError
from simbooking.domain.models import (
    AdvanceBooking,
    Machine,
    OccupancyState,
    QueueEstimate,
    QueueStatus,
    Session,
    StationAction,
)
from simbooking.domain.occupancy import resolve_occupancy
from simbooking.domain.queue_estimator import estimate_queue
from simbooking.domain.slot_grid import parse_hhmm
from simbooking.repository.data_repository import DataRepository, OccupancySnapshot
from simbooking.services.clock_service import ShopClock
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class StationView:
    machine: Machine
    state: OccupancyState
    is_overdue: bool
    active_session: Optional[Session]
    reserved_booking: Optional[AdvanceBooking]
    upcoming_bookings: list[AdvanceBooking]
    queue_estimate: QueueEstimate
    allowed_actions: tuple[StationAction, ...]


@dataclass(frozen=True)
class BoardSnapshot:
    date: str
    time: str
    generated_at: datetime
    stations: list[StationView]

    @property
    def counts(self) -> dict[str, int]:
        totals = {state.value: 0 for state in OccupancyState}
        for station in self.stations:
            totals[station.state.value] += 1
        totals["overdue"] = sum(1 for station in self.stations if station.is_overdue)
        return totals


def _upcoming_bookings(
    machine_id: int,
    bookings: list[AdvanceBooking],
    now_minutes: int,
    exclude_booking_id: Optional[int],
    limit: int,
) -> list[AdvanceBooking]:
    upcoming: list[tuple[int, AdvanceBooking]] = []
    for booking in bookings:
        if booking.machine_id != machine_id or not booking.status.blocks_slot:
            continue
        if booking.booking_id == exclude_booking_id:
            continue
        try:
            start = parse_hhmm(booking.start_time)
            end = parse_hhmm(booking.end_time)
        except ValueError:
            continue
        if end > now_minutes:
            upcoming.append((start, booking))
    upcoming.sort(key=lambda item: (item[0], item[1].booking_id))
    return [booking for _, booking in upcoming[:limit]]


class OccupancyService:
    """Builds station views from one consistent storage snapshot."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        clock: Optional[ShopClock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or ShopClock(self._settings)

    def _build_station(
        self,
        machine: Machine,
        snapshot: OccupancySnapshot,
        now_minutes: int,
    ) -> StationView:
        machine_entries = [
            entry for entry in snapshot.queue_entries if entry.machine_id == machine.machine_id
        ]
        has_waiting = any(entry.status is QueueStatus.WAITING for entry in machine_entries)
        resolution = resolve_occupancy(
            machine,
            snapshot.active_sessions,
            snapshot.bookings,
            snapshot.date,
            now_minutes,
            has_waiting_queue=has_waiting,
        )
        reserved_id = resolution.reserved_booking.booking_id if resolution.reserved_booking else None
        return StationView(
            machine=machine,
            state=resolution.state,
            is_overdue=resolution.is_overdue,
            active_session=resolution.active_session,
            reserved_booking=resolution.reserved_booking,
            upcoming_bookings=_upcoming_bookings(
                machine.machine_id,
                snapshot.bookings,
                now_minutes,
                reserved_id,
                self._settings.upcoming_bookings_limit,
            ),
            queue_estimate=estimate_queue(machine.machine_id, machine_entries),
            allowed_actions=resolution.allowed_actions,
        )

    def get_board(self) -> BoardSnapshot:
        now = self._clock.now()
        today = now.strftime("%Y-%m-%d")
        now_minutes = now.hour * 60 + now.minute
        snapshot = self._repository.load_occupancy_snapshot(today)
        stations = [
            self._build_station(machine, snapshot, now_minutes)
            for machine in snapshot.machines
        ]
        return BoardSnapshot(
            date=today,
            time=now.strftime("%H:%M"),
            generated_at=now,
            stations=stations,
        )

    def get_station(self, machine_id: int) -> StationView:
        for station in self.get_board().stations:
            if station.machine.machine_id == machine_id:
                return station
        raise NotFoundError(f"Machine {machine_id} not found or inactive")


BoardListener = Callable[[BoardSnapshot], None]


class OccupancyFeed:
    """Broadcasts recomputed board snapshots to subscribers.

    Late subscribers immediately receive the last snapshot. The feed only
    caches what ``OccupancyService`` derives; mutations call
    ``invalidate`` to recompute and re-broadcast.
    """

    def __init__(self, occupancy_service: OccupancyService) -> None:
        self._service = occupancy_service
        self._lock = RLock()
        self._tokens = count(1)
        self._listeners: dict[int, BoardListener] = {}
        self._latest: Optional[BoardSnapshot] = None
        self._generations = count(1)
        self._published_generation = 0

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def latest(self) -> BoardSnapshot:
        with self._lock:
            if self._latest is None:
                self._latest = self._service.get_board()
            return self._latest

    def subscribe(self, listener: BoardListener) -> Callable[[], None]:
        with self._lock:
            token = next(self._tokens)
            self._listeners[token] = listener
            current = self.latest()
        listener(current)

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def invalidate(self) -> Optional[BoardSnapshot]:
        """Recompute the board and broadcast it.

        Each call takes a generation number before computing. A result that
        finishes after a newer generation has been published is dropped.
        """
        with self._lock:
            generation = next(self._generations)
        try:
            snapshot = self._service.get_board()
        except Exception:
            logger.exception("Failed to recompute occupancy board; keeping last snapshot")
            return self._latest
        with self._lock:
            if generation < self._published_generation:
                logger.debug("Dropping superseded board generation %s", generation)
                return self._latest
            self._published_generation = generation
            self._latest = snapshot
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Occupancy listener raised; continuing broadcast")
        return snapshot
