"""Walk-in queue workflow on top of the queue estimator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from simbooking.domain.constraints import normalize_customer_name, normalize_customer_phone
from simbooking.domain.errors import IllegalActionError, NotFoundError, ValidationError
from simbooking.domain.models import (
    MachineStatus,
    QueueEstimate,
    QueueStatus,
    Session,
    WalkInEntry,
)
from simbooking.domain.queue_estimator import assign_positions, estimate_queue, order_active_entries
from simbooking.repository.data_repository import DataRepository
from simbooking.services.clock_service import ShopClock
from simbooking.services.occupancy_service import OccupancyFeed
from simbooking.services.session_service import SessionService
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuePlacement:
    """A queue entry with its computed position and wait estimate."""

    entry: WalkInEntry
    position: Optional[int]
    estimate: QueueEstimate


class WalkInService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        session_service: Optional[SessionService] = None,
        clock: Optional[ShopClock] = None,
        settings: Optional[Settings] = None,
        feed: Optional[OccupancyFeed] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or ShopClock(self._settings)
        self._session_service = session_service or SessionService(
            repository=self._repository,
            clock=self._clock,
            settings=self._settings,
            feed=feed,
        )
        self._feed = feed

    def _notify(self) -> None:
        if self._feed is not None:
            self._feed.invalidate()

    def _require_entry(self, entry_id: int) -> WalkInEntry:
        entry = self._repository.get_queue_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found")
        return entry

    def _place(self, entry: WalkInEntry, machine_entries: list[WalkInEntry]) -> QueuePlacement:
        position = assign_positions(machine_entries).get(entry.entry_id)
        return QueuePlacement(
            entry=entry,
            position=position,
            estimate=estimate_queue(entry.machine_id, machine_entries, position=position),
        )

    def join(
        self,
        machine_id: int,
        customer_name: str,
        customer_phone: str,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> QueuePlacement:
        machine = self._repository.get_machine(machine_id)
        if machine is None:
            raise NotFoundError(f"Machine {machine_id} not found")
        if not machine.is_active or machine.status is MachineStatus.MAINTENANCE:
            raise IllegalActionError(f"Machine {machine_id} is not taking walk-ins")

        duration = duration_minutes or self._settings.walk_in_default_duration_minutes
        if duration not in self._settings.duration_minutes_offered:
            raise ValidationError(
                f"duration_minutes must be one of {list(self._settings.duration_minutes_offered)}"
            )
        entry = self._repository.create_queue_entry(
            machine_id=machine_id,
            customer_name=normalize_customer_name(
                customer_name,
                self._settings.customer_name_min_length,
                self._settings.customer_name_max_length,
            ),
            customer_phone=normalize_customer_phone(
                customer_phone,
                self._settings.customer_phone_min_digits,
                self._settings.customer_phone_max_digits,
            ),
            duration_minutes=duration,
            joined_at=self._clock.now().isoformat(timespec="seconds"),
            notes=notes,
        )
        placement = self._place(entry, self._repository.list_active_queue_entries(machine_id))
        logger.info(
            "Walk-in %s joined machine %s at position %s",
            entry.entry_id,
            machine_id,
            placement.position,
        )
        self._notify()
        return placement

    def get_entry(self, entry_id: int) -> QueuePlacement:
        entry = self._require_entry(entry_id)
        return self._place(entry, self._repository.list_active_queue_entries(entry.machine_id))

    def list_active(self, machine_id: Optional[int] = None) -> list[QueuePlacement]:
        entries = self._repository.list_active_queue_entries(machine_id)
        by_machine: dict[int, list[WalkInEntry]] = {}
        for entry in entries:
            by_machine.setdefault(entry.machine_id, []).append(entry)

        placements: list[QueuePlacement] = []
        for current_machine in sorted(by_machine):
            machine_entries = by_machine[current_machine]
            for entry in order_active_entries(machine_entries):
                placements.append(self._place(entry, machine_entries))
        return placements

    def get_by_customer_phone(self, customer_phone: str) -> list[QueuePlacement]:
        """Queue history for a phone number, newest first.

        Entries that are still active carry their live position.
        """
        phone = normalize_customer_phone(
            customer_phone,
            self._settings.customer_phone_min_digits,
            self._settings.customer_phone_max_digits,
        )
        active_by_machine: dict[int, list[WalkInEntry]] = {}
        placements: list[QueuePlacement] = []
        for entry in self._repository.list_queue_entries_by_phone(phone):
            if entry.machine_id not in active_by_machine:
                active_by_machine[entry.machine_id] = self._repository.list_active_queue_entries(
                    entry.machine_id
                )
            placements.append(self._place(entry, active_by_machine[entry.machine_id]))
        return placements

    def call_next(self, machine_id: int) -> Session:
        """Seat the first waiting walk-in by starting its session."""
        waiting = [
            entry
            for entry in order_active_entries(self._repository.list_active_queue_entries(machine_id))
            if entry.status is QueueStatus.WAITING
        ]
        if not waiting:
            raise IllegalActionError(f"No walk-in customers are waiting for machine {machine_id}")
        entry = waiting[0]
        session = self._session_service.check_in(
            machine_id,
            customer_name=entry.customer_name,
            queue_entry_id=entry.entry_id,
            duration_minutes=entry.duration_minutes,
            notes=entry.notes,
        )
        logger.info("Called walk-in %s to machine %s", entry.entry_id, machine_id)
        return session

    def cancel(self, entry_id: int) -> bool:
        entry = self._require_entry(entry_id)
        if entry.status is QueueStatus.CANCELLED:
            return True
        if entry.status is QueueStatus.COMPLETED:
            raise ValidationError(f"Queue entry {entry_id} is already completed")
        if entry.status is QueueStatus.PLAYING:
            raise IllegalActionError(
                f"Queue entry {entry_id} is playing; end its session instead"
            )
        self._repository.update_queue_entry_status(entry_id, QueueStatus.CANCELLED)
        logger.info("Cancelled walk-in %s", entry_id)
        self._notify()
        return True

    def get_estimates(self) -> list[QueueEstimate]:
        entries = self._repository.list_active_queue_entries()
        return [
            estimate_queue(machine.machine_id, entries)
            for machine in self._repository.list_machines(active_only=True)
        ]

    def get_stats(self) -> dict[str, int]:
        active = self._repository.list_active_queue_entries()
        today_counts = self._repository.count_queue_entries_by_status_on(self._clock.today())
        return {
            "waiting": sum(1 for entry in active if entry.status is QueueStatus.WAITING),
            "playing": sum(1 for entry in active if entry.status is QueueStatus.PLAYING),
            "completed_today": today_counts.get(QueueStatus.COMPLETED.value, 0),
            "cancelled_today": today_counts.get(QueueStatus.CANCELLED.value, 0),
        }
