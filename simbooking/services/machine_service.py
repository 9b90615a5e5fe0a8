"""Machine registry administration."""

from __future__ import annotations

from typing import Optional

from simbooking.domain.errors import NotFoundError, ValidationError
from simbooking.domain.models import Machine, MachineStatus
from simbooking.repository.data_repository import DataRepository
from simbooking.services.occupancy_service import OccupancyFeed
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


class MachineService:
    """Machines are never deleted, only deactivated."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        feed: Optional[OccupancyFeed] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._feed = feed

    def list_machines(self, active_only: bool = False) -> list[Machine]:
        return self._repository.list_machines(active_only=active_only)

    def get_machine(self, machine_id: int) -> Machine:
        machine = self._repository.get_machine(machine_id)
        if machine is None:
            raise NotFoundError(f"Machine {machine_id} not found")
        return machine

    def create_machine(
        self,
        name: str,
        description: str = "",
        position: Optional[int] = None,
    ) -> Machine:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Machine name must be non-empty")
        machine = self._repository.create_machine(cleaned, description.strip(), position)
        logger.info("Registered machine %s (%s)", machine.machine_id, machine.name)
        if self._feed is not None:
            self._feed.invalidate()
        return machine

    def update_machine(
        self,
        machine_id: int,
        *,
        status: Optional[MachineStatus] = None,
        is_active: Optional[bool] = None,
    ) -> Machine:
        self.get_machine(machine_id)
        machine = self._repository.update_machine(machine_id, status=status, is_active=is_active)
        logger.info(
            "Machine %s updated: status=%s active=%s",
            machine_id,
            machine.status.value,
            machine.is_active,
        )
        if self._feed is not None:
            self._feed.invalidate()
        return machine
