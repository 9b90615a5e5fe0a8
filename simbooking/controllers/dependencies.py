"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from simbooking.domain.errors import (
    ConflictError,
    IllegalActionError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from simbooking.services.booking_service import BookingLedger
from simbooking.services.machine_service import MachineService
from simbooking.services.occupancy_service import OccupancyService
from simbooking.services.session_service import SessionService
from simbooking.services.walk_in_service import WalkInService


def _service_from_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_booking_ledger(request: Request) -> BookingLedger:
    return _service_from_state(request, "booking_ledger", "Booking ledger")


def get_machine_service(request: Request) -> MachineService:
    return _service_from_state(request, "machine_service", "Machine service")


def get_occupancy_service(request: Request) -> OccupancyService:
    return _service_from_state(request, "occupancy_service", "Occupancy service")


def get_session_service(request: Request) -> SessionService:
    return _service_from_state(request, "session_service", "Session service")


def get_walk_in_service(request: Request) -> WalkInService:
    return _service_from_state(request, "walk_in_service", "Walk-in service")


def to_http_exception(exc: SchedulingError) -> HTTPException:
    """Translate a core failure into the matching HTTP error."""
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, IllegalActionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
