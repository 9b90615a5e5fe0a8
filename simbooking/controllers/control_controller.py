"""HTTP controller layer for the staff control panel."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from simbooking.controllers.booking_controller import BookingResponse
from simbooking.controllers.dependencies import (
    get_machine_service,
    get_occupancy_service,
    get_session_service,
    to_http_exception,
)
from simbooking.domain.errors import SchedulingError
from simbooking.domain.models import MachineStatus, OccupancyState, StationAction
from simbooking.services.machine_service import MachineService
from simbooking.services.occupancy_service import BoardSnapshot, OccupancyService, StationView
from simbooking.services.session_service import SessionService
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["control"])


class MachineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int = Field(gt=0)
    name: str
    description: str
    position: int
    is_active: bool
    status: MachineStatus


class CreateMachineRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    position: Optional[int] = Field(default=None, ge=0)


class UpdateMachineRequest(BaseModel):
    status: Optional[MachineStatus] = None
    is_active: Optional[bool] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: int = Field(gt=0)
    station_id: int = Field(gt=0)
    customer_name: str
    start_time: str
    booking_id: Optional[int] = None
    queue_entry_id: Optional[int] = None
    duration_minutes: Optional[int] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None


class QueueEstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    waiting_count: int = Field(ge=0)
    playing_count: int = Field(ge=0)
    estimated_wait_minutes: int = Field(ge=0)
    next_position: int = Field(ge=1)


class StationResponse(BaseModel):
    machine: MachineResponse
    state: OccupancyState
    is_overdue: bool
    active_session: Optional[SessionResponse] = None
    reserved_booking: Optional[BookingResponse] = None
    upcoming_bookings: list[BookingResponse]
    queue: QueueEstimateResponse
    allowed_actions: list[StationAction]


class BoardResponse(BaseModel):
    date: str
    time: str
    generated_at: datetime
    counts: dict[str, int]
    stations: list[StationResponse]


class CheckInRequest(BaseModel):
    machine_id: int = Field(gt=0)
    customer_name: Optional[str] = None
    booking_id: Optional[int] = Field(default=None, gt=0)
    queue_entry_id: Optional[int] = Field(default=None, gt=0)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)


def station_to_response(station: StationView) -> StationResponse:
    return StationResponse(
        machine=MachineResponse.model_validate(station.machine),
        state=station.state,
        is_overdue=station.is_overdue,
        active_session=(
            SessionResponse.model_validate(station.active_session)
            if station.active_session
            else None
        ),
        reserved_booking=(
            BookingResponse.model_validate(station.reserved_booking)
            if station.reserved_booking
            else None
        ),
        upcoming_bookings=[BookingResponse.model_validate(item) for item in station.upcoming_bookings],
        queue=QueueEstimateResponse.model_validate(station.queue_estimate),
        allowed_actions=list(station.allowed_actions),
    )


def board_to_response(board: BoardSnapshot) -> BoardResponse:
    return BoardResponse(
        date=board.date,
        time=board.time,
        generated_at=board.generated_at,
        counts=board.counts,
        stations=[station_to_response(station) for station in board.stations],
    )


@router.get("/machines", response_model=list[MachineResponse])
def list_machines(
    active_only: bool = Query(default=False),
    service: MachineService = Depends(get_machine_service),
) -> list[MachineResponse]:
    return [MachineResponse.model_validate(machine) for machine in service.list_machines(active_only)]


@router.post("/machines", response_model=MachineResponse, status_code=status.HTTP_201_CREATED)
def create_machine(
    payload: CreateMachineRequest,
    service: MachineService = Depends(get_machine_service),
) -> MachineResponse:
    try:
        machine = service.create_machine(payload.name, payload.description, payload.position)
        return MachineResponse.model_validate(machine)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/machines/{machine_id}", response_model=MachineResponse)
def update_machine(
    machine_id: int,
    payload: UpdateMachineRequest,
    service: MachineService = Depends(get_machine_service),
) -> MachineResponse:
    try:
        machine = service.update_machine(
            machine_id,
            status=payload.status,
            is_active=payload.is_active,
        )
        return MachineResponse.model_validate(machine)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get("/control/board", response_model=BoardResponse)
def get_control_board(
    service: OccupancyService = Depends(get_occupancy_service),
) -> BoardResponse:
    """Recomputed on every call so overdue flags track the clock."""
    try:
        return board_to_response(service.get_board())
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected control board failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build control board",
        ) from exc


@router.get("/control/stations/{machine_id}", response_model=StationResponse)
def get_station(
    machine_id: int,
    service: OccupancyService = Depends(get_occupancy_service),
) -> StationResponse:
    try:
        return station_to_response(service.get_station(machine_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get("/control/stations/{machine_id}/history", response_model=list[SessionResponse])
def get_station_history(
    machine_id: int,
    limit: int = Query(default=30, ge=1, le=200),
    service: SessionService = Depends(get_session_service),
) -> list[SessionResponse]:
    try:
        sessions = service.get_station_history(machine_id, limit=limit)
        return [SessionResponse.model_validate(session) for session in sessions]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post("/sessions/check-in", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def check_in(
    payload: CheckInRequest,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    try:
        session = service.check_in(
            payload.machine_id,
            customer_name=payload.customer_name,
            booking_id=payload.booking_id,
            queue_entry_id=payload.queue_entry_id,
            duration_minutes=payload.duration_minutes,
            notes=payload.notes,
        )
        return SessionResponse.model_validate(session)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected check-in failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check in",
        ) from exc


@router.post("/sessions/{session_id}/end", response_model=SessionResponse)
def end_session(
    session_id: int,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    try:
        return SessionResponse.model_validate(service.end_session(session_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected end-session failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to end session",
        ) from exc


@router.get("/sessions/active", response_model=list[SessionResponse])
def list_active_sessions(
    service: SessionService = Depends(get_session_service),
) -> list[SessionResponse]:
    return [SessionResponse.model_validate(session) for session in service.get_active_sessions()]


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: int,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    try:
        return SessionResponse.model_validate(service.get_session(session_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
