"""HTTP controller layer for the walk-in queue."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from simbooking.controllers.control_controller import QueueEstimateResponse, SessionResponse
from simbooking.controllers.dependencies import get_walk_in_service, to_http_exception
from simbooking.domain.errors import SchedulingError
from simbooking.domain.models import QueueStatus
from simbooking.services.walk_in_service import QueuePlacement, WalkInService
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["walk-in"])


class JoinQueueRequest(BaseModel):
    machine_id: int = Field(gt=0)
    customer_name: str
    customer_phone: str
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class WalkInEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: int = Field(gt=0)
    machine_id: int = Field(gt=0)
    customer_name: str
    customer_phone: str
    duration_minutes: int = Field(gt=0)
    status: QueueStatus
    joined_at: str
    called_at: Optional[str] = None
    notes: Optional[str] = None


class QueuePlacementResponse(BaseModel):
    entry: WalkInEntryResponse
    position: Optional[int] = Field(default=None, ge=1)
    estimate: QueueEstimateResponse


class CancelEntryResponse(BaseModel):
    entry_id: int
    cancelled: bool


class QueueStatsResponse(BaseModel):
    waiting: int = Field(ge=0)
    playing: int = Field(ge=0)
    completed_today: int = Field(ge=0)
    cancelled_today: int = Field(ge=0)


def _placement_response(placement: QueuePlacement) -> QueuePlacementResponse:
    return QueuePlacementResponse(
        entry=WalkInEntryResponse.model_validate(placement.entry),
        position=placement.position,
        estimate=QueueEstimateResponse.model_validate(placement.estimate),
    )


@router.post("/walk-in", response_model=QueuePlacementResponse, status_code=status.HTTP_201_CREATED)
def join_queue(
    payload: JoinQueueRequest,
    service: WalkInService = Depends(get_walk_in_service),
) -> QueuePlacementResponse:
    try:
        placement = service.join(
            payload.machine_id,
            payload.customer_name,
            payload.customer_phone,
            duration_minutes=payload.duration_minutes,
            notes=payload.notes,
        )
        return _placement_response(placement)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected walk-in join failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to join queue",
        ) from exc


@router.get("/walk-in", response_model=list[QueuePlacementResponse])
def list_queue(
    machine_id: Optional[int] = Query(default=None, gt=0),
    phone: Optional[str] = Query(default=None),
    service: WalkInService = Depends(get_walk_in_service),
) -> list[QueuePlacementResponse]:
    """Active queue, or a customer's queue history when ``phone`` is given."""
    try:
        if phone is not None:
            placements = service.get_by_customer_phone(phone)
        else:
            placements = service.list_active(machine_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    return [_placement_response(item) for item in placements]


@router.get("/walk-in/estimates", response_model=list[QueueEstimateResponse])
def get_queue_estimates(
    service: WalkInService = Depends(get_walk_in_service),
) -> list[QueueEstimateResponse]:
    return [QueueEstimateResponse.model_validate(item) for item in service.get_estimates()]


@router.get("/walk-in/stats", response_model=QueueStatsResponse)
def get_queue_stats(
    service: WalkInService = Depends(get_walk_in_service),
) -> QueueStatsResponse:
    return QueueStatsResponse(**service.get_stats())


@router.get("/walk-in/{entry_id}", response_model=QueuePlacementResponse)
def get_queue_entry(
    entry_id: int,
    service: WalkInService = Depends(get_walk_in_service),
) -> QueuePlacementResponse:
    try:
        return _placement_response(service.get_entry(entry_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post("/walk-in/{entry_id}/cancel", response_model=CancelEntryResponse)
def cancel_queue_entry(
    entry_id: int,
    service: WalkInService = Depends(get_walk_in_service),
) -> CancelEntryResponse:
    try:
        return CancelEntryResponse(entry_id=entry_id, cancelled=service.cancel(entry_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/machines/{machine_id}/call-next",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
def call_next(
    machine_id: int,
    service: WalkInService = Depends(get_walk_in_service),
) -> SessionResponse:
    try:
        return SessionResponse.model_validate(service.call_next(machine_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected call-next failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to call next walk-in",
        ) from exc
