"""HTTP controller layer for advance bookings and day schedules."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from simbooking.controllers.dependencies import get_booking_ledger, to_http_exception
from simbooking.domain.errors import SchedulingError
from simbooking.domain.models import BookingStatus, SlotStatus
from simbooking.services.booking_service import BookingLedger
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])

_HHMM = r"^\d{2}:\d{2}$"


class DurationOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    minutes: int = Field(gt=0)
    label: str
    label_en: str
    price: int = Field(ge=0)
    price_display: str
    popular: bool


class OperatingHoursResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    open_hour: int
    close_hour: int
    slot_duration_minutes: int = Field(gt=0)
    is_open_24_hours: bool
    is_enabled: bool


class BookingOptionsResponse(BaseModel):
    operating_hours: OperatingHoursResponse
    durations: list[DurationOptionResponse]
    available_dates: list[str]


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: str
    start_time: str
    end_time: str
    status: SlotStatus
    booking_id: Optional[int] = None


class DayScheduleResponse(BaseModel):
    """Every grid slot of one machine-day; the three counts sum to the total."""

    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    date: str
    time_slots: list[TimeSlotResponse]
    total_slots: int = Field(ge=0)
    available_slots: int = Field(ge=0)
    booked_slots: int = Field(ge=0)
    passed_slots: int = Field(ge=0)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int = Field(gt=0)
    machine_id: int = Field(gt=0)
    customer_name: str
    customer_phone: str
    booking_date: str
    start_time: str
    end_time: str
    duration_minutes: int = Field(gt=0)
    status: BookingStatus
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CreateBookingRequest(BaseModel):
    machine_id: int = Field(gt=0)
    booking_date: date
    start_time: str = Field(pattern=_HHMM)
    duration_minutes: int = Field(gt=0)
    customer_name: str
    customer_phone: str
    notes: Optional[str] = Field(default=None, max_length=500)
    status: Optional[BookingStatus] = None

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, value: Optional[BookingStatus]) -> Optional[BookingStatus]:
        if value is not None and not value.blocks_slot:
            raise ValueError("status must be pending or confirmed for a new booking")
        return value


class UpdateBookingRequest(BaseModel):
    booking_date: Optional[date] = None
    start_time: Optional[str] = Field(default=None, pattern=_HHMM)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    status: Optional[BookingStatus] = None


class CancelBookingResponse(BaseModel):
    booking_id: int
    cancelled: bool


class SlotAvailabilityResponse(BaseModel):
    machine_id: int
    date: str
    start_time: str
    duration_minutes: int
    available: bool
    next_available_start: Optional[str] = None


class BookingStatsResponse(BaseModel):
    pending: int = Field(ge=0)
    confirmed: int = Field(ge=0)
    completed: int = Field(ge=0)
    cancelled: int = Field(ge=0)
    total: int = Field(ge=0)


def _internal_error(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/booking/options", response_model=BookingOptionsResponse)
def get_booking_options(
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingOptionsResponse:
    return BookingOptionsResponse(
        operating_hours=OperatingHoursResponse.model_validate(ledger.operating_hours),
        durations=[DurationOptionResponse.model_validate(option) for option in ledger.duration_catalog],
        available_dates=ledger.get_available_dates(),
    )


@router.get("/machines/{machine_id}/schedule", response_model=DayScheduleResponse)
def get_day_schedule(
    machine_id: int,
    booking_date: Optional[date] = Query(default=None, alias="date"),
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> DayScheduleResponse:
    """Slot-by-slot availability; the date defaults to shop-today."""
    try:
        target = booking_date.isoformat() if booking_date else ledger.get_available_dates(1)[0]
        schedule = ledger.get_day_schedule(machine_id, target)
        return DayScheduleResponse.model_validate(schedule)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("build day schedule", exc) from exc


@router.get("/machines/{machine_id}/availability", response_model=SlotAvailabilityResponse)
def check_slot_availability(
    machine_id: int,
    booking_date: date = Query(alias="date"),
    start_time: str = Query(pattern=_HHMM),
    duration_minutes: int = Query(gt=0),
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> SlotAvailabilityResponse:
    try:
        day = booking_date.isoformat()
        available = ledger.is_slot_available(machine_id, day, start_time, duration_minutes)
        next_start = (
            start_time
            if available
            else ledger.suggest_start(machine_id, day, duration_minutes, start_time)
        )
        return SlotAvailabilityResponse(
            machine_id=machine_id,
            date=day,
            start_time=start_time,
            duration_minutes=duration_minutes,
            available=available,
            next_available_start=next_start,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("check slot availability", exc) from exc


@router.get("/machines/{machine_id}/bookings", response_model=list[BookingResponse])
def list_machine_bookings(
    machine_id: int,
    booking_date: date = Query(alias="date"),
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> list[BookingResponse]:
    try:
        bookings = ledger.get_by_machine_and_date(machine_id, booking_date.isoformat())
        return [BookingResponse.model_validate(booking) for booking in bookings]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("list bookings", exc) from exc


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: CreateBookingRequest,
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingResponse:
    try:
        booking = ledger.create(
            machine_id=payload.machine_id,
            booking_date=payload.booking_date.isoformat(),
            start_time=payload.start_time,
            duration_minutes=payload.duration_minutes,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            notes=payload.notes,
            status=payload.status,
        )
        return BookingResponse.model_validate(booking)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("create booking", exc) from exc


@router.get("/bookings/stats", response_model=BookingStatsResponse)
def get_booking_stats(
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingStatsResponse:
    return BookingStatsResponse(**ledger.get_stats())


@router.get("/bookings", response_model=list[BookingResponse])
def find_bookings_by_phone(
    phone: str = Query(min_length=1),
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> list[BookingResponse]:
    try:
        return [BookingResponse.model_validate(item) for item in ledger.get_by_customer_phone(phone)]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("look up bookings", exc) from exc


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int,
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingResponse:
    try:
        return BookingResponse.model_validate(ledger.get_by_id(booking_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: int,
    payload: UpdateBookingRequest,
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingResponse:
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("booking_date") is not None:
        fields["booking_date"] = fields["booking_date"].isoformat()
    try:
        return BookingResponse.model_validate(ledger.update(booking_id, **fields))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("update booking", exc) from exc


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingResponse)
def cancel_booking(
    booking_id: int,
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> CancelBookingResponse:
    try:
        return CancelBookingResponse(booking_id=booking_id, cancelled=ledger.cancel(booking_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("cancel booking", exc) from exc


@router.post("/bookings/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: int,
    ledger: BookingLedger = Depends(get_booking_ledger),
) -> BookingResponse:
    try:
        return BookingResponse.model_validate(ledger.complete(booking_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _internal_error("complete booking", exc) from exc
