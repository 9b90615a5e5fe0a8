"""Error taxonomy shared by the scheduling core and its callers."""

from __future__ import annotations

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for every failure raised by the booking core."""


class ValidationError(SchedulingError):
    """Raised when input violates catalog, date, time or transition rules."""


class NotFoundError(SchedulingError):
    """Raised when a booking, session, machine or queue entry id is unknown."""


class IllegalActionError(SchedulingError):
    """Raised when a staff action's state precondition does not hold."""


class ConfigurationError(SchedulingError):
    """Raised for operating-hours configurations that cannot produce a grid."""


class ConflictError(SchedulingError):
    """Raised when a requested interval overlaps a blocking booking."""

    def __init__(
        self,
        message: str,
        *,
        machine_id: int,
        booking_date: str,
        conflicting_booking_id: Optional[int],
        conflicting_start: str,
        conflicting_end: str,
        next_available_start: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.machine_id = machine_id
        self.booking_date = booking_date
        self.conflicting_booking_id = conflicting_booking_id
        self.conflicting_start = conflicting_start
        self.conflicting_end = conflicting_end
        self.next_available_start = next_available_start

    def with_next_available(self, next_available_start: Optional[str]) -> "ConflictError":
        return ConflictError(
            str(self),
            machine_id=self.machine_id,
            booking_date=self.booking_date,
            conflicting_booking_id=self.conflicting_booking_id,
            conflicting_start=self.conflicting_start,
            conflicting_end=self.conflicting_end,
            next_available_start=next_available_start,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "machine_id": self.machine_id,
            "booking_date": self.booking_date,
            "conflicting_booking_id": self.conflicting_booking_id,
            "conflicting_start": self.conflicting_start,
            "conflicting_end": self.conflicting_end,
            "next_available_start": self.next_available_start,
        }
