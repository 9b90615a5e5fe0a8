"""Domain models for machine booking, live sessions and walk-in queues."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MachineStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def blocks_slot(self) -> bool:
        return self in BLOCKING_BOOKING_STATUSES


BLOCKING_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    PASSED = "passed"


class QueueStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def _missing_(cls, value: object) -> Optional["QueueStatus"]:
        # Older queue rows used "called"/"seated" for the in-play state.
        if isinstance(value, str) and value.lower() in {"called", "seated"}:
            return cls.PLAYING
        return None

    @property
    def is_active(self) -> bool:
        return self in (QueueStatus.WAITING, QueueStatus.PLAYING)


class OccupancyState(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class StationAction(str, Enum):
    CHECK_IN = "check_in"
    CALL_NEXT = "call_next"
    END_SESSION = "end_session"


@dataclass(frozen=True)
class OperatingHours:
    open_hour: int = 10
    close_hour: int = 22
    slot_duration_minutes: int = 30
    is_open_24_hours: bool = False
    is_enabled: bool = True

    @property
    def opening_minute(self) -> int:
        return 0 if self.is_open_24_hours else self.open_hour * 60

    @property
    def closing_minute(self) -> int:
        return 24 * 60 if self.is_open_24_hours else self.close_hour * 60


@dataclass(frozen=True)
class DurationOption:
    minutes: int
    label: str
    label_en: str
    price: int
    price_display: str
    popular: bool = False


@dataclass(frozen=True)
class Machine:
    machine_id: int
    name: str
    description: str
    position: int
    is_active: bool
    status: MachineStatus


@dataclass(frozen=True)
class AdvanceBooking:
    booking_id: int
    machine_id: int
    customer_name: str
    customer_phone: str
    booking_date: str
    start_time: str
    end_time: str
    duration_minutes: int
    status: BookingStatus
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class TimeSlot:
    slot_id: str
    start_time: str
    end_time: str
    status: SlotStatus
    booking_id: Optional[int] = None


@dataclass(frozen=True)
class DaySchedule:
    machine_id: int
    date: str
    time_slots: list[TimeSlot]
    total_slots: int
    available_slots: int
    booked_slots: int
    passed_slots: int


@dataclass(frozen=True)
class WalkInEntry:
    entry_id: int
    machine_id: int
    customer_name: str
    customer_phone: str
    duration_minutes: int
    status: QueueStatus
    joined_at: str
    called_at: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Session:
    session_id: int
    station_id: int
    customer_name: str
    start_time: str
    booking_id: Optional[int] = None
    queue_entry_id: Optional[int] = None
    duration_minutes: Optional[int] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class QueueEstimate:
    machine_id: int
    waiting_count: int
    playing_count: int
    estimated_wait_minutes: int
    next_position: int
