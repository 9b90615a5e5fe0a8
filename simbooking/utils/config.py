"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from simbooking.domain.models import BookingStatus, DurationOption, OperatingHours


_ENV_PREFIX = "SIMBOOKING_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_DURATION_CATALOG: tuple[DurationOption, ...] = (
    DurationOption(minutes=30, label="30 min", label_en="WARM UP", price=60, price_display="฿60"),
    DurationOption(
        minutes=60,
        label="1 hour",
        label_en="PRO RACE",
        price=100,
        price_display="฿100",
        popular=True,
    ),
    DurationOption(minutes=120, label="2 hours", label_en="PRO RACE", price=200, price_display="฿200"),
    DurationOption(
        minutes=180,
        label="3 hours",
        label_en="GRAND PRIX",
        price=280,
        price_display="฿280",
        popular=True,
    ),
)


@dataclass(frozen=True)
class Settings:
    app_name: str = "Racing Simulator Booking"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = Path("data/simbooking.db")
    database_busy_timeout_seconds: float = 10.0

    shop_timezone: str = "Asia/Bangkok"
    fallback_timezone: str = "UTC"

    operating_hours: OperatingHours = field(default_factory=OperatingHours)
    duration_catalog: tuple[DurationOption, ...] = DEFAULT_DURATION_CATALOG

    booking_default_status: BookingStatus = BookingStatus.CONFIRMED
    booking_require_grid_alignment: bool = True
    advance_booking_days: int = 7
    customer_name_min_length: int = 2
    customer_name_max_length: int = 100
    customer_phone_min_digits: int = 9
    customer_phone_max_digits: int = 10

    walk_in_default_duration_minutes: int = 60
    upcoming_bookings_limit: int = 3
    seed_machine_count: int = 4

    @property
    def duration_minutes_offered(self) -> tuple[int, ...]:
        return tuple(option.minutes for option in self.duration_catalog)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from ``SIMBOOKING_*`` variables."""
    hours = OperatingHours(
        open_hour=_env_int("OPEN_HOUR", 10),
        close_hour=_env_int("CLOSE_HOUR", 22),
        slot_duration_minutes=_env_int("SLOT_DURATION_MINUTES", 30),
        is_open_24_hours=_env_bool("OPEN_24_HOURS", False),
        is_enabled=_env_bool("ADVANCE_BOOKING_ENABLED", True),
    )
    return Settings(
        app_name=_env("APP_NAME", Settings.app_name),
        app_version=_env("APP_VERSION", Settings.app_version),
        log_level=_env("LOG_LEVEL", Settings.log_level),
        database_path=Path(_env("DATABASE_PATH", str(Settings.database_path))),
        database_busy_timeout_seconds=float(
            _env("DATABASE_BUSY_TIMEOUT_SECONDS", str(Settings.database_busy_timeout_seconds))
        ),
        shop_timezone=_env("SHOP_TIMEZONE", Settings.shop_timezone),
        fallback_timezone=_env("FALLBACK_TIMEZONE", Settings.fallback_timezone),
        operating_hours=hours,
        booking_default_status=BookingStatus(
            _env("BOOKING_DEFAULT_STATUS", BookingStatus.CONFIRMED.value)
        ),
        advance_booking_days=_env_int("ADVANCE_BOOKING_DAYS", Settings.advance_booking_days),
        walk_in_default_duration_minutes=_env_int(
            "WALK_IN_DEFAULT_DURATION_MINUTES",
            Settings.walk_in_default_duration_minutes,
        ),
        seed_machine_count=_env_int("SEED_MACHINE_COUNT", Settings.seed_machine_count),
    )
