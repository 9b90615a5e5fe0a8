"""Domain-level validation rules for booking configuration and customer input."""

from __future__ import annotations

import re
from typing import Sequence

from simbooking.domain.errors import ConfigurationError, ValidationError
from simbooking.domain.models import DurationOption, OperatingHours


def validate_operating_hours(hours: OperatingHours) -> None:
    if hours.slot_duration_minutes <= 0:
        raise ConfigurationError("slot_duration_minutes must be > 0")
    if hours.is_open_24_hours:
        return
    if not 0 <= hours.open_hour <= 23:
        raise ConfigurationError("open_hour must be between 0 and 23")
    if not 1 <= hours.close_hour <= 24:
        raise ConfigurationError("close_hour must be between 1 and 24")
    if hours.open_hour >= hours.close_hour:
        raise ConfigurationError("open_hour must be earlier than close_hour")
    if hours.slot_duration_minutes > hours.closing_minute - hours.opening_minute:
        raise ConfigurationError("slot_duration_minutes must fit inside the operating window")


def validate_duration_catalog(catalog: Sequence[DurationOption]) -> None:
    if not catalog:
        raise ConfigurationError("duration catalog must offer at least one duration")
    seen: set[int] = set()
    for option in catalog:
        if option.minutes <= 0:
            raise ConfigurationError("catalog durations must be > 0 minutes")
        if option.minutes in seen:
            raise ConfigurationError(f"duplicate catalog duration: {option.minutes} minutes")
        seen.add(option.minutes)


def normalize_customer_name(name: str, min_length: int, max_length: int) -> str:
    cleaned = (name or "").strip()
    if not min_length <= len(cleaned) <= max_length:
        raise ValidationError(
            f"customer_name must be between {min_length} and {max_length} characters"
        )
    return cleaned


def normalize_customer_phone(phone: str, min_digits: int, max_digits: int) -> str:
    """Strip spaces and dashes, then require a plain run of digits."""
    cleaned = re.sub(r"[\s\-]", "", phone or "")
    if not cleaned.isdigit() or not min_digits <= len(cleaned) <= max_digits:
        raise ValidationError(
            f"customer_phone must contain {min_digits}-{max_digits} digits"
        )
    return cleaned
