"""Tests for operating-hours, catalog and customer field validation."""

from __future__ import annotations

import pytest

from simbooking.domain.constraints import (
    normalize_customer_name,
    normalize_customer_phone,
    validate_duration_catalog,
    validate_operating_hours,
)
from simbooking.domain.errors import ConfigurationError, ValidationError
from simbooking.domain.models import DurationOption, OperatingHours
from simbooking.utils.config import DEFAULT_DURATION_CATALOG


def valid_hours(**overrides) -> OperatingHours:
    """Return the default 10:00-22:00 half-hour configuration, optionally overridden."""
    defaults = {
        "open_hour": 10,
        "close_hour": 22,
        "slot_duration_minutes": 30,
        "is_open_24_hours": False,
        "is_enabled": True,
    }
    defaults.update(overrides)
    return OperatingHours(**defaults)


# --- Operating hours ---

def test_valid_hours_pass() -> None:
    validate_operating_hours(valid_hours())


def test_open_not_before_close_raises() -> None:
    with pytest.raises(ConfigurationError):
        validate_operating_hours(valid_hours(open_hour=22, close_hour=22))


def test_close_hour_above_24_raises() -> None:
    with pytest.raises(ConfigurationError):
        validate_operating_hours(valid_hours(close_hour=25))


def test_zero_slot_duration_raises() -> None:
    with pytest.raises(ConfigurationError):
        validate_operating_hours(valid_hours(slot_duration_minutes=0))


def test_slot_longer_than_window_raises() -> None:
    with pytest.raises(ConfigurationError):
        validate_operating_hours(valid_hours(open_hour=10, close_hour=11, slot_duration_minutes=90))


def test_open_24_hours_ignores_hour_fields() -> None:
    """Open/close hours are irrelevant once the shop never closes."""
    validate_operating_hours(valid_hours(open_hour=0, close_hour=0, is_open_24_hours=True))


def test_close_at_midnight_passes() -> None:
    validate_operating_hours(valid_hours(open_hour=18, close_hour=24))


# --- Duration catalog ---

def test_default_catalog_passes() -> None:
    validate_duration_catalog(DEFAULT_DURATION_CATALOG)


def test_empty_catalog_raises() -> None:
    with pytest.raises(ConfigurationError):
        validate_duration_catalog(())


def test_duplicate_catalog_duration_raises() -> None:
    option = DurationOption(minutes=30, label="30 min", label_en="WARM UP", price=60, price_display="฿60")
    with pytest.raises(ConfigurationError):
        validate_duration_catalog((option, option))


# --- Customer fields ---

def test_customer_name_is_trimmed() -> None:
    assert normalize_customer_name("  Somchai  ", 2, 100) == "Somchai"


@pytest.mark.parametrize("name", ["", "A", " B ", "x" * 101])
def test_customer_name_length_bounds(name: str) -> None:
    with pytest.raises(ValidationError):
        normalize_customer_name(name, 2, 100)


def test_customer_phone_strips_separators() -> None:
    assert normalize_customer_phone("081-234 5678", 9, 10) == "0812345678"


@pytest.mark.parametrize("phone", ["12345678", "08123456789", "08x2345678", ""])
def test_customer_phone_rejects_bad_values(phone: str) -> None:
    with pytest.raises(ValidationError):
        normalize_customer_phone(phone, 9, 10)
