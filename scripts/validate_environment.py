#!/usr/bin/env python3
"""Validate local booking-server environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from simbooking.domain.constraints import validate_operating_hours
from simbooking.domain.errors import ConfigurationError
from simbooking.repository.data_repository import DataRepository
from simbooking.services.booking_service import BookingLedger
from simbooking.services.clock_service import ShopClock
from simbooking.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="simbooking-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pytz", "pytz"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        base_settings = get_settings()
        validation_settings = replace(
            base_settings,
            database_path=Path(temp_dir) / "simbooking_validation.db",
        )

        # CHECK 3: Operating hours configuration
        try:
            validate_operating_hours(validation_settings.operating_hours)
            ok, line = _print_result("Operating hours configuration", True)
        except ConfigurationError as exc:
            ok, line = _print_result("Operating hours configuration", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Shop timezone
        clock = ShopClock(validation_settings)
        ok, line = _print_result(
            "Shop clock",
            clock.timezone_name == validation_settings.shop_timezone,
            f": {clock.timezone_name} now {clock.now().isoformat(timespec='minutes')}",
        )
        results.append(line)
        all_passed = all_passed and ok

        repository = DataRepository(validation_settings)

        # CHECK 5: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Machine seeding
        try:
            seeded = repository.seed_default_machines()
            if seeded != validation_settings.seed_machine_count:
                raise RuntimeError(
                    f"expected {validation_settings.seed_machine_count} machines, got {seeded}"
                )
            ok, line = _print_result("Machine seeding", True, f": {seeded} machines")
        except RuntimeError as exc:
            ok, line = _print_result("Machine seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7: Day schedule for the first machine
        try:
            ledger = BookingLedger(repository=repository, clock=clock, settings=validation_settings)
            schedule = ledger.get_day_schedule(1, clock.today())
            total = schedule.available_slots + schedule.booked_slots + schedule.passed_slots
            if total != schedule.total_slots:
                raise RuntimeError("slot counts do not add up")
            ok, line = _print_result(
                "Day schedule",
                True,
                f": {schedule.total_slots} slots, {schedule.available_slots} available",
            )
        except Exception as exc:
            ok, line = _print_result("Day schedule", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
