"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from simbooking.controllers.booking_controller import router as booking_router
from simbooking.controllers.control_controller import router as control_router
from simbooking.controllers.walk_in_controller import router as walk_in_router
from simbooking.repository.data_repository import DataRepository
from simbooking.services.booking_service import BookingLedger
from simbooking.services.clock_service import ShopClock
from simbooking.services.machine_service import MachineService
from simbooking.services.occupancy_service import OccupancyFeed, OccupancyService
from simbooking.services.session_service import SessionService
from simbooking.services.walk_in_service import WalkInService
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[ShopClock] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and shared through app.state, so one
    repository, one clock and one occupancy feed serve all requests.
    """
    settings = settings or get_settings()
    clock = clock or ShopClock(settings)

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    occupancy_service = OccupancyService(repository=repository, clock=clock, settings=settings)
    feed = OccupancyFeed(occupancy_service)
    booking_ledger = BookingLedger(repository=repository, clock=clock, settings=settings, feed=feed)
    session_service = SessionService(repository=repository, clock=clock, settings=settings, feed=feed)
    walk_in_service = WalkInService(
        repository=repository,
        session_service=session_service,
        clock=clock,
        settings=settings,
        feed=feed,
    )
    machine_service = MachineService(repository=repository, settings=settings, feed=feed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(booking_router)
    app.include_router(control_router)
    app.include_router(walk_in_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.clock = clock
    app.state.repository = repository
    app.state.occupancy_service = occupancy_service
    app.state.occupancy_feed = feed
    app.state.booking_ledger = booking_ledger
    app.state.session_service = session_service
    app.state.walk_in_service = walk_in_service
    app.state.machine_service = machine_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before machines are seeded, and the occupancy
    feed is primed last so the first subscriber gets a real board.
    """
    repository: DataRepository = app.state.repository
    feed: OccupancyFeed = app.state.occupancy_feed

    logger.info("Startup: initializing database schema at %s", repository.database_path)
    repository.initialize_database()

    logger.info("Startup: seeding machines (skipped if Machines table not empty)")
    repository.seed_default_machines()

    feed.invalidate()
    logger.info("Startup complete (shop timezone %s)", app.state.clock.timezone_name)


# Module-level app object for uvicorn
app = create_app()
