"""Shop-local clock: the single source of "now" and "today"."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional

import pytz

from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(primary: str, fallback: str) -> tzinfo:
    """Return the primary zone, else the fallback, else UTC. Never raises."""
    try:
        return pytz.timezone(primary)
    except pytz.UnknownTimeZoneError:
        logger.warning(
            "Unknown shop timezone %r; falling back to %r",
            primary,
            fallback,
        )
    try:
        return pytz.timezone(fallback)
    except pytz.UnknownTimeZoneError:
        logger.error("Unknown fallback timezone %r; using UTC", fallback)
        return pytz.utc


class ShopClock:
    """Converts wall-clock time into shop-local time.

    ``utc_now`` is injectable so tests can pin the wall clock; it must
    return an aware datetime (naive values are treated as UTC).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        utc_now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._utc_now = utc_now or _utc_now
        self._timezone = resolve_timezone(
            self._settings.shop_timezone,
            self._settings.fallback_timezone,
        )

    @property
    def timezone_name(self) -> str:
        return str(self._timezone)

    def now(self) -> datetime:
        current = self._utc_now()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self._timezone)

    def today(self) -> str:
        return self.now().strftime("%Y-%m-%d")

    def time_of_day(self) -> str:
        return self.now().strftime("%H:%M")

    def minutes_of_day(self) -> int:
        current = self.now()
        return current.hour * 60 + current.minute

    def localize(self, moment: datetime) -> datetime:
        """Express an arbitrary timestamp in shop-local time."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._timezone)
