"""Site holds: short-lived advisory claims taken when payment begins."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, date, datetime, timedelta

from campflow.config import settings
from campflow.errors import BookingError
from campflow.schemas.reservation import Hold

logger = logging.getLogger(__name__)

EXPIRED = "Expired"

HoldRequester = Callable[[str, str, date, date], Awaitable[Hold]]


def utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def format_countdown(expires_at: datetime, now: datetime | None = None) -> str:
    """``mm:ss`` until expiry, or "Expired" at and after ``expires_at``."""
    now = _aware(now or utcnow())
    remaining = (_aware(expires_at) - now).total_seconds()
    if remaining <= 0:
        return EXPIRED
    minutes, seconds = divmod(int(remaining), 60)
    return f"{minutes:02d}:{seconds:02d}"


async def countdown_ticks(
    expires_at: datetime,
    interval: float = 1.0,
    clock: Callable[[], datetime] = utcnow,
) -> AsyncIterator[str]:
    """Yield the countdown once per ``interval`` until it reads "Expired"."""
    while True:
        label = format_countdown(expires_at, clock())
        yield label
        if label == EXPIRED:
            return
        await asyncio.sleep(interval)


class HoldManager:
    """Owns the single hold of one checkout.

    Acquiring is best-effort: if the platform refuses or fails, checkout goes on
    without a hold and the backend settles contention at reservation time.
    Holds are never released here; they lapse on their own.
    """

    def __init__(
        self,
        create_hold: HoldRequester,
        default_minutes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._create_hold = create_hold
        self._default_minutes = default_minutes if default_minutes is not None else settings.hold_default_minutes
        self._clock = clock
        self._hold: Hold | None = None
        self._dates: tuple[date, date] | None = None

    @property
    def hold(self) -> Hold | None:
        return self._hold

    def is_expired(self, now: datetime | None = None) -> bool:
        if self._hold is None or self._hold.expires_at is None:
            return True
        return _aware(self._hold.expires_at) <= _aware(now or self._clock())

    def active_hold(self, site_id: str, arrival: date, departure: date, now: datetime | None = None) -> Hold | None:
        """The current hold if it covers this site and dates and has not expired."""
        if self._hold is None or self._hold.site_id != site_id or self._dates != (arrival, departure):
            return None
        return None if self.is_expired(now) else self._hold

    async def acquire(
        self,
        campground_id: str,
        site_id: str,
        arrival: date,
        departure: date,
    ) -> Hold | None:
        now = self._clock()
        existing = self.active_hold(site_id, arrival, departure, now)
        if existing is not None:
            return existing

        try:
            hold = await self._create_hold(campground_id, site_id, arrival, departure)
        except BookingError as exc:
            logger.warning("Could not hold site %s, continuing without a hold: %s", site_id, exc.message)
            self.clear()
            return None

        updates: dict = {}
        if hold.expires_at is None:
            updates["expires_at"] = now + timedelta(minutes=self._default_minutes)
        if hold.site_id is None:
            updates["site_id"] = site_id
        if updates:
            hold = hold.model_copy(update=updates)

        self._hold = hold
        self._dates = (arrival, departure)
        logger.info("Hold %s on site %s until %s", hold.id, site_id, hold.expires_at)
        return hold

    def countdown(self, now: datetime | None = None) -> str | None:
        if self._hold is None or self._hold.expires_at is None:
            return None
        return format_countdown(self._hold.expires_at, now or self._clock())

    def clear(self) -> None:
        self._hold = None
        self._dates = None
