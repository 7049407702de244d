"""Session persistence: durable checkout drafts and the abandoned-cart timer."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campflow.config import settings
from campflow.database import async_session_factory
from campflow.models.booking_draft import BookingDraft
from campflow.schemas.guest import GuestDraft

logger = logging.getLogger(__name__)


class DraftPayload(BaseModel):
    """Guest-entered selections. Quote data is never stored here."""

    guest: GuestDraft = Field(default_factory=GuestDraft)
    arrival_date: date | None = None
    departure_date: date | None = None
    site_type: str = "all"
    rig_type: str | None = None
    rig_length: int | None = None
    site_id: str | None = None
    site_class_id: str | None = None
    assign_specific_site: bool = False
    lock_site: bool = False
    pay_later: bool = False
    charity_cents: int = 0

    @property
    def has_meaningful_progress(self) -> bool:
        """Worth offering to resume: a guest, a site, or started dates."""
        return bool(self.guest.guest_id or self.site_id or self.arrival_date)


# ---------------------------------------------------------------------------
# Draft table access
# ---------------------------------------------------------------------------


async def load_draft(db: AsyncSession, session_key: str) -> BookingDraft | None:
    result = await db.execute(select(BookingDraft).where(BookingDraft.session_key == session_key))
    return result.scalar_one_or_none()


async def save_draft(
    db: AsyncSession,
    session_key: str,
    campground_id: str,
    step: str,
    payload: dict,
) -> BookingDraft:
    """Insert or update the draft for a browser session."""
    draft = await load_draft(db, session_key)
    if draft is None:
        draft = BookingDraft(session_key=session_key, campground_id=campground_id)
        db.add(draft)
    draft.campground_id = campground_id
    draft.step = step
    draft.payload = payload
    await db.flush()
    return draft


async def delete_draft(db: AsyncSession, session_key: str) -> bool:
    result = await db.execute(delete(BookingDraft).where(BookingDraft.session_key == session_key))
    await db.flush()
    return result.rowcount > 0


class SessionState:
    """Load-or-empty, save, and clear for one browser session's draft.

    Each call uses the given ``db`` session when a request has one, or opens
    and commits its own from ``session_factory`` (background saves).
    """

    def __init__(
        self,
        session_key: str,
        campground_id: str,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self.session_key = session_key
        self.campground_id = campground_id
        self._session_factory = session_factory

    async def _run(self, db: AsyncSession | None, op: Callable[[AsyncSession], Awaitable]):
        if db is not None:
            return await op(db)
        async with self._session_factory() as own:
            result = await op(own)
            await own.commit()
            return result

    async def load(self, db: AsyncSession | None = None) -> tuple[str | None, DraftPayload]:
        """Saved step and payload, or ``(None, empty)`` when nothing is stored."""

        async def op(session: AsyncSession):
            return await load_draft(session, self.session_key)

        draft = await self._run(db, op)
        if draft is None or draft.campground_id != self.campground_id:
            return None, DraftPayload()
        return draft.step, DraftPayload.model_validate(draft.payload or {})

    async def save(self, step: str, payload: DraftPayload, db: AsyncSession | None = None) -> None:
        data = payload.model_dump(mode="json")

        async def op(session: AsyncSession):
            await save_draft(session, self.session_key, self.campground_id, step, data)

        await self._run(db, op)
        logger.debug("Saved draft %s at step %s", self.session_key, step)

    async def clear(self, db: AsyncSession | None = None) -> None:
        async def op(session: AsyncSession):
            return await delete_draft(session, self.session_key)

        if await self._run(db, op):
            logger.info("Cleared draft %s", self.session_key)

    async def resume_offer(self, db: AsyncSession | None = None) -> tuple[str | None, DraftPayload] | None:
        """The saved draft if it has enough progress to offer resuming."""
        step, payload = await self.load(db)
        if step is None or not payload.has_meaningful_progress:
            return None
        return step, payload


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------


class DebouncedSaver:
    """Collapse bursts of changes into one save after a quiet period."""

    def __init__(self, save: Callable[[], Awaitable[None]], delay: float | None = None):
        self._save = save
        self._delay = settings.draft_save_debounce_seconds if delay is None else delay
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self._save()
        except Exception:
            logger.exception("Draft save failed")

    async def flush(self) -> None:
        """Save now if a save is pending."""
        if self.pending:
            self.cancel()
            await self._save()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class AbandonmentWatcher:
    """Report an abandoned cart once, after the checkout goes quiet.

    Armed while the guest has given contact details and has not reached
    payment. Any step or contact change restarts the timer.
    """

    def __init__(self, report: Callable[[], Awaitable[None]], delay: float | None = None):
        self._report = report
        self._delay = settings.abandon_delay_seconds if delay is None else delay
        self._task: asyncio.Task | None = None
        self.fired = False

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def update(self, *, has_contact: bool, reached_payment: bool, completed: bool = False) -> None:
        """Re-evaluate after a step or contact change."""
        if completed or reached_payment or not has_contact:
            self.disarm()
        else:
            self.rearm()

    def rearm(self) -> None:
        if self.fired:
            return
        self.disarm()
        self._task = asyncio.create_task(self._run())

    def disarm(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        if self.fired:
            return
        self.fired = True
        try:
            await self._report()
        except Exception:
            logger.warning("Abandoned cart report failed", exc_info=True)
