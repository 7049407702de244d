"""Shared test configuration and fixtures.

Drafts are stored in an in-memory SQLite database (aiosqlite) created fresh
for every test, so tests need no running PostgreSQL. The campground platform
is replaced by an ``AsyncMock`` shaped like ``PlatformClient``.
"""

from collections.abc import AsyncGenerator
from datetime import date
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campflow.api.deps import get_registry
from campflow.billing.fees import FeeSettings
from campflow.clients.platform import PlatformClient
from campflow.database import Base, get_db
from campflow.main import app
from campflow.schemas.catalog import SiteClass, SiteRecord
from campflow.schemas.quote import PromoValidation
from campflow.schemas.reservation import Hold, PaymentIntent, Reservation
from campflow.services.checkout_service import CheckoutRegistry

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with the draft table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Catalog factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_site():
    """Build a SiteRecord with a site class. Keyword overrides apply to the site."""

    def _make(
        site_id: str = "site-1",
        *,
        site_type: str = "rv",
        status: str = "available",
        rate: int | None = None,
        class_rate: int = 5000,
        class_id: str = "class-rv",
        class_name: str = "Full Hookup RV",
        rig_max_length: int | None = None,
        class_rig_max_length: int | None = None,
        accessible: bool | None = None,
        class_accessible: bool = False,
    ) -> SiteRecord:
        return SiteRecord(
            id=site_id,
            name=f"Site {site_id}",
            site_number=site_id.split("-")[-1],
            site_class_id=class_id,
            site_type=site_type,
            status=status,
            default_rate_cents=rate,
            rig_max_length=rig_max_length,
            accessible=accessible,
            site_class=SiteClass(
                id=class_id,
                name=class_name,
                site_type=site_type,
                default_rate_cents=class_rate,
                accessible=class_accessible,
                rig_max_length=class_rig_max_length,
            ),
        )

    return _make


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


@pytest.fixture
def platform(make_site) -> AsyncMock:
    """Platform client double with happy-path defaults for every call."""
    mock = AsyncMock(spec=PlatformClient)
    mock.get_availability.return_value = [make_site("site-1"), make_site("site-2")]
    mock.get_payment_settings.return_value = FeeSettings()
    mock.get_quote.side_effect = AssertionError("configure get_quote in the test")
    mock.validate_promo_code.return_value = PromoValidation(
        code="SAVE10", discount_cents=1500, promotion_id="promo-1"
    )
    mock.create_hold.return_value = Hold(id="hold-1", site_id="site-1")
    mock.create_reservation.return_value = Reservation(id="res-1", status="pending")
    mock.update_reservation.return_value = Reservation(id="res-1", status="confirmed")
    mock.cancel_reservation.return_value = None
    mock.update_guest.return_value = None
    mock.create_payment_intent.return_value = PaymentIntent(
        id="pi_123", client_secret="pi_123_secret_abc", amount_cents=13500, currency="usd"
    )
    mock.confirm_payment_intent.return_value = None
    mock.report_abandoned_cart.return_value = None
    return mock


@pytest.fixture
def stay_dates() -> tuple[date, date]:
    return date(2031, 6, 10), date(2031, 6, 13)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def registry(platform, session_factory) -> AsyncGenerator[CheckoutRegistry, None]:
    registry = CheckoutRegistry(platform, session_factory=session_factory)
    yield registry
    registry.close_all()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, registry: CheckoutRegistry) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB and platform double."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session
        await db_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()
