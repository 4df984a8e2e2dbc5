"""Shared fixtures: a temporary SQLite database, a controllable clock and wired services."""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import AsyncIterator, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import referral_market.directory.models  # noqa: F401
import referral_market.expiration.models  # noqa: F401
import referral_market.points.models  # noqa: F401
import referral_market.pricing.models  # noqa: F401
import referral_market.referrals.models  # noqa: F401
import referral_market.stats.models  # noqa: F401
import referral_market.wallets.models  # noqa: F401
from referral_market.app import create_app
from referral_market.core.config import AdminSettings, Settings, get_settings
from referral_market.db import session as db_session
from referral_market.db.base import Base
from referral_market.db.dependencies import get_db_session_factory
from referral_market.db.session import create_engine, create_session_factory, dispose_engine
from referral_market.directory.service import SqlOrganizationDirectory
from referral_market.points.service import PointsAwarder
from referral_market.pricing.cache import SettingsCache
from referral_market.pricing.dependencies import reset_pricing_dependencies
from referral_market.pricing.service import PricingResolver
from referral_market.referrals.dependencies import get_referral_notifier
from referral_market.referrals.enums import ReferralEvent
from referral_market.referrals.models import ReferralRequest
from referral_market.referrals.service import ReferralRequestEngine
from referral_market.stats.service import ReferrerStatsTracker
from referral_market.wallets.service import WalletLedger

from .factories import create_job, create_organization, employ, fund_wallet

ADMIN_ID = uuid.UUID("00000000-0000-4000-8000-0000000000ad")


class FakeClock:
    """Clock whose wall and monotonic time only move when told to."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self._now = start or dt.datetime(2025, 3, 10, 9, 0, tzinfo=dt.UTC)
        self._monotonic = 1000.0

    def now(self) -> dt.datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, **delta: float) -> None:
        step = dt.timedelta(**delta)
        self._now += step
        self._monotonic += step.total_seconds()


@dataclass
class SentNotification:
    event: ReferralEvent
    request_id: uuid.UUID
    recipients: list[uuid.UUID]


@dataclass
class RecordingNotifier:
    sent: list[SentNotification] = field(default_factory=list)

    async def notify(
        self,
        event: ReferralEvent,
        request: ReferralRequest,
        recipients: Sequence[uuid.UUID],
        context: dict[str, Any],
    ) -> None:
        self.sent.append(SentNotification(event, request.id, list(recipients)))

    def events(self) -> list[ReferralEvent]:
        return [item.event for item in self.sent]


@dataclass
class Market:
    """Services wired together the way the HTTP layer wires them."""

    settings: Settings
    clock: FakeClock
    pricing: PricingResolver
    ledger: WalletLedger
    points: PointsAwarder
    stats: ReferrerStatsTracker
    directory: SqlOrganizationDirectory
    notifier: RecordingNotifier
    engine: ReferralRequestEngine


@pytest.fixture(autouse=True)
def configure_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("PROMETHEUS__ENABLED", "false")
    monkeypatch.setenv("SENTRY__ENABLED", "false")
    monkeypatch.setenv("EXPIRATION__ENABLED", "false")

    reset_pricing_dependencies()
    get_settings.cache_clear()
    try:
        yield
    finally:
        reset_pricing_dependencies()
        get_settings.cache_clear()


@pytest.fixture
def settings(configure_settings: None) -> Settings:
    return get_settings().model_copy(
        update={"admin": AdminSettings(user_ids=[ADMIN_ID])}
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
    configure_settings: None,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    db_path = tmp_path / "referral-market-tests.db"
    engine = create_engine(f"sqlite+aiosqlite:///{db_path}")

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    factory = create_session_factory(engine)
    db_session._ENGINE = engine
    db_session._SESSION_FACTORY = factory

    try:
        yield factory
    finally:
        await dispose_engine()


@pytest.fixture
def market(settings: Settings, clock: FakeClock) -> Market:
    pricing = PricingResolver(
        settings=settings,
        cache=SettingsCache(settings.pricing.cache_ttl_seconds, clock),
        clock=clock,
    )
    ledger = WalletLedger(settings=settings, pricing=pricing, clock=clock)
    points = PointsAwarder(settings=settings, ledger=ledger, clock=clock)
    directory = SqlOrganizationDirectory()
    stats = ReferrerStatsTracker(directory=directory, clock=clock)
    notifier = RecordingNotifier()
    engine = ReferralRequestEngine(
        settings=settings,
        ledger=ledger,
        pricing=pricing,
        points=points,
        stats=stats,
        directory=directory,
        notifier=notifier,
        clock=clock,
    )
    return Market(
        settings=settings,
        clock=clock,
        pricing=pricing,
        ledger=ledger,
        points=points,
        stats=stats,
        directory=directory,
        notifier=notifier,
        engine=engine,
    )


@pytest_asyncio.fixture()
async def app(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> AsyncIterator[FastAPI]:
    application = create_app()
    notifier = RecordingNotifier()

    application.dependency_overrides[get_db_session_factory] = lambda: session_factory
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_referral_notifier] = lambda: notifier
    application.state.notifier = notifier

    try:
        async with application.router.lifespan_context(application):
            yield application
    finally:
        application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@dataclass
class World:
    """One standard-tier organization with a published job and its people."""

    organization_id: uuid.UUID
    job_id: uuid.UUID
    seeker_id: uuid.UUID
    referrer_id: uuid.UUID
    colleague_id: uuid.UUID
    outsider_id: uuid.UUID


@pytest_asyncio.fixture
async def world(
    session_factory: async_sessionmaker[AsyncSession], market: Market
) -> World:
    organization_id = await create_organization(session_factory, "Acme Corp")
    job_id = await create_job(session_factory, organization_id)
    seeker_id, referrer_id, colleague_id, outsider_id = (uuid.uuid4() for _ in range(4))

    await employ(session_factory, referrer_id, organization_id)
    await employ(session_factory, colleague_id, organization_id)
    await fund_wallet(session_factory, market.ledger, seeker_id, "100")
    return World(
        organization_id=organization_id,
        job_id=job_id,
        seeker_id=seeker_id,
        referrer_id=referrer_id,
        colleague_id=colleague_id,
        outsider_id=outsider_id,
    )
