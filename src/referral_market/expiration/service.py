from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import structlog
from sqlalchemy import Integer, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.db.session import session_scope
from referral_market.db.types import quantize_money
from referral_market.directory.service import SqlOrganizationDirectory
from referral_market.observability import capture_exception, metrics_service
from referral_market.points.service import PointsAwarder
from referral_market.pricing.service import PricingResolver
from referral_market.referrals.enums import EXPIRABLE_STATUSES
from referral_market.referrals.exceptions import (
    InvalidTransitionError,
    RequestNoLongerAvailableError,
)
from referral_market.referrals.models import ReferralRequest
from referral_market.referrals.service import ReferralRequestEngine
from referral_market.stats.service import ReferrerStatsTracker
from referral_market.wallets.service import WalletLedger

from .enums import ExpirationTrigger
from .models import ExpirationRunLog

MAX_LOGGED_ERRORS = 10


@dataclass(slots=True)
class ExpirationSummary:
    execution_id: uuid.UUID
    found: int = 0
    expired: int = 0
    holds_released: int = 0
    amount_released: Decimal = Decimal("0.00")
    expired_request_ids: list[uuid.UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class ExpirationRunStats:
    days: int
    total_runs: int
    successful_runs: int
    failed_runs: int
    total_expired: int
    total_holds_released: int
    total_amount_released: Decimal
    last_run_at: dt.datetime | None


class ExpirationSweeper:
    """Expires stale referral requests in bounded batches.

    Each request is expired in its own transaction so one failure never
    blocks the rest of the batch. Pending counters of the affected
    organizations are rebuilt from source rows once the batch is done.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: ReferralRequestEngine,
        *,
        settings: Settings | None = None,
        stats: ReferrerStatsTracker | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._settings = settings or get_settings()
        self._stats = stats or ReferrerStatsTracker(clock=clock)
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    async def run(
        self,
        *,
        days_old: int | None = None,
        batch_size: int | None = None,
        trigger: ExpirationTrigger = ExpirationTrigger.MANUAL,
    ) -> ExpirationSummary:
        days_old = days_old if days_old is not None else self._settings.referrals.expiration_days
        batch_size = (
            batch_size if batch_size is not None else self._settings.expiration.batch_size
        )
        if days_old < 0 or batch_size <= 0:
            raise ValueError("days_old must be >= 0 and batch_size must be positive")

        summary = ExpirationSummary(execution_id=uuid.uuid4())
        started_at = self._clock.now()
        started = self._clock.monotonic()
        log = self._logger.bind(
            execution_id=str(summary.execution_id), trigger=trigger.value
        )
        log.info("referral_expiration_started", days_old=days_old, batch_size=batch_size)

        candidates = await self._find_candidates(started_at, days_old, batch_size)
        summary.found = len(candidates)

        affected_organizations: set[uuid.UUID] = set()
        for request_id, organization_id in candidates:
            try:
                async with session_scope(self._session_factory) as session:
                    outcome = await self._engine.expire(
                        session, request_id, days_old=days_old
                    )
            except (InvalidTransitionError, RequestNoLongerAvailableError):
                # Resolved by another writer since the scan.
                log.info("referral_expiration_skipped", request_id=str(request_id))
                continue
            except Exception as exc:
                summary.errors.append(f"Request {request_id}: {exc}")
                log.exception("referral_expiration_failed", request_id=str(request_id))
                capture_exception(
                    exc,
                    request_id=str(request_id),
                    execution_id=str(summary.execution_id),
                )
                continue

            summary.expired += 1
            summary.expired_request_ids.append(request_id)
            if outcome.hold_released:
                summary.holds_released += 1
                summary.amount_released = quantize_money(
                    summary.amount_released + outcome.amount_released
                )
            affected_organizations.add(organization_id)

        for organization_id in affected_organizations:
            await self._recompute_stats(organization_id)

        duration = self._clock.monotonic() - started
        metrics_service.record_expiration_run(
            trigger.value,
            expired=summary.expired,
            failed=len(summary.errors),
            success=summary.success,
            duration_seconds=duration,
        )
        await self._persist_run(summary, trigger, started_at, days_old, batch_size)

        log.info(
            "referral_expiration_finished",
            found=summary.found,
            expired=summary.expired,
            holds_released=summary.holds_released,
            amount_released=str(summary.amount_released),
            errors=len(summary.errors),
            duration_seconds=round(duration, 3),
        )
        return summary

    async def get_run_stats(
        self, session: AsyncSession, *, days: int = 30
    ) -> ExpirationRunStats:
        since = self._clock.now() - dt.timedelta(days=days)
        stmt = select(
            func.count(ExpirationRunLog.id),
            func.coalesce(func.sum(cast(ExpirationRunLog.success, Integer)), 0),
            func.coalesce(func.sum(ExpirationRunLog.expired), 0),
            func.coalesce(func.sum(ExpirationRunLog.holds_released), 0),
            func.coalesce(func.sum(ExpirationRunLog.amount_released), 0),
            func.max(ExpirationRunLog.started_at),
        ).where(ExpirationRunLog.started_at >= since)
        total, successful, expired, holds, amount, last_run = (
            await session.execute(stmt)
        ).one()

        if last_run is not None and last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=dt.UTC)
        return ExpirationRunStats(
            days=days,
            total_runs=int(total),
            successful_runs=int(successful),
            failed_runs=int(total) - int(successful),
            total_expired=int(expired),
            total_holds_released=int(holds),
            total_amount_released=quantize_money(Decimal(str(amount))),
            last_run_at=last_run,
        )

    async def _find_candidates(
        self, now: dt.datetime, days_old: int, batch_size: int
    ) -> list[tuple[uuid.UUID, uuid.UUID]]:
        cutoff = now - dt.timedelta(days=days_old)
        stmt = (
            select(ReferralRequest.id, ReferralRequest.organization_id)
            .where(
                ReferralRequest.status.in_(EXPIRABLE_STATUSES),
                ReferralRequest.requested_at <= cutoff,
            )
            .order_by(ReferralRequest.requested_at, ReferralRequest.id)
            .limit(batch_size)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [(row[0], row[1]) for row in rows]

    async def _recompute_stats(self, organization_id: uuid.UUID) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                await self._stats.recompute(session, organization_id)
        except Exception:
            self._logger.exception(
                "referrer_stats_recompute_failed", organization_id=str(organization_id)
            )

    async def _persist_run(
        self,
        summary: ExpirationSummary,
        trigger: ExpirationTrigger,
        started_at: dt.datetime,
        days_old: int,
        batch_size: int,
    ) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                session.add(
                    ExpirationRunLog(
                        execution_id=summary.execution_id,
                        trigger=trigger,
                        started_at=started_at,
                        finished_at=self._clock.now(),
                        days_old=days_old,
                        batch_size=batch_size,
                        found=summary.found,
                        expired=summary.expired,
                        holds_released=summary.holds_released,
                        amount_released=summary.amount_released,
                        success=summary.success,
                        error_count=len(summary.errors),
                        errors=summary.errors[:MAX_LOGGED_ERRORS],
                    )
                )
        except Exception:
            self._logger.exception(
                "referral_expiration_log_failed", execution_id=str(summary.execution_id)
            )


def build_expiration_sweeper(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings | None = None,
    clock: Clock = system_clock,
) -> ExpirationSweeper:
    """Wire a sweeper with its own engine for use outside request handling."""
    settings = settings or get_settings()
    directory = SqlOrganizationDirectory()
    pricing = PricingResolver(settings=settings, clock=clock)
    ledger = WalletLedger(settings=settings, pricing=pricing, clock=clock)
    stats = ReferrerStatsTracker(directory=directory, clock=clock)
    engine = ReferralRequestEngine(
        settings=settings,
        ledger=ledger,
        pricing=pricing,
        points=PointsAwarder(settings=settings, ledger=ledger, clock=clock),
        stats=stats,
        directory=directory,
        clock=clock,
    )
    return ExpirationSweeper(
        session_factory, engine, settings=settings, stats=stats, clock=clock
    )
