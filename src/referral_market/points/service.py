from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.core.exceptions import ValidationError
from referral_market.db.types import quantize_money
from referral_market.db.upsert import upsert_insert_for
from referral_market.observability import metrics_service
from referral_market.wallets.enums import TransactionSource
from referral_market.wallets.service import WalletLedger

from .enums import PointsType
from .models import ReferralReward, ReferrerPoints

POINTS_DESCRIPTIONS: dict[PointsType, str] = {
    PointsType.PROOF_SUBMISSION: "Referral proof submitted",
    PointsType.QUICK_RESPONSE_BONUS: "Quick response bonus",
    PointsType.VERIFICATION: "Referral verified by job seeker",
    PointsType.CONVERSION: "Converted to wallet balance",
    PointsType.GENERAL: "Points awarded",
}


@dataclass(slots=True)
class PointsConversion:
    points: int
    amount: Decimal
    transaction_id: uuid.UUID


@dataclass(slots=True)
class PointsHistoryEntry:
    points: int
    points_type: PointsType
    description: str
    request_id: uuid.UUID | None
    awarded_at: dt.datetime


@dataclass(slots=True)
class PointsHistory:
    referrer_id: uuid.UUID
    balance: int
    lifetime_points: int
    entries: list[PointsHistoryEntry] = field(default_factory=list)


class PointsAwarder:
    """Idempotent reward-point ledger for referrers.

    Awards never raise: a failed award is rolled back to its savepoint, logged
    and reported as ``False`` so the caller's transition still commits.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        ledger: WalletLedger | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._settings = settings or get_settings()
        self._ledger = ledger or WalletLedger(settings=self._settings, clock=clock)
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    async def award_points(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        request_id: uuid.UUID,
        points: int,
        points_type: PointsType,
    ) -> bool:
        """Record ``points`` once per (referrer, request, type); True if newly awarded."""
        if points <= 0:
            return False

        try:
            async with session.begin_nested():
                inserted = await self._insert_reward(
                    session, referrer_id, request_id, points, points_type
                )
                if inserted:
                    await self._add_to_total(session, referrer_id, points)
        except Exception:
            self._logger.exception(
                "points_award_failed",
                referrer_id=str(referrer_id),
                request_id=str(request_id),
                points_type=points_type.value,
            )
            metrics_service.record_points_award(points_type.value, "failed")
            return False

        metrics_service.record_points_award(
            points_type.value, "awarded" if inserted else "duplicate"
        )
        if inserted:
            self._logger.info(
                "points_awarded",
                referrer_id=str(referrer_id),
                request_id=str(request_id),
                points=points,
                points_type=points_type.value,
            )
        return inserted

    async def convert_points_to_wallet(
        self, session: AsyncSession, referrer_id: uuid.UUID
    ) -> PointsConversion:
        """Move the whole point balance into the wallet at the configured rate."""
        rate = self._settings.points.conversion_rate
        minimum = self._settings.points.minimum_conversion

        async with session.begin_nested():
            stmt = (
                select(ReferrerPoints)
                .where(ReferrerPoints.referrer_id == referrer_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            totals = (await session.execute(stmt)).scalar_one_or_none()
            if totals is None or totals.points_balance <= 0:
                raise ValidationError("No points available to convert", points=0)
            points = totals.points_balance
            if points < minimum:
                raise ValidationError(
                    f"At least {minimum} points are required to convert",
                    points=points,
                    minimum=minimum,
                )

            amount = quantize_money(Decimal(points) * rate)
            entry = await self._ledger.credit_bonus(
                session,
                referrer_id,
                amount,
                source=TransactionSource.POINTS_CONVERSION,
                description=f"Converted {points} points",
            )

            totals.points_balance = 0
            totals.updated_at = self._clock.now()
            session.add(
                ReferralReward(
                    referrer_id=referrer_id,
                    request_id=None,
                    points_earned=-points,
                    points_type=PointsType.CONVERSION,
                    description=f"Converted {points} points to {amount}",
                    awarded_at=self._clock.now(),
                )
            )
            await session.flush()

        self._logger.info(
            "points_converted",
            referrer_id=str(referrer_id),
            points=points,
            amount=str(amount),
            transaction_id=str(entry.id),
        )
        return PointsConversion(points=points, amount=amount, transaction_id=entry.id)

    async def get_balance(self, session: AsyncSession, referrer_id: uuid.UUID) -> int:
        stmt = select(ReferrerPoints.points_balance).where(
            ReferrerPoints.referrer_id == referrer_id
        )
        return (await session.execute(stmt)).scalar_one_or_none() or 0

    async def get_points_history(
        self, session: AsyncSession, referrer_id: uuid.UUID, *, limit: int = 100
    ) -> PointsHistory:
        totals = (
            await session.execute(
                select(ReferrerPoints)
                .where(ReferrerPoints.referrer_id == referrer_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        rows_stmt = (
            select(ReferralReward)
            .where(ReferralReward.referrer_id == referrer_id)
            .order_by(ReferralReward.awarded_at.desc())
            .limit(limit)
        )
        rows = (await session.execute(rows_stmt)).scalars().all()

        return PointsHistory(
            referrer_id=referrer_id,
            balance=totals.points_balance if totals is not None else 0,
            lifetime_points=totals.lifetime_points if totals is not None else 0,
            entries=[
                PointsHistoryEntry(
                    points=row.points_earned,
                    points_type=row.points_type,
                    description=row.description or POINTS_DESCRIPTIONS[row.points_type],
                    request_id=row.request_id,
                    awarded_at=row.awarded_at,
                )
                for row in rows
            ],
        )

    async def _insert_reward(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        request_id: uuid.UUID,
        points: int,
        points_type: PointsType,
    ) -> bool:
        values = {
            "id": uuid.uuid4(),
            "referrer_id": referrer_id,
            "request_id": request_id,
            "points_earned": points,
            "points_type": points_type,
            "description": POINTS_DESCRIPTIONS[points_type],
            "awarded_at": self._clock.now(),
        }
        upsert_insert = upsert_insert_for(session)
        if upsert_insert is not None:
            stmt = (
                upsert_insert(ReferralReward.__table__)
                .values(**values)
                .on_conflict_do_nothing(
                    index_elements=["referrer_id", "request_id", "points_type"]
                )
            )
            result = await session.execute(stmt)
            return result.rowcount == 1

        try:
            async with session.begin_nested():
                session.add(ReferralReward(**values))
                await session.flush()
        except IntegrityError:
            return False
        return True

    async def _add_to_total(
        self, session: AsyncSession, referrer_id: uuid.UUID, points: int
    ) -> None:
        now = self._clock.now()
        upsert_insert = upsert_insert_for(session)
        if upsert_insert is not None:
            table = ReferrerPoints.__table__
            stmt = upsert_insert(table).values(
                id=uuid.uuid4(),
                referrer_id=referrer_id,
                points_balance=points,
                lifetime_points=points,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["referrer_id"],
                set_={
                    "points_balance": table.c.points_balance + stmt.excluded.points_balance,
                    "lifetime_points": table.c.lifetime_points
                    + stmt.excluded.lifetime_points,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            return

        stmt_select = (
            select(ReferrerPoints)
            .where(ReferrerPoints.referrer_id == referrer_id)
            .with_for_update()
        )
        totals = (await session.execute(stmt_select)).scalar_one_or_none()
        if totals is None:
            session.add(
                ReferrerPoints(
                    referrer_id=referrer_id,
                    points_balance=points,
                    lifetime_points=points,
                    updated_at=now,
                )
            )
        else:
            totals.points_balance += points
            totals.lifetime_points += points
            totals.updated_at = now
        await session.flush()
