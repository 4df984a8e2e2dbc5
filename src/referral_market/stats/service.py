from __future__ import annotations

import uuid

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.clock import Clock, system_clock
from referral_market.db.upsert import upsert_insert_for
from referral_market.directory.service import (
    OrganizationDirectory,
    SqlOrganizationDirectory,
)
from referral_market.referrals.enums import OPEN_STATUSES
from referral_market.referrals.models import ReferralRequest

from .models import ReferrerStats


class ReferrerStatsTracker:
    """Keeps per-referrer pending counters in step with open requests.

    Counters are advisory: increments and decrements may drift under failure,
    and ``recompute`` restores them from the request rows.
    """

    def __init__(
        self,
        *,
        directory: OrganizationDirectory | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._directory = directory or SqlOrganizationDirectory()
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    async def get(self, session: AsyncSession, referrer_id: uuid.UUID) -> int:
        stmt = select(ReferrerStats.pending_count).where(
            ReferrerStats.referrer_id == referrer_id
        )
        return (await session.execute(stmt)).scalar_one_or_none() or 0

    async def increment_for_organization(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> int:
        referrers = await self._directory.eligible_referrers(session, organization_id)
        for referrer_id in referrers:
            await self._upsert(session, referrer_id, delta=1)
        return len(referrers)

    async def decrement_for_organization(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> int:
        referrers = await self._directory.eligible_referrers(session, organization_id)
        if not referrers:
            return 0
        stmt = (
            update(ReferrerStats)
            .where(
                ReferrerStats.referrer_id.in_(referrers),
                ReferrerStats.pending_count > 0,
            )
            .values(
                pending_count=ReferrerStats.pending_count - 1,
                last_updated=self._clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        return len(referrers)

    async def recompute(self, session: AsyncSession, organization_id: uuid.UUID) -> int:
        """Reset counters of the organization's referrers from source rows.

        Covers current referrers plus anyone who has left or stopped referring
        there but still holds a counter, so their stale increments are cleared.
        """
        referrers = await self._directory.eligible_referrers(session, organization_id)
        lapsed = await self._directory.lapsed_referrers(session, organization_id)
        if lapsed:
            tracked_stmt = select(ReferrerStats.referrer_id).where(
                ReferrerStats.referrer_id.in_(lapsed)
            )
            referrers += list((await session.execute(tracked_stmt)).scalars().all())
        for referrer_id in referrers:
            await self.recompute_referrer(session, referrer_id)

        self._logger.info(
            "referrer_stats_recomputed",
            organization_id=str(organization_id),
            referrers=len(referrers),
        )
        return len(referrers)

    async def recompute_referrer(self, session: AsyncSession, referrer_id: uuid.UUID) -> int:
        organizations = await self._directory.current_organizations(
            session, referrer_id, open_to_refer_only=True
        )
        open_requests = 0
        if organizations:
            count_stmt = select(func.count(ReferralRequest.id)).where(
                ReferralRequest.organization_id.in_(organizations),
                ReferralRequest.status.in_(OPEN_STATUSES),
            )
            open_requests = (await session.execute(count_stmt)).scalar() or 0

        await self._upsert(session, referrer_id, value=open_requests)
        return open_requests

    async def _upsert(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        *,
        delta: int | None = None,
        value: int | None = None,
    ) -> None:
        now = self._clock.now()
        initial = value if value is not None else max(delta or 0, 0)
        upsert_insert = upsert_insert_for(session)
        if upsert_insert is not None:
            table = ReferrerStats.__table__
            stmt = upsert_insert(table).values(
                id=uuid.uuid4(),
                referrer_id=referrer_id,
                pending_count=initial,
                last_updated=now,
            )
            new_count = (
                stmt.excluded.pending_count
                if value is not None
                else table.c.pending_count + (delta or 0)
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["referrer_id"],
                set_={"pending_count": new_count, "last_updated": now},
            )
            await session.execute(stmt)
            return

        stats = (
            await session.execute(
                select(ReferrerStats)
                .where(ReferrerStats.referrer_id == referrer_id)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if stats is None:
            session.add(
                ReferrerStats(
                    referrer_id=referrer_id, pending_count=initial, last_updated=now
                )
            )
        else:
            stats.pending_count = (
                value if value is not None else max(stats.pending_count + (delta or 0), 0)
            )
            stats.last_updated = now
        await session.flush()
