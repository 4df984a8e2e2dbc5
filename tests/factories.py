"""Helpers that seed directory rows, requests and wallets, each in its own transaction."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.db.session import session_scope
from referral_market.directory.enums import JobStatus
from referral_market.directory.models import Employment, Job, Organization
from referral_market.pricing.enums import ReferralTier
from referral_market.referrals.enums import ReferralStatus
from referral_market.referrals.models import ReferralRequest
from referral_market.wallets.enums import TransactionSource
from referral_market.wallets.service import WalletLedger


async def create_organization(
    factory: async_sessionmaker[AsyncSession],
    name: str = "Acme Corp",
    tier: ReferralTier = ReferralTier.STANDARD,
) -> uuid.UUID:
    async with session_scope(factory) as session:
        organization = Organization(name=name, tier=tier)
        session.add(organization)
        await session.flush()
        return organization.id


async def create_job(
    factory: async_sessionmaker[AsyncSession],
    organization_id: uuid.UUID,
    *,
    title: str = "Backend Engineer",
    status: JobStatus = JobStatus.PUBLISHED,
) -> uuid.UUID:
    async with session_scope(factory) as session:
        job = Job(organization_id=organization_id, title=title, status=status)
        session.add(job)
        await session.flush()
        return job.id


async def employ(
    factory: async_sessionmaker[AsyncSession],
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    *,
    is_current: bool = True,
    open_to_refer: bool = True,
) -> None:
    async with session_scope(factory) as session:
        session.add(
            Employment(
                user_id=user_id,
                organization_id=organization_id,
                is_current=is_current,
                open_to_refer=open_to_refer,
            )
        )


async def fund_wallet(
    factory: async_sessionmaker[AsyncSession],
    ledger: WalletLedger,
    owner_id: uuid.UUID,
    amount: Decimal | str,
) -> None:
    async with session_scope(factory) as session:
        await ledger.get_or_create_wallet(session, owner_id)
        await ledger.credit_bonus(
            session,
            owner_id,
            Decimal(amount),
            source=TransactionSource.ADMIN_BONUS,
            description="Test funding",
        )


async def create_referral_request(
    factory: async_sessionmaker[AsyncSession],
    requester_id: uuid.UUID,
    organization_id: uuid.UUID,
    *,
    status: ReferralStatus = ReferralStatus.PENDING,
    cost: Decimal | str = "49.00",
) -> uuid.UUID:
    """Insert a bare external-target request row, bypassing the engine."""

    async with session_scope(factory) as session:
        request = ReferralRequest(
            requester_id=requester_id,
            resume_id=uuid.uuid4(),
            ext_job_id=f"ext-{uuid.uuid4().hex}",
            job_title="Platform Engineer",
            company_name="Acme Corp",
            organization_id=organization_id,
            status=status,
            tier=ReferralTier.STANDARD,
            cost=Decimal(cost),
        )
        session.add(request)
        await session.flush()
        return request.id
