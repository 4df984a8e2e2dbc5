from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.api.dependencies.users import require_admin
from referral_market.api.errors import to_http_exception
from referral_market.api.schemas.admin import (
    ExpirationRunRequest,
    ExpirationRunStatsResponse,
    ExpirationSummaryResponse,
    PricingSettingsResponse,
    SignupBonusRequest,
    SignupBonusResponse,
    StatsRecomputeResponse,
    WithdrawalDecision,
)
from referral_market.api.schemas.wallet import WithdrawalResponse
from referral_market.core.config import Settings, get_settings
from referral_market.core.exceptions import MarketplaceError
from referral_market.db.dependencies import get_db_session, get_db_session_factory
from referral_market.db.pagination import PaginatedResponse, PaginationParams
from referral_market.directory.service import SqlOrganizationDirectory
from referral_market.expiration.enums import ExpirationTrigger
from referral_market.expiration.service import ExpirationSweeper
from referral_market.pricing.dependencies import get_pricing_resolver
from referral_market.pricing.service import PricingResolver
from referral_market.referrals.dependencies import get_referral_engine
from referral_market.referrals.service import ReferralRequestEngine
from referral_market.stats.service import ReferrerStatsTracker
from referral_market.wallets.dependencies import get_wallet_ledger, get_withdrawal_desk
from referral_market.wallets.enums import WithdrawalStatus
from referral_market.wallets.service import WalletLedger
from referral_market.wallets.withdrawals import WithdrawalDesk

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])
logger = structlog.get_logger(__name__)

WithdrawalPage = PaginatedResponse[WithdrawalResponse]


def get_expiration_sweeper(
    settings: Settings = Depends(get_settings),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> ExpirationSweeper:
    return ExpirationSweeper(session_factory, engine, settings=settings)


@router.post(
    "/referrals/expire",
    response_model=ExpirationSummaryResponse,
    summary="Expire stale referral requests now",
)
async def run_expiration(
    payload: ExpirationRunRequest,
    admin_id: uuid.UUID = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
) -> ExpirationSummaryResponse:
    logger.info("admin_expiration_requested", admin_id=str(admin_id))
    summary = await sweeper.run(
        days_old=payload.days_old,
        batch_size=payload.batch_size,
        trigger=ExpirationTrigger.MANUAL,
    )
    return ExpirationSummaryResponse.model_validate(summary)


@router.get(
    "/referrals/expiration-stats",
    response_model=ExpirationRunStatsResponse,
    summary="Aggregated expiration runs",
)
async def get_expiration_stats(
    days: int = Query(default=30, ge=1, le=365),
    session: AsyncSession = Depends(get_db_session),
    _: uuid.UUID = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
) -> ExpirationRunStatsResponse:
    stats = await sweeper.get_run_stats(session, days=days)
    return ExpirationRunStatsResponse.model_validate(stats)


@router.post(
    "/referrer-stats/{organization_id}/recompute",
    response_model=StatsRecomputeResponse,
    summary="Rebuild pending counters for an organization",
)
async def recompute_referrer_stats(
    organization_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    _: uuid.UUID = Depends(require_admin),
) -> StatsRecomputeResponse:
    tracker = ReferrerStatsTracker(directory=SqlOrganizationDirectory())
    try:
        updated = await tracker.recompute(session, organization_id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return StatsRecomputeResponse(
        organization_id=organization_id, referrers_updated=updated
    )


@router.get(
    "/pricing",
    response_model=PricingSettingsResponse,
    summary="Effective pricing settings",
)
async def get_pricing_settings(
    session: AsyncSession = Depends(get_db_session),
    _: uuid.UUID = Depends(require_admin),
    pricing: PricingResolver = Depends(get_pricing_resolver),
) -> PricingSettingsResponse:
    return PricingSettingsResponse(settings=await pricing.get_all_settings(session))


@router.post(
    "/pricing/invalidate",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Drop cached pricing settings",
)
async def invalidate_pricing_cache(
    admin_id: uuid.UUID = Depends(require_admin),
    pricing: PricingResolver = Depends(get_pricing_resolver),
) -> None:
    pricing.invalidate()
    logger.info("admin_pricing_cache_invalidated", admin_id=str(admin_id))


@router.get(
    "/withdrawals",
    response_model=WithdrawalPage,
    summary="Withdrawals awaiting or past review",
)
async def list_all_withdrawals(
    pagination: PaginationParams = Depends(),
    withdrawal_status: WithdrawalStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    _: uuid.UUID = Depends(require_admin),
    desk: WithdrawalDesk = Depends(get_withdrawal_desk),
) -> WithdrawalPage:
    items, total = await desk.list_withdrawals(
        session, pagination, status=withdrawal_status
    )
    return WithdrawalPage.build(
        [WithdrawalResponse.model_validate(item) for item in items], total, pagination
    )


@router.post(
    "/withdrawals/{withdrawal_id}/process",
    response_model=WithdrawalResponse,
    summary="Approve or reject a pending withdrawal",
)
async def process_withdrawal(
    withdrawal_id: uuid.UUID,
    payload: WithdrawalDecision,
    session: AsyncSession = Depends(get_db_session),
    admin_id: uuid.UUID = Depends(require_admin),
    desk: WithdrawalDesk = Depends(get_withdrawal_desk),
) -> WithdrawalResponse:
    try:
        withdrawal = await desk.process_withdrawal(
            session,
            withdrawal_id,
            approve=payload.action == "approve",
            admin_id=admin_id,
            payment_reference=payload.payment_reference,
            rejection_reason=payload.rejection_reason,
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return WithdrawalResponse.model_validate(withdrawal)


@router.post(
    "/referral-signup-bonuses",
    response_model=SignupBonusResponse,
    summary="Credit the invite bonus to a new user and their referrer",
)
async def grant_referral_signup_bonus(
    payload: SignupBonusRequest,
    session: AsyncSession = Depends(get_db_session),
    admin_id: uuid.UUID = Depends(require_admin),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> SignupBonusResponse:
    try:
        grant = await ledger.grant_referral_signup_bonus(
            session, payload.new_user_id, payload.referrer_id
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc

    logger.info(
        "admin_referral_signup_bonus",
        admin_id=str(admin_id),
        new_user_id=str(payload.new_user_id),
        granted=grant is not None,
    )
    if grant is None:
        return SignupBonusResponse(granted=False)
    return SignupBonusResponse(
        granted=True,
        amount=grant.amount,
        new_user_transaction_id=grant.new_user_entry.id,
        referrer_transaction_id=grant.referrer_entry.id,
    )
