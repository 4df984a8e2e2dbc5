from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.api.dependencies.users import get_current_user_id
from referral_market.api.errors import to_http_exception
from referral_market.api.schemas.referrals import (
    CloseOutcomeResponse,
    ProofPayload,
    ReferralAnalyticsResponse,
    ReferralRequestCreate,
    ReferralRequestResponse,
    StatusHistoryEntryResponse,
    VerifyPayload,
)
from referral_market.core.exceptions import MarketplaceError
from referral_market.db.dependencies import get_db_session
from referral_market.db.pagination import PaginatedResponse, PaginationParams
from referral_market.referrals.dependencies import get_referral_engine
from referral_market.referrals.enums import ReferralStatus
from referral_market.referrals.models import ReferralRequest
from referral_market.referrals.service import ReferralRequestEngine

router = APIRouter(prefix="/api/v1/referrals", tags=["referrals"])

ReferralRequestPage = PaginatedResponse[ReferralRequestResponse]


def _page(
    items: list[ReferralRequest], total: int, pagination: PaginationParams
) -> ReferralRequestPage:
    return ReferralRequestPage.build(
        [ReferralRequestResponse.model_validate(item) for item in items],
        total,
        pagination,
    )


@router.post(
    "/requests",
    response_model=ReferralRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a referral request and reserve its fee",
)
async def create_referral_request(
    payload: ReferralRequestCreate,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.create_request(
            session,
            current_user_id,
            payload.to_target(),
            resume_id=payload.resume_id,
            message=payload.message,
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return ReferralRequestResponse.model_validate(request)


@router.get(
    "/requests/mine",
    response_model=ReferralRequestPage,
    summary="Requests opened by the current user",
)
async def list_my_requests(
    pagination: PaginationParams = Depends(),
    status_filter: ReferralStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestPage:
    items, total = await engine.list_seeker_requests(
        session, current_user_id, pagination, status=status_filter
    )
    return _page(items, total, pagination)


@router.get(
    "/requests/assigned",
    response_model=ReferralRequestPage,
    summary="Requests claimed by the current user",
)
async def list_assigned_requests(
    pagination: PaginationParams = Depends(),
    status_filter: ReferralStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestPage:
    items, total = await engine.list_referrer_requests(
        session, current_user_id, pagination, status=status_filter
    )
    return _page(items, total, pagination)


@router.get(
    "/requests/available",
    response_model=ReferralRequestPage,
    summary="Pending requests the current user can claim",
)
async def list_available_requests(
    pagination: PaginationParams = Depends(),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestPage:
    items, total = await engine.list_available_requests(
        session, current_user_id, pagination
    )
    return _page(items, total, pagination)


@router.get(
    "/requests/{request_id}",
    response_model=ReferralRequestResponse,
    summary="Get a referral request",
)
async def get_referral_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.get_request(session, request_id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    if not await engine.can_view(session, request, current_user_id):
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, detail="Not allowed to view this request"
        )
    return ReferralRequestResponse.model_validate(request)


@router.get(
    "/requests/{request_id}/history",
    response_model=list[StatusHistoryEntryResponse],
    summary="Status changes of a referral request",
)
async def get_referral_request_history(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> list[StatusHistoryEntryResponse]:
    try:
        request = await engine.get_request(session, request_id)
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc
    if not await engine.can_view(session, request, current_user_id):
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, detail="Not allowed to view this request"
        )
    history = await engine.get_status_history(session, request_id)
    return [StatusHistoryEntryResponse.model_validate(entry) for entry in history]


@router.post(
    "/requests/{request_id}/claim",
    response_model=ReferralRequestResponse,
    summary="Claim a pending request",
)
async def claim_referral_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.claim_request(session, current_user_id, request_id)
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return ReferralRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/claim-with-proof",
    response_model=ReferralRequestResponse,
    summary="Claim a pending request and submit proof in one step",
)
async def claim_referral_request_with_proof(
    request_id: uuid.UUID,
    payload: ProofPayload,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.claim_with_proof(
            session, current_user_id, request_id, payload.to_domain()
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return ReferralRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/proof",
    response_model=ReferralRequestResponse,
    summary="Submit referral proof for a claimed request",
)
async def submit_referral_proof(
    request_id: uuid.UUID,
    payload: ProofPayload,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.submit_proof(
            session, current_user_id, request_id, payload.to_domain()
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return ReferralRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/verify",
    response_model=ReferralRequestResponse,
    summary="Confirm or deny that the referral happened",
)
async def verify_referral_request(
    request_id: uuid.UUID,
    payload: VerifyPayload,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralRequestResponse:
    try:
        request = await engine.verify(
            session, current_user_id, request_id, payload.verified
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return ReferralRequestResponse.model_validate(request)


@router.post(
    "/requests/{request_id}/cancel",
    response_model=CloseOutcomeResponse,
    summary="Cancel a pending request and release its hold",
)
async def cancel_referral_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> CloseOutcomeResponse:
    try:
        outcome = await engine.cancel(session, current_user_id, request_id)
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return CloseOutcomeResponse.model_validate(outcome)


@router.get(
    "/analytics",
    response_model=ReferralAnalyticsResponse,
    summary="Referral activity of the current user",
)
async def get_referral_analytics(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    engine: ReferralRequestEngine = Depends(get_referral_engine),
) -> ReferralAnalyticsResponse:
    analytics = await engine.get_analytics(session, current_user_id)
    return ReferralAnalyticsResponse.model_validate(analytics)
