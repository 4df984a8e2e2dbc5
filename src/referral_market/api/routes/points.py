from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.api.dependencies.users import get_current_user_id
from referral_market.api.errors import to_http_exception
from referral_market.api.schemas.points import (
    PointsBalanceResponse,
    PointsConversionResponse,
    PointsHistoryResponse,
)
from referral_market.core.config import Settings, get_settings
from referral_market.core.exceptions import MarketplaceError
from referral_market.db.dependencies import get_db_session
from referral_market.db.types import quantize_money
from referral_market.points.dependencies import get_points_awarder
from referral_market.points.service import PointsAwarder

router = APIRouter(prefix="/api/v1/points", tags=["points"])


@router.get("", response_model=PointsBalanceResponse, summary="Convertible points")
async def get_points_balance(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    awarder: PointsAwarder = Depends(get_points_awarder),
    settings: Settings = Depends(get_settings),
) -> PointsBalanceResponse:
    points = await awarder.get_balance(session, current_user_id)
    rate = settings.points.conversion_rate
    return PointsBalanceResponse(
        referrer_id=current_user_id,
        points_balance=points,
        conversion_rate=rate,
        convertible_amount=quantize_money(points * rate),
    )


@router.get(
    "/history", response_model=PointsHistoryResponse, summary="Points history"
)
async def get_points_history(
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    awarder: PointsAwarder = Depends(get_points_awarder),
) -> PointsHistoryResponse:
    history = await awarder.get_points_history(session, current_user_id, limit=limit)
    return PointsHistoryResponse.model_validate(history)


@router.post(
    "/convert",
    response_model=PointsConversionResponse,
    summary="Convert all points into wallet balance",
)
async def convert_points(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    awarder: PointsAwarder = Depends(get_points_awarder),
) -> PointsConversionResponse:
    try:
        conversion = await awarder.convert_points_to_wallet(session, current_user_id)
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return PointsConversionResponse.model_validate(conversion)
