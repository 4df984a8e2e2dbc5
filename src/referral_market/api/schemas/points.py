from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from referral_market.points.enums import PointsType


class PointsBalanceResponse(BaseModel):
    referrer_id: uuid.UUID
    points_balance: int
    conversion_rate: Decimal
    convertible_amount: Decimal


class PointsHistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    points: int
    points_type: PointsType
    description: str
    request_id: uuid.UUID | None
    awarded_at: dt.datetime


class PointsHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referrer_id: uuid.UUID
    balance: int
    lifetime_points: int
    entries: list[PointsHistoryEntryResponse]


class PointsConversionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    points: int
    amount: Decimal
    transaction_id: uuid.UUID
