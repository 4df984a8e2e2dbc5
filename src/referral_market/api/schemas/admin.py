from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ExpirationRunRequest(BaseModel):
    days_old: int | None = Field(None, ge=0, description="Minimum request age in days")
    batch_size: int | None = Field(None, ge=1, le=1000)


class ExpirationSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    execution_id: uuid.UUID
    found: int
    expired: int
    holds_released: int
    amount_released: Decimal
    expired_request_ids: list[uuid.UUID]
    errors: list[str]
    success: bool


class ExpirationRunStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    days: int
    total_runs: int
    successful_runs: int
    failed_runs: int
    total_expired: int
    total_holds_released: int
    total_amount_released: Decimal
    last_run_at: dt.datetime | None


class StatsRecomputeResponse(BaseModel):
    organization_id: uuid.UUID
    referrers_updated: int


class PricingSettingsResponse(BaseModel):
    settings: dict[str, dict[str, Decimal]]


class WithdrawalDecision(BaseModel):
    action: Literal["approve", "reject"]
    payment_reference: str | None = Field(None, max_length=128)
    rejection_reason: str | None = Field(None, max_length=500)


class SignupBonusRequest(BaseModel):
    new_user_id: uuid.UUID
    referrer_id: uuid.UUID


class SignupBonusResponse(BaseModel):
    granted: bool
    amount: Decimal | None = None
    new_user_transaction_id: uuid.UUID | None = None
    referrer_transaction_id: uuid.UUID | None = None
