from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from referral_market.pricing.enums import ReferralTier
from referral_market.referrals.enums import ActorRole, ReferralStatus
from referral_market.referrals.service import (
    ProofSubmission,
    ReferralTarget,
    build_target,
)


class ReferralRequestCreate(BaseModel):
    """Request model for opening a referral request.

    Exactly one of ``job_id`` and ``ext_job_id`` must be provided; external
    jobs also need ``job_title`` and ``company_name``.
    """

    job_id: uuid.UUID | None = Field(None, description="Internal job identifier")
    ext_job_id: str | None = Field(None, max_length=128, description="External job id")
    job_title: str | None = Field(None, max_length=200)
    company_name: str | None = Field(None, max_length=200)
    organization_id: uuid.UUID | None = Field(
        None, description="Known organization for an external job"
    )
    resume_id: uuid.UUID = Field(..., description="Resume shared with the referrer")
    message: str | None = Field(None, max_length=1000)

    def to_target(self) -> ReferralTarget:
        return build_target(
            job_id=self.job_id,
            ext_job_id=self.ext_job_id,
            job_title=self.job_title,
            company_name=self.company_name,
            organization_id=self.organization_id,
        )


class ProofPayload(BaseModel):
    file_url: str = Field(..., min_length=1, max_length=1024)
    file_type: str | None = Field(None, max_length=64)
    description: str | None = Field(None, max_length=1000)

    def to_domain(self) -> ProofSubmission:
        return ProofSubmission(
            file_url=self.file_url,
            file_type=self.file_type,
            description=self.description,
        )


class VerifyPayload(BaseModel):
    verified: bool = Field(..., description="Whether the referral actually happened")


class ReferralRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requester_id: uuid.UUID
    resume_id: uuid.UUID
    job_id: uuid.UUID | None
    ext_job_id: str | None
    is_external: bool
    job_title: str | None
    company_name: str | None
    organization_id: uuid.UUID
    status: ReferralStatus
    tier: ReferralTier
    cost: Decimal
    message: str | None
    requested_at: dt.datetime
    assigned_referrer_id: uuid.UUID | None
    claimed_at: dt.datetime | None
    referred_at: dt.datetime | None
    verified: bool | None
    verified_at: dt.datetime | None
    resolved_at: dt.datetime | None


class StatusHistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: ReferralStatus | None
    to_status: ReferralStatus
    changed_by: uuid.UUID | None
    changed_by_role: ActorRole
    reason: str | None
    created_at: dt.datetime


class CloseOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: uuid.UUID
    status: ReferralStatus
    hold_released: bool
    amount_released: Decimal


class ReferralAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_requests_made: int
    total_requests_received: int
    completed_referrals: int
    pending_requests: int
    total_points_earned: int
    daily_quota_used: int
    daily_quota_limit: int
