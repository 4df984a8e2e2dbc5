from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.db.pagination import PaginationParams, paginate_query
from referral_market.directory.service import (
    OrganizationDirectory,
    OrganizationInfo,
    SqlOrganizationDirectory,
)
from referral_market.observability import metrics_service
from referral_market.points.enums import PointsType
from referral_market.points.models import ReferrerPoints
from referral_market.points.service import PointsAwarder
from referral_market.pricing.enums import ItemKind
from referral_market.pricing.service import PricingResolver
from referral_market.stats.service import ReferrerStatsTracker
from referral_market.wallets.enums import TransactionSource
from referral_market.wallets.service import WalletLedger

from .enums import (
    NON_TERMINAL_STATUSES,
    OPEN_STATUSES,
    ActorRole,
    ReferralEvent,
    ReferralStatus,
)
from .exceptions import (
    DailyLimitExceededError,
    DuplicateProofError,
    DuplicateRequestError,
    IllegalStateError,
    InvalidTargetError,
    InvalidTransitionError,
    JobNotFoundError,
    JobNotOpenError,
    NotAssignedReferrerError,
    NotRequestOwnerError,
    ReferralRequestNotFoundError,
    ReferrerNotEligibleError,
    RequestNoLongerAvailableError,
    RequestNotExpirableError,
    SelfReferralError,
    UnknownOrganizationError,
)
from .models import ReferralProof, ReferralRequest, ReferralStatusHistory
from .notifications import LoggingReferralNotifier, ReferralNotifier

SYSTEM_ACTOR_NAME = "Automated Expiration"


@dataclass(slots=True, frozen=True)
class InternalJobTarget:
    """A job listed on the platform."""

    job_id: uuid.UUID


@dataclass(slots=True, frozen=True)
class ExternalJobTarget:
    """A job found elsewhere, described by the seeker."""

    ext_job_id: str
    job_title: str
    company_name: str
    organization_id: uuid.UUID | None = None


ReferralTarget = InternalJobTarget | ExternalJobTarget


def build_target(
    *,
    job_id: uuid.UUID | None = None,
    ext_job_id: str | None = None,
    job_title: str | None = None,
    company_name: str | None = None,
    organization_id: uuid.UUID | None = None,
) -> ReferralTarget:
    """Exactly one of ``job_id`` and ``ext_job_id`` must be given."""
    ext_job_id = (ext_job_id or "").strip()
    if (job_id is None) == (not ext_job_id):
        raise InvalidTargetError(
            "Provide either an internal job id or an external job, not both or neither"
        )
    if job_id is not None:
        return InternalJobTarget(job_id=job_id)

    if not (job_title and job_title.strip()) or not (company_name and company_name.strip()):
        raise InvalidTargetError("External jobs require a job title and company name")
    return ExternalJobTarget(
        ext_job_id=ext_job_id,
        job_title=job_title.strip(),
        company_name=company_name.strip(),
        organization_id=organization_id,
    )


@dataclass(slots=True, frozen=True)
class ProofSubmission:
    file_url: str
    file_type: str | None = None
    description: str | None = None


@dataclass(slots=True)
class CloseOutcome:
    """Result of cancelling or expiring a request."""

    request_id: uuid.UUID
    status: ReferralStatus
    hold_released: bool
    amount_released: Decimal


@dataclass(slots=True)
class ReferralAnalytics:
    total_requests_made: int
    total_requests_received: int
    completed_referrals: int
    pending_requests: int
    total_points_earned: int
    daily_quota_used: int
    daily_quota_limit: int


@dataclass(slots=True)
class _ResolvedTarget:
    organization: OrganizationInfo
    job_id: uuid.UUID | None = None
    ext_job_id: str | None = None
    job_title: str | None = None
    company_name: str | None = None


class ReferralRequestEngine:
    """State machine for referral requests, coupled to the wallet ledger.

    ``create_request`` reserves the fee with a hold, completion converts it to
    a debit and pays the referrer, and cancellation or expiry releases it.
    Points, stats and notifications are side effects whose failures are
    logged and never undo the transition.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        ledger: WalletLedger | None = None,
        pricing: PricingResolver | None = None,
        points: PointsAwarder | None = None,
        stats: ReferrerStatsTracker | None = None,
        directory: OrganizationDirectory | None = None,
        notifier: ReferralNotifier | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._pricing = pricing or PricingResolver(settings=self._settings, clock=clock)
        self._ledger = ledger or WalletLedger(
            settings=self._settings, pricing=self._pricing, clock=clock
        )
        self._points = points or PointsAwarder(
            settings=self._settings, ledger=self._ledger, clock=clock
        )
        self._directory = directory or SqlOrganizationDirectory()
        self._stats = stats or ReferrerStatsTracker(directory=self._directory, clock=clock)
        self._notifier = notifier or LoggingReferralNotifier()
        self._logger = structlog.get_logger(__name__)

    async def create_request(
        self,
        session: AsyncSession,
        seeker_id: uuid.UUID,
        target: ReferralTarget,
        *,
        resume_id: uuid.UUID,
        message: str | None = None,
    ) -> ReferralRequest:
        """Open a request and reserve its fee from the seeker's wallet."""
        now = self._clock.now()
        resolved = await self._resolve_target(session, target)
        await self._ensure_within_daily_limit(session, seeker_id, now)
        await self._ensure_not_duplicate(session, seeker_id, resolved)

        organization = resolved.organization
        cost = await self._pricing.get_cost(
            session, organization.tier, ItemKind.REFERRAL_REQUEST
        )
        request_id = uuid.uuid4()
        await self._ledger.place_hold(
            session,
            seeker_id,
            cost,
            reference_id=request_id,
            reason=f"Referral request at {organization.name}",
        )

        try:
            async with session.begin_nested():
                request = ReferralRequest(
                    id=request_id,
                    requester_id=seeker_id,
                    resume_id=resume_id,
                    job_id=resolved.job_id,
                    ext_job_id=resolved.ext_job_id,
                    job_title=resolved.job_title,
                    company_name=resolved.company_name,
                    organization_id=organization.id,
                    status=ReferralStatus.PENDING,
                    tier=organization.tier,
                    cost=cost,
                    message=message,
                    requested_at=now,
                    created_at=now,
                    updated_at=now,
                )
                session.add(request)
                await session.flush()
        except IntegrityError as exc:
            # A concurrent create for the same target won the open-request index.
            self._logger.warning(
                "referral_request_duplicate_insert",
                request_id=str(request_id),
                seeker_id=str(seeker_id),
            )
            await self._ledger.release_hold(session, request_id)
            raise DuplicateRequestError(
                "An open referral request already exists for this job"
            ) from exc
        except Exception:
            self._logger.exception(
                "referral_request_insert_failed",
                request_id=str(request_id),
                seeker_id=str(seeker_id),
            )
            await self._ledger.release_hold(session, request_id)
            raise

        await self._add_history(
            session, request, None, ReferralStatus.PENDING, seeker_id, ActorRole.SEEKER,
            "Request created",
        )
        await session.flush()
        await self._adjust_stats(session, organization.id, increment=True)

        self._logger.info(
            "referral_request_created",
            request_id=str(request.id),
            seeker_id=str(seeker_id),
            organization_id=str(organization.id),
            tier=organization.tier.value,
            cost=str(cost),
        )
        recipients = await self._directory.eligible_referrers(session, organization.id)
        await self._notify(
            ReferralEvent.REQUEST_CREATED,
            request,
            [referrer for referrer in recipients if referrer != seeker_id],
        )
        return request

    async def claim_request(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        request_id: uuid.UUID,
    ) -> ReferralRequest:
        request = await self.get_request(session, request_id)
        if request.status is not ReferralStatus.PENDING:
            metrics_service.record_claim_conflict()
            raise RequestNoLongerAvailableError(
                "Request is no longer available", status=request.status.value
            )
        await self._ensure_can_refer(session, request, referrer_id)

        now = self._clock.now()
        await self._transition(
            session,
            request,
            ReferralStatus.PENDING,
            ReferralStatus.CLAIMED,
            assigned_referrer_id=referrer_id,
            claimed_at=now,
            updated_at=now,
        )
        await self._add_history(
            session, request, ReferralStatus.PENDING, ReferralStatus.CLAIMED,
            referrer_id, ActorRole.REFERRER, "Claimed by referrer",
        )
        await session.flush()

        self._logger.info(
            "referral_request_claimed",
            request_id=str(request.id),
            referrer_id=str(referrer_id),
        )
        await self._notify(ReferralEvent.REQUEST_CLAIMED, request, [request.requester_id])
        return request

    async def claim_with_proof(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        request_id: uuid.UUID,
        proof: ProofSubmission,
    ) -> ReferralRequest:
        """Claim a pending request and complete it in one step."""
        request = await self.get_request(session, request_id)
        if request.status is not ReferralStatus.PENDING:
            metrics_service.record_claim_conflict()
            raise RequestNoLongerAvailableError(
                "Request is no longer available", status=request.status.value
            )
        await self._ensure_can_refer(session, request, referrer_id)
        await self._complete(session, request, referrer_id, proof, ReferralStatus.PENDING)
        return request

    async def submit_proof(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        request_id: uuid.UUID,
        proof: ProofSubmission,
    ) -> ReferralRequest:
        request = await self.get_request(session, request_id)
        self._ensure_not_terminal(request)
        if request.status is not ReferralStatus.CLAIMED:
            raise IllegalStateError(
                "Proof can only be submitted for claimed requests",
                status=request.status.value,
            )
        if request.assigned_referrer_id != referrer_id:
            raise NotAssignedReferrerError("Only the assigned referrer can submit proof")

        await self._complete(session, request, referrer_id, proof, ReferralStatus.CLAIMED)
        return request

    async def verify(
        self,
        session: AsyncSession,
        seeker_id: uuid.UUID,
        request_id: uuid.UUID,
        verified: bool,
    ) -> ReferralRequest:
        """Seeker confirms (or denies) that the referral happened."""
        request = await self.get_request(session, request_id)
        self._ensure_not_terminal(request)
        if request.requester_id != seeker_id:
            raise NotRequestOwnerError("Only the requester can verify a referral")
        if request.status is not ReferralStatus.COMPLETED:
            raise IllegalStateError(
                "Only completed requests can be verified", status=request.status.value
            )

        now = self._clock.now()
        if not verified:
            request.verified = False
            request.verified_at = now
            request.updated_at = now
            await session.flush()
            self._logger.info(
                "referral_request_verification_declined",
                request_id=str(request.id),
                seeker_id=str(seeker_id),
            )
            return request

        await self._transition(
            session,
            request,
            ReferralStatus.COMPLETED,
            ReferralStatus.VERIFIED,
            verified=True,
            verified_at=now,
            resolved_at=now,
            updated_at=now,
        )
        await self._add_history(
            session, request, ReferralStatus.COMPLETED, ReferralStatus.VERIFIED,
            seeker_id, ActorRole.SEEKER, "Verified by job seeker",
        )
        await session.flush()

        if request.assigned_referrer_id is not None:
            await self._points.award_points(
                session,
                request.assigned_referrer_id,
                request.id,
                self._settings.referrals.verification_points,
                PointsType.VERIFICATION,
            )

        self._logger.info(
            "referral_request_verified",
            request_id=str(request.id),
            seeker_id=str(seeker_id),
        )
        recipients = [request.assigned_referrer_id] if request.assigned_referrer_id else []
        await self._notify(ReferralEvent.REQUEST_VERIFIED, request, recipients)
        return request

    async def cancel(
        self,
        session: AsyncSession,
        seeker_id: uuid.UUID,
        request_id: uuid.UUID,
    ) -> CloseOutcome:
        request = await self.get_request(session, request_id)
        self._ensure_not_terminal(request)
        if request.requester_id != seeker_id:
            raise NotRequestOwnerError("Only the requester can cancel a request")
        if request.status is not ReferralStatus.PENDING:
            raise IllegalStateError(
                "Only pending requests can be cancelled", status=request.status.value
            )

        now = self._clock.now()
        await self._transition(
            session,
            request,
            ReferralStatus.PENDING,
            ReferralStatus.CANCELLED,
            resolved_at=now,
            updated_at=now,
        )
        release = await self._ledger.release_hold(session, request.id)
        await self._add_history(
            session, request, ReferralStatus.PENDING, ReferralStatus.CANCELLED,
            seeker_id, ActorRole.SEEKER, "Cancelled by job seeker",
        )
        await session.flush()
        await self._adjust_stats(session, request.organization_id, increment=False)

        self._logger.info(
            "referral_request_cancelled",
            request_id=str(request.id),
            seeker_id=str(seeker_id),
            amount_released=str(release.amount),
        )
        await self._notify(ReferralEvent.REQUEST_CANCELLED, request, [request.requester_id])
        return CloseOutcome(
            request_id=request.id,
            status=request.status,
            hold_released=release.released,
            amount_released=release.amount,
        )

    async def expire(
        self,
        session: AsyncSession,
        request_id: uuid.UUID,
        *,
        days_old: int | None = None,
        reason: str | None = None,
    ) -> CloseOutcome:
        """System transition for stale requests; releases any outstanding hold."""
        threshold = days_old if days_old is not None else self._settings.referrals.expiration_days
        request = await self.get_request(session, request_id)
        self._ensure_not_terminal(request)

        now = self._clock.now()
        if now - request.requested_at < dt.timedelta(days=threshold):
            raise RequestNotExpirableError(
                f"Request is younger than {threshold} days",
                requested_at=request.requested_at.isoformat(),
            )

        from_status = request.status
        await self._transition(
            session,
            request,
            from_status,
            ReferralStatus.EXPIRED,
            resolved_at=now,
            updated_at=now,
        )
        release = await self._ledger.release_hold(session, request.id)
        await self._add_history(
            session, request, from_status, ReferralStatus.EXPIRED, None, ActorRole.SYSTEM,
            reason or f"{SYSTEM_ACTOR_NAME}: auto-expired after {threshold} days with no referral",
        )
        await session.flush()
        if from_status in OPEN_STATUSES:
            await self._adjust_stats(session, request.organization_id, increment=False)

        self._logger.info(
            "referral_request_expired",
            request_id=str(request.id),
            from_status=from_status.value,
            hold_released=release.released,
            amount_released=str(release.amount),
        )
        await self._notify(ReferralEvent.REQUEST_EXPIRED, request, [request.requester_id])
        return CloseOutcome(
            request_id=request.id,
            status=request.status,
            hold_released=release.released,
            amount_released=release.amount,
        )

    async def get_request(
        self, session: AsyncSession, request_id: uuid.UUID
    ) -> ReferralRequest:
        stmt = (
            select(ReferralRequest)
            .where(ReferralRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = (await session.execute(stmt)).scalar_one_or_none()
        if request is None:
            raise ReferralRequestNotFoundError(
                "Referral request not found", request_id=str(request_id)
            )
        return request

    async def can_view(
        self, session: AsyncSession, request: ReferralRequest, user_id: uuid.UUID
    ) -> bool:
        """Seeker, assigned referrer, or a current employee of the organization."""
        if user_id in (request.requester_id, request.assigned_referrer_id):
            return True
        return await self._directory.is_current_employee(
            session, user_id, request.organization_id
        )

    async def list_seeker_requests(
        self,
        session: AsyncSession,
        seeker_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: ReferralStatus | None = None,
    ) -> tuple[list[ReferralRequest], int]:
        stmt = select(ReferralRequest).where(ReferralRequest.requester_id == seeker_id)
        return await self._paginate(session, stmt, pagination, status)

    async def list_referrer_requests(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: ReferralStatus | None = None,
    ) -> tuple[list[ReferralRequest], int]:
        stmt = select(ReferralRequest).where(
            ReferralRequest.assigned_referrer_id == referrer_id
        )
        return await self._paginate(session, stmt, pagination, status)

    async def list_available_requests(
        self,
        session: AsyncSession,
        referrer_id: uuid.UUID,
        pagination: PaginationParams,
    ) -> tuple[list[ReferralRequest], int]:
        """Pending requests at the referrer's current organizations, excluding their own."""
        organizations = await self._directory.current_organizations(session, referrer_id)
        if not organizations:
            return [], 0
        stmt = select(ReferralRequest).where(
            ReferralRequest.organization_id.in_(organizations),
            ReferralRequest.requester_id != referrer_id,
        )
        return await self._paginate(session, stmt, pagination, ReferralStatus.PENDING)

    async def get_status_history(
        self, session: AsyncSession, request_id: uuid.UUID
    ) -> list[ReferralStatusHistory]:
        stmt = (
            select(ReferralStatusHistory)
            .where(ReferralStatusHistory.request_id == request_id)
            .order_by(ReferralStatusHistory.sequence)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def get_analytics(
        self, session: AsyncSession, user_id: uuid.UUID
    ) -> ReferralAnalytics:
        made = await self._count(session, ReferralRequest.requester_id == user_id)
        received = await self._count(session, ReferralRequest.assigned_referrer_id == user_id)
        completed = await self._count(
            session,
            ReferralRequest.assigned_referrer_id == user_id,
            ReferralRequest.status.in_([ReferralStatus.COMPLETED, ReferralStatus.VERIFIED]),
        )
        pending = await self._count(
            session,
            ReferralRequest.requester_id == user_id,
            ReferralRequest.status.in_(OPEN_STATUSES),
        )
        points_stmt = select(ReferrerPoints.lifetime_points).where(
            ReferrerPoints.referrer_id == user_id
        )
        total_points = (await session.execute(points_stmt)).scalar_one_or_none() or 0
        used_today = await self._count(
            session,
            ReferralRequest.requester_id == user_id,
            ReferralRequest.requested_at >= self._start_of_day(self._clock.now()),
        )
        return ReferralAnalytics(
            total_requests_made=made,
            total_requests_received=received,
            completed_referrals=completed,
            pending_requests=pending,
            total_points_earned=total_points,
            daily_quota_used=used_today,
            daily_quota_limit=self._settings.referrals.daily_request_limit,
        )

    async def _complete(
        self,
        session: AsyncSession,
        request: ReferralRequest,
        referrer_id: uuid.UUID,
        proof: ProofSubmission,
        from_status: ReferralStatus,
    ) -> None:
        if not proof.file_url or not proof.file_url.strip():
            raise IllegalStateError("Proof requires a file URL")

        now = self._clock.now()
        values: dict[str, Any] = {
            "referred_at": now,
            "updated_at": now,
        }
        if from_status is ReferralStatus.PENDING:
            values.update(assigned_referrer_id=referrer_id, claimed_at=now)
        await self._transition(
            session,
            request,
            from_status,
            ReferralStatus.COMPLETED,
            expected_referrer=referrer_id if from_status is ReferralStatus.CLAIMED else None,
            **values,
        )

        try:
            async with session.begin_nested():
                session.add(
                    ReferralProof(
                        request_id=request.id,
                        referrer_id=referrer_id,
                        file_url=proof.file_url.strip(),
                        file_type=proof.file_type,
                        description=proof.description,
                        submitted_at=now,
                    )
                )
                await session.flush()
        except IntegrityError as exc:
            raise DuplicateProofError("Proof already submitted for this request") from exc

        await self._ledger.finalize_hold(
            session,
            request.id,
            source=TransactionSource.REFERRAL_REQUEST,
            description=f"Referral request {request.id}",
        )
        payout = await self._pricing.get_payout(session, request.tier)
        if payout > 0:
            await self._ledger.credit_bonus(
                session,
                referrer_id,
                payout,
                source=TransactionSource.REFERRAL_PAYOUT,
                description=f"Referral payout for request {request.id}",
                reference=f"referral_payout:{request.id}",
            )

        await self._add_history(
            session, request, from_status, ReferralStatus.COMPLETED, referrer_id,
            ActorRole.REFERRER, "Proof submitted",
        )
        await session.flush()
        await self._adjust_stats(session, request.organization_id, increment=False)
        await self._award_completion_points(session, request, referrer_id, now)

        self._logger.info(
            "referral_request_completed",
            request_id=str(request.id),
            referrer_id=str(referrer_id),
            from_status=from_status.value,
            payout=str(payout),
        )
        await self._notify(ReferralEvent.REQUEST_COMPLETED, request, [request.requester_id])

    async def _award_completion_points(
        self,
        session: AsyncSession,
        request: ReferralRequest,
        referrer_id: uuid.UUID,
        completed_at: dt.datetime,
    ) -> None:
        referral_settings = self._settings.referrals
        await self._points.award_points(
            session,
            referrer_id,
            request.id,
            referral_settings.proof_submission_points,
            PointsType.PROOF_SUBMISSION,
        )
        quick_window = dt.timedelta(hours=referral_settings.quick_response_hours)
        if completed_at - request.requested_at <= quick_window:
            await self._points.award_points(
                session,
                referrer_id,
                request.id,
                referral_settings.quick_response_points,
                PointsType.QUICK_RESPONSE_BONUS,
            )

    async def _transition(
        self,
        session: AsyncSession,
        request: ReferralRequest,
        from_status: ReferralStatus,
        to_status: ReferralStatus,
        *,
        expected_referrer: uuid.UUID | None = None,
        **values: Any,
    ) -> None:
        """Conditionally move ``request`` from ``from_status``; losers get a conflict."""
        conditions = [
            ReferralRequest.id == request.id,
            ReferralRequest.status == from_status,
        ]
        if expected_referrer is not None:
            conditions.append(ReferralRequest.assigned_referrer_id == expected_referrer)

        result = await session.execute(
            update(ReferralRequest)
            .where(*conditions)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if from_status is ReferralStatus.PENDING:
                metrics_service.record_claim_conflict()
                raise RequestNoLongerAvailableError(
                    "Request is no longer available", request_id=str(request.id)
                )
            raise InvalidTransitionError(
                "Request changed state concurrently",
                request_id=str(request.id),
                expected_status=from_status.value,
            )

        await session.refresh(request)
        metrics_service.record_transition(from_status.value, to_status.value)

    async def _add_history(
        self,
        session: AsyncSession,
        request: ReferralRequest,
        from_status: ReferralStatus | None,
        to_status: ReferralStatus,
        changed_by: uuid.UUID | None,
        role: ActorRole,
        reason: str | None,
    ) -> None:
        """Append the next numbered history row; numbering is gap free per request."""
        last_sequence = (
            await session.execute(
                select(func.coalesce(func.max(ReferralStatusHistory.sequence), 0)).where(
                    ReferralStatusHistory.request_id == request.id
                )
            )
        ).scalar_one()
        session.add(
            ReferralStatusHistory(
                request_id=request.id,
                sequence=last_sequence + 1,
                from_status=from_status,
                to_status=to_status,
                changed_by=changed_by,
                changed_by_role=role,
                reason=reason,
                created_at=self._clock.now(),
            )
        )
        if from_status is None:
            metrics_service.record_transition(None, to_status.value)

    async def _resolve_target(
        self, session: AsyncSession, target: ReferralTarget
    ) -> _ResolvedTarget:
        if isinstance(target, InternalJobTarget):
            job = await self._directory.get_job(session, target.job_id)
            if job is None:
                raise JobNotFoundError("Job not found", job_id=str(target.job_id))
            if not job.is_published:
                raise JobNotOpenError(
                    "Job is not accepting referrals", job_id=str(job.id)
                )
            return _ResolvedTarget(organization=job.organization, job_id=job.id)

        organization: OrganizationInfo | None = None
        if target.organization_id is not None:
            organization = await self._directory.get_organization(
                session, target.organization_id
            )
        if organization is None:
            organization = await self._directory.find_organization_by_name(
                session, target.company_name
            )
        if organization is None:
            raise UnknownOrganizationError(
                "Company is not registered for referrals",
                company_name=target.company_name,
            )
        return _ResolvedTarget(
            organization=organization,
            ext_job_id=target.ext_job_id,
            job_title=target.job_title,
            company_name=target.company_name,
        )

    async def _ensure_within_daily_limit(
        self, session: AsyncSession, seeker_id: uuid.UUID, now: dt.datetime
    ) -> None:
        limit = self._settings.referrals.daily_request_limit
        used = await self._count(
            session,
            ReferralRequest.requester_id == seeker_id,
            ReferralRequest.requested_at >= self._start_of_day(now),
        )
        if used >= limit:
            raise DailyLimitExceededError(
                f"Daily limit of {limit} referral requests reached", used=used, limit=limit
            )

    async def _ensure_not_duplicate(
        self, session: AsyncSession, seeker_id: uuid.UUID, resolved: _ResolvedTarget
    ) -> None:
        target_clause = (
            ReferralRequest.job_id == resolved.job_id
            if resolved.job_id is not None
            else (
                (ReferralRequest.ext_job_id == resolved.ext_job_id)
                & (ReferralRequest.organization_id == resolved.organization.id)
            )
        )
        stmt = (
            select(ReferralRequest.id)
            .where(
                ReferralRequest.requester_id == seeker_id,
                target_clause,
                ReferralRequest.status.in_(NON_TERMINAL_STATUSES),
            )
            .limit(1)
        )
        existing = (await session.execute(stmt)).scalar_one_or_none()
        if existing is not None:
            raise DuplicateRequestError(
                "An open referral request already exists for this job",
                request_id=str(existing),
            )

    async def _ensure_can_refer(
        self, session: AsyncSession, request: ReferralRequest, referrer_id: uuid.UUID
    ) -> None:
        if request.requester_id == referrer_id:
            raise SelfReferralError("Cannot refer your own request")
        if not await self._directory.is_current_employee(
            session, referrer_id, request.organization_id
        ):
            raise ReferrerNotEligibleError(
                "Referrer does not currently work at this organization",
                organization_id=str(request.organization_id),
            )

    @staticmethod
    def _ensure_not_terminal(request: ReferralRequest) -> None:
        if request.status.is_terminal:
            raise InvalidTransitionError(
                f"Request is already {request.status.value}",
                status=request.status.value,
            )

    async def _adjust_stats(
        self, session: AsyncSession, organization_id: uuid.UUID, *, increment: bool
    ) -> None:
        try:
            async with session.begin_nested():
                if increment:
                    await self._stats.increment_for_organization(session, organization_id)
                else:
                    await self._stats.decrement_for_organization(session, organization_id)
        except Exception:
            self._logger.exception(
                "referrer_stats_update_failed",
                organization_id=str(organization_id),
                increment=increment,
            )

    async def _notify(
        self,
        event: ReferralEvent,
        request: ReferralRequest,
        recipients: Sequence[uuid.UUID],
        context: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._notifier.notify(event, request, recipients, context or {})
        except Exception:
            self._logger.exception(
                "referral_notification_failed",
                notification_event=event.value,
                request_id=str(request.id),
            )

    async def _paginate(
        self,
        session: AsyncSession,
        stmt: Select[tuple[ReferralRequest]],
        pagination: PaginationParams,
        status: ReferralStatus | None,
    ) -> tuple[list[ReferralRequest], int]:
        if status is not None:
            stmt = stmt.where(ReferralRequest.status == status)
        stmt = stmt.order_by(ReferralRequest.requested_at.desc(), ReferralRequest.id)
        return await paginate_query(session, stmt, pagination)

    @staticmethod
    async def _count(session: AsyncSession, *conditions: Any) -> int:
        stmt = select(func.count(ReferralRequest.id)).where(*conditions)
        return (await session.execute(stmt)).scalar() or 0

    @staticmethod
    def _start_of_day(now: dt.datetime) -> dt.datetime:
        return now.astimezone(dt.UTC).replace(hour=0, minute=0, second=0, microsecond=0)
