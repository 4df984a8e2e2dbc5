from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.core.exceptions import InsufficientBalanceError
from referral_market.db.pagination import PaginationParams
from referral_market.db.session import session_scope
from referral_market.directory.enums import JobStatus
from referral_market.points.enums import PointsType
from referral_market.points.service import PointsAwarder
from referral_market.pricing.enums import ReferralTier
from referral_market.referrals.enums import ReferralEvent, ReferralStatus
from referral_market.referrals.exceptions import (
    DailyLimitExceededError,
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
from referral_market.referrals.models import ReferralRequest
from referral_market.referrals.service import (
    ExternalJobTarget,
    InternalJobTarget,
    ProofSubmission,
    ReferralRequestEngine,
    build_target,
)
from referral_market.wallets.enums import HoldStatus, TransactionSource
from referral_market.wallets.models import WalletHold

from .conftest import Market, World
from .factories import create_job, create_organization, employ, fund_wallet

PROOF = ProofSubmission(file_url="https://files.example.com/proof.png", file_type="image/png")


async def _create(
    factory: async_sessionmaker[AsyncSession],
    market: Market,
    seeker_id: uuid.UUID,
    target: InternalJobTarget | ExternalJobTarget,
) -> ReferralRequest:
    async with session_scope(factory) as session:
        return await market.engine.create_request(
            session, seeker_id, target, resume_id=uuid.uuid4(), message="Would love a referral"
        )


async def _count_rows(factory: async_sessionmaker[AsyncSession], model: Any) -> int:
    async with session_scope(factory) as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class _UncheckedDuplicatesEngine(ReferralRequestEngine):
    """Skips the read-side duplicate check, as a request racing another would."""

    async def _ensure_not_duplicate(self, *args: Any, **kwargs: Any) -> None:
        return None


class _FailingTotalsAwarder(PointsAwarder):
    async def _add_to_total(self, *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("points totals unavailable")


def _engine_for(
    market: Market,
    engine_cls: type[ReferralRequestEngine] = ReferralRequestEngine,
    *,
    points: PointsAwarder | None = None,
) -> ReferralRequestEngine:
    return engine_cls(
        settings=market.settings,
        ledger=market.ledger,
        pricing=market.pricing,
        points=points or market.points,
        stats=market.stats,
        directory=market.directory,
        notifier=market.notifier,
        clock=market.clock,
    )


class TestBuildTarget:
    def test_internal_job(self) -> None:
        job_id = uuid.uuid4()
        assert build_target(job_id=job_id) == InternalJobTarget(job_id=job_id)

    def test_external_job_is_trimmed(self) -> None:
        target = build_target(
            ext_job_id=" ext-42 ", job_title=" Data Engineer ", company_name=" Acme Corp "
        )
        assert target == ExternalJobTarget(
            ext_job_id="ext-42", job_title="Data Engineer", company_name="Acme Corp"
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"ext_job_id": "   "},
            {"job_id": uuid.uuid4(), "ext_job_id": "ext-1"},
            {"ext_job_id": "ext-1", "company_name": "Acme Corp"},
            {"ext_job_id": "ext-1", "job_title": "Engineer", "company_name": " "},
        ],
    )
    def test_rejects_invalid_combinations(self, kwargs: dict[str, Any]) -> None:
        with pytest.raises(InvalidTargetError):
            build_target(**kwargs)


class TestCreateRequest:
    async def test_reserves_fee_with_hold(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        assert request.status is ReferralStatus.PENDING
        assert request.cost == Decimal("49.00")
        assert request.tier is ReferralTier.STANDARD
        assert request.organization_id == world.organization_id

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, world.seeker_id)
            holds = await market.ledger.get_holds(session, world.seeker_id)
            history = await market.engine.get_status_history(session, request.id)
            referrer_pending = await market.stats.get(session, world.referrer_id)
            colleague_pending = await market.stats.get(session, world.colleague_id)

        assert balance.balance == Decimal("100.00")
        assert balance.available == Decimal("51.00")
        assert [(hold.reference_id, hold.amount) for hold in holds] == [
            (request.id, Decimal("49.00"))
        ]
        assert [(entry.from_status, entry.to_status) for entry in history] == [
            (None, ReferralStatus.PENDING)
        ]
        assert (referrer_pending, colleague_pending) == (1, 1)

        created = market.notifier.sent[0]
        assert created.event is ReferralEvent.REQUEST_CREATED
        assert sorted(created.recipients) == sorted([world.referrer_id, world.colleague_id])

    async def test_insufficient_balance_leaves_no_trace(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        poor_seeker = uuid.uuid4()
        await fund_wallet(session_factory, market.ledger, poor_seeker, "30")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _create(session_factory, market, poor_seeker, InternalJobTarget(world.job_id))

        assert exc_info.value.shortfall == Decimal("19.00")
        assert exc_info.value.available == Decimal("30.00")
        assert await _count_rows(session_factory, ReferralRequest) == 0
        assert await _count_rows(session_factory, WalletHold) == 0
        assert market.notifier.sent == []

    async def test_external_target_matches_organization_by_name(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        await create_organization(session_factory, "Globex", ReferralTier.ELITE)
        target = build_target(
            ext_job_id="globex-17", job_title="Staff Engineer", company_name="  GLOBEX "
        )

        request = await _create(session_factory, market, world.seeker_id, target)

        assert request.job_id is None
        assert request.ext_job_id == "globex-17"
        assert request.company_name == "GLOBEX"
        assert request.tier is ReferralTier.ELITE
        assert request.cost == Decimal("99.00")

    async def test_unknown_company_is_rejected(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        target = build_target(ext_job_id="x-1", job_title="Engineer", company_name="Initech")
        with pytest.raises(UnknownOrganizationError):
            await _create(session_factory, market, world.seeker_id, target)

    async def test_job_must_exist_and_be_published(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        draft_job = await create_job(
            session_factory, world.organization_id, title="Draft", status=JobStatus.DRAFT
        )

        with pytest.raises(JobNotFoundError):
            await _create(session_factory, market, world.seeker_id, InternalJobTarget(uuid.uuid4()))
        with pytest.raises(JobNotOpenError):
            await _create(session_factory, market, world.seeker_id, InternalJobTarget(draft_job))

    async def test_duplicate_open_request_is_rejected(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        await fund_wallet(session_factory, market.ledger, world.seeker_id, "100")
        first = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        with pytest.raises(DuplicateRequestError):
            await _create(
                session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
            )

        async with session_scope(session_factory) as session:
            await market.engine.cancel(session, world.seeker_id, first.id)

        again = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        assert again.id != first.id

    async def test_racing_duplicate_insert_releases_its_hold(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        first = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        racing = _engine_for(market, _UncheckedDuplicatesEngine)

        async with session_scope(session_factory) as session:
            with pytest.raises(DuplicateRequestError):
                await racing.create_request(
                    session,
                    world.seeker_id,
                    InternalJobTarget(world.job_id),
                    resume_id=uuid.uuid4(),
                )
            active = await market.ledger.get_holds(
                session, world.seeker_id, status=HoldStatus.ACTIVE
            )
            balance = await market.ledger.get_balance(session, world.seeker_id)

        assert [hold.reference_id for hold in active] == [first.id]
        assert balance.available == Decimal("51.00")
        assert await _count_rows(session_factory, ReferralRequest) == 1

    async def test_concurrent_creates_for_one_job_have_one_winner(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        await fund_wallet(session_factory, market.ledger, world.seeker_id, "100")
        racing = _engine_for(market, _UncheckedDuplicatesEngine)

        async def create() -> ReferralRequest:
            async with session_scope(session_factory) as session:
                return await racing.create_request(
                    session,
                    world.seeker_id,
                    InternalJobTarget(world.job_id),
                    resume_id=uuid.uuid4(),
                )

        results = await asyncio.gather(create(), create(), return_exceptions=True)

        winners = [result for result in results if isinstance(result, ReferralRequest)]
        losers = [result for result in results if isinstance(result, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], DuplicateRequestError)

        async with session_scope(session_factory) as session:
            active = await market.ledger.get_holds(
                session, world.seeker_id, status=HoldStatus.ACTIVE
            )
            balance = await market.ledger.get_balance(session, world.seeker_id)
        assert [hold.reference_id for hold in active] == [winners[0].id]
        assert balance.available == Decimal("151.00")

    async def test_daily_limit_resets_at_midnight(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        limit = market.settings.referrals.daily_request_limit
        await fund_wallet(session_factory, market.ledger, world.seeker_id, "1000")
        jobs = [
            await create_job(session_factory, world.organization_id, title=f"Role {index}")
            for index in range(limit + 1)
        ]

        for job_id in jobs[:limit]:
            await _create(session_factory, market, world.seeker_id, InternalJobTarget(job_id))

        with pytest.raises(DailyLimitExceededError) as exc_info:
            await _create(session_factory, market, world.seeker_id, InternalJobTarget(jobs[-1]))
        assert exc_info.value.details == {"used": limit, "limit": limit}

        market.clock.advance(hours=15)
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(jobs[-1])
        )
        assert request.status is ReferralStatus.PENDING


class TestClaimAndComplete:
    async def test_quick_proof_earns_bonus_and_pays_referrer(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        market.clock.advance(minutes=30)
        async with session_scope(session_factory) as session:
            claimed = await market.engine.claim_request(session, world.referrer_id, request.id)
        assert claimed.status is ReferralStatus.CLAIMED
        assert claimed.assigned_referrer_id == world.referrer_id

        market.clock.advance(hours=2)
        async with session_scope(session_factory) as session:
            completed = await market.engine.submit_proof(
                session, world.referrer_id, request.id, PROOF
            )
        assert completed.status is ReferralStatus.COMPLETED
        assert completed.referred_at is not None

        async with session_scope(session_factory) as session:
            points = await market.points.get_points_history(session, world.referrer_id)
            seeker = await market.ledger.get_balance(session, world.seeker_id)
            referrer = await market.ledger.get_balance(session, world.referrer_id)
            holds = await market.ledger.get_holds(session, world.seeker_id)
            pending = await market.stats.get(session, world.referrer_id)

        assert points.balance == 25
        assert {entry.points_type for entry in points.entries} == {
            PointsType.PROOF_SUBMISSION,
            PointsType.QUICK_RESPONSE_BONUS,
        }
        assert seeker.balance == Decimal("51.00")
        assert seeker.held == Decimal("0.00")
        assert referrer.balance == Decimal("20.00")
        assert holds[0].status is HoldStatus.CONVERTED
        assert pending == 0
        assert market.notifier.events() == [
            ReferralEvent.REQUEST_CREATED,
            ReferralEvent.REQUEST_CLAIMED,
            ReferralEvent.REQUEST_COMPLETED,
        ]

    async def test_slow_proof_earns_base_points_only(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        async with session_scope(session_factory) as session:
            await market.engine.claim_request(session, world.referrer_id, request.id)
        market.clock.advance(hours=30)
        async with session_scope(session_factory) as session:
            await market.engine.submit_proof(session, world.referrer_id, request.id, PROOF)

        async with session_scope(session_factory) as session:
            assert await market.points.get_balance(session, world.referrer_id) == 15

    async def test_payout_uses_referral_payout_source(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        async with session_scope(session_factory) as session:
            await market.engine.claim_with_proof(session, world.referrer_id, request.id, PROOF)

        async with session_scope(session_factory) as session:
            transactions, total = await market.ledger.get_transactions(
                session, world.referrer_id, PaginationParams()
            )
            history = await market.engine.get_status_history(session, request.id)

        assert total == 1
        assert transactions[0].source is TransactionSource.REFERRAL_PAYOUT
        assert transactions[0].reference == f"referral_payout:{request.id}"
        assert [entry.to_status for entry in history] == [
            ReferralStatus.PENDING,
            ReferralStatus.COMPLETED,
        ]

    async def test_concurrent_claims_have_one_winner(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        async def claim(referrer_id: uuid.UUID) -> ReferralRequest:
            async with session_scope(session_factory) as session:
                return await market.engine.claim_request(session, referrer_id, request.id)

        results = await asyncio.gather(
            claim(world.referrer_id), claim(world.colleague_id), return_exceptions=True
        )

        winners = [result for result in results if isinstance(result, ReferralRequest)]
        losers = [result for result in results if isinstance(result, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], RequestNoLongerAvailableError)

        async with session_scope(session_factory) as session:
            stored = await market.engine.get_request(session, request.id)
        assert stored.assigned_referrer_id == winners[0].assigned_referrer_id

    async def test_seeker_cannot_refer_themselves(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        await employ(session_factory, world.seeker_id, world.organization_id)
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        with pytest.raises(SelfReferralError):
            async with session_scope(session_factory) as session:
                await market.engine.claim_request(session, world.seeker_id, request.id)

    async def test_referrer_must_currently_work_there(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        former = uuid.uuid4()
        await employ(session_factory, former, world.organization_id, is_current=False)
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        for referrer_id in (world.outsider_id, former):
            with pytest.raises(ReferrerNotEligibleError):
                async with session_scope(session_factory) as session:
                    await market.engine.claim_request(session, referrer_id, request.id)

    async def test_only_assigned_referrer_submits_proof(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        with pytest.raises(IllegalStateError):
            async with session_scope(session_factory) as session:
                await market.engine.submit_proof(session, world.referrer_id, request.id, PROOF)

        async with session_scope(session_factory) as session:
            await market.engine.claim_request(session, world.referrer_id, request.id)

        with pytest.raises(NotAssignedReferrerError):
            async with session_scope(session_factory) as session:
                await market.engine.submit_proof(session, world.colleague_id, request.id, PROOF)

    async def test_claiming_a_claimed_request_fails(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        async with session_scope(session_factory) as session:
            await market.engine.claim_request(session, world.referrer_id, request.id)

        with pytest.raises(RequestNoLongerAvailableError):
            async with session_scope(session_factory) as session:
                await market.engine.claim_with_proof(
                    session, world.colleague_id, request.id, PROOF
                )

    async def test_unknown_request(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        with pytest.raises(ReferralRequestNotFoundError):
            async with session_scope(session_factory) as session:
                await market.engine.claim_request(session, world.referrer_id, uuid.uuid4())


class TestVerify:
    async def _completed(
        self,
        factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> ReferralRequest:
        request = await _create(factory, market, world.seeker_id, InternalJobTarget(world.job_id))
        async with session_scope(factory) as session:
            await market.engine.claim_with_proof(session, world.referrer_id, request.id, PROOF)
        market.clock.advance(days=1)
        return request

    async def test_verification_awards_referrer(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await self._completed(session_factory, market, world)

        async with session_scope(session_factory) as session:
            verified = await market.engine.verify(session, world.seeker_id, request.id, True)

        assert verified.status is ReferralStatus.VERIFIED
        assert verified.verified is True
        assert verified.resolved_at is not None

        async with session_scope(session_factory) as session:
            assert await market.points.get_balance(session, world.referrer_id) == 50

        with pytest.raises(InvalidTransitionError):
            async with session_scope(session_factory) as session:
                await market.engine.verify(session, world.seeker_id, request.id, True)

    async def test_declined_verification_keeps_request_completed(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await self._completed(session_factory, market, world)

        async with session_scope(session_factory) as session:
            declined = await market.engine.verify(session, world.seeker_id, request.id, False)

        assert declined.status is ReferralStatus.COMPLETED
        assert declined.verified is False
        assert declined.verified_at is not None

        async with session_scope(session_factory) as session:
            history = await market.engine.get_status_history(session, request.id)
            points = await market.points.get_balance(session, world.referrer_id)
        assert history[-1].to_status is ReferralStatus.COMPLETED
        assert points == 25

    async def test_only_the_seeker_verifies(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await self._completed(session_factory, market, world)
        with pytest.raises(NotRequestOwnerError):
            async with session_scope(session_factory) as session:
                await market.engine.verify(session, world.referrer_id, request.id, True)

    async def test_pending_request_cannot_be_verified(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        with pytest.raises(IllegalStateError):
            async with session_scope(session_factory) as session:
                await market.engine.verify(session, world.seeker_id, request.id, True)


class TestStatusHistory:
    async def test_entries_are_numbered_in_transition_order(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        await fund_wallet(session_factory, market.ledger, world.seeker_id, "100")
        jobs = [world.job_id] + [
            await create_job(session_factory, world.organization_id, title=f"Role {n}")
            for n in range(2)
        ]

        # The clock never moves, so every row shares one timestamp.
        for job_id in jobs:
            request = await _create(
                session_factory, market, world.seeker_id, InternalJobTarget(job_id)
            )
            async with session_scope(session_factory) as session:
                await market.engine.claim_request(session, world.referrer_id, request.id)
            async with session_scope(session_factory) as session:
                await market.engine.submit_proof(
                    session, world.referrer_id, request.id, PROOF
                )
            async with session_scope(session_factory) as session:
                await market.engine.verify(session, world.seeker_id, request.id, True)

            async with session_scope(session_factory) as session:
                history = await market.engine.get_status_history(session, request.id)

            assert len({entry.created_at for entry in history}) == 1
            assert [entry.sequence for entry in history] == [1, 2, 3, 4]
            assert [(entry.from_status, entry.to_status) for entry in history] == [
                (None, ReferralStatus.PENDING),
                (ReferralStatus.PENDING, ReferralStatus.CLAIMED),
                (ReferralStatus.CLAIMED, ReferralStatus.COMPLETED),
                (ReferralStatus.COMPLETED, ReferralStatus.VERIFIED),
            ]


class TestCancelAndExpire:
    async def test_cancel_releases_hold(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        async with session_scope(session_factory) as session:
            outcome = await market.engine.cancel(session, world.seeker_id, request.id)

        assert outcome.status is ReferralStatus.CANCELLED
        assert outcome.hold_released is True
        assert outcome.amount_released == Decimal("49.00")

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, world.seeker_id)
            pending = await market.stats.get(session, world.referrer_id)
        assert balance.available == Decimal("100.00")
        assert pending == 0

        with pytest.raises(InvalidTransitionError):
            async with session_scope(session_factory) as session:
                await market.engine.cancel(session, world.seeker_id, request.id)

    async def test_cancel_rules(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        with pytest.raises(NotRequestOwnerError):
            async with session_scope(session_factory) as session:
                await market.engine.cancel(session, world.referrer_id, request.id)

        async with session_scope(session_factory) as session:
            await market.engine.claim_request(session, world.referrer_id, request.id)

        with pytest.raises(IllegalStateError):
            async with session_scope(session_factory) as session:
                await market.engine.cancel(session, world.seeker_id, request.id)

    async def test_expire_requires_age(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        with pytest.raises(RequestNotExpirableError):
            async with session_scope(session_factory) as session:
                await market.engine.expire(session, request.id)

        market.clock.advance(days=market.settings.referrals.expiration_days)
        async with session_scope(session_factory) as session:
            outcome = await market.engine.expire(session, request.id)
        assert outcome.status is ReferralStatus.EXPIRED
        assert outcome.amount_released == Decimal("49.00")

        async with session_scope(session_factory) as session:
            history = await market.engine.get_status_history(session, request.id)
        assert history[-1].changed_by is None
        assert history[-1].reason.startswith("Automated Expiration")

    async def test_expiring_completed_request_keeps_the_debit(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        async with session_scope(session_factory) as session:
            await market.engine.claim_with_proof(session, world.referrer_id, request.id, PROOF)

        market.clock.advance(days=20)
        async with session_scope(session_factory) as session:
            outcome = await market.engine.expire(session, request.id, days_old=14)

        assert outcome.status is ReferralStatus.EXPIRED
        assert outcome.hold_released is False
        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, world.seeker_id)
        assert balance.balance == Decimal("51.00")


class _BrokenNotifier:
    async def notify(
        self,
        event: ReferralEvent,
        request: ReferralRequest,
        recipients: Sequence[uuid.UUID],
        context: dict[str, Any],
    ) -> None:
        raise ConnectionError("notification gateway down")


class TestSideEffects:
    async def test_notification_failure_does_not_undo_transition(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        engine = ReferralRequestEngine(
            settings=market.settings,
            ledger=market.ledger,
            pricing=market.pricing,
            points=market.points,
            stats=market.stats,
            directory=market.directory,
            notifier=_BrokenNotifier(),
            clock=market.clock,
        )
        async with session_scope(session_factory) as session:
            request = await engine.create_request(
                session, world.seeker_id, InternalJobTarget(world.job_id), resume_id=uuid.uuid4()
            )

        async with session_scope(session_factory) as session:
            stored = await engine.get_request(session, request.id)
        assert stored.status is ReferralStatus.PENDING

    async def test_points_failure_does_not_undo_completion(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        awarder = _FailingTotalsAwarder(
            settings=market.settings, ledger=market.ledger, clock=market.clock
        )
        engine = _engine_for(market, points=awarder)
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        async with session_scope(session_factory) as session:
            await engine.claim_with_proof(session, world.referrer_id, request.id, PROOF)

        async with session_scope(session_factory) as session:
            stored = await market.engine.get_request(session, request.id)
            payout = await market.ledger.get_balance(session, world.referrer_id)
            points = await market.points.get_points_history(session, world.referrer_id)

        assert stored.status is ReferralStatus.COMPLETED
        assert payout.balance == Decimal("20.00")
        assert points.balance == 0
        assert points.entries == []

    async def test_listings_and_visibility(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )

        async with session_scope(session_factory) as session:
            available, total = await market.engine.list_available_requests(
                session, world.referrer_id, PaginationParams()
            )
            outsider_available, outsider_total = await market.engine.list_available_requests(
                session, world.outsider_id, PaginationParams()
            )
            mine, mine_total = await market.engine.list_seeker_requests(
                session, world.seeker_id, PaginationParams(), status=ReferralStatus.PENDING
            )
            stored = await market.engine.get_request(session, request.id)
            visible_to = {
                user_id: await market.engine.can_view(session, stored, user_id)
                for user_id in (world.seeker_id, world.colleague_id, world.outsider_id)
            }

        assert [item.id for item in available] == [request.id]
        assert total == 1
        assert (outsider_available, outsider_total) == ([], 0)
        assert [item.id for item in mine] == [request.id]
        assert mine_total == 1
        assert visible_to == {
            world.seeker_id: True,
            world.colleague_id: True,
            world.outsider_id: False,
        }

    async def test_analytics(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        world: World,
    ) -> None:
        request = await _create(
            session_factory, market, world.seeker_id, InternalJobTarget(world.job_id)
        )
        async with session_scope(session_factory) as session:
            await market.engine.claim_with_proof(session, world.referrer_id, request.id, PROOF)

        async with session_scope(session_factory) as session:
            seeker = await market.engine.get_analytics(session, world.seeker_id)
            referrer = await market.engine.get_analytics(session, world.referrer_id)

        assert seeker.total_requests_made == 1
        assert seeker.pending_requests == 0
        assert seeker.daily_quota_used == 1
        assert seeker.daily_quota_limit == market.settings.referrals.daily_request_limit
        assert referrer.total_requests_received == 1
        assert referrer.completed_referrals == 1
        assert referrer.total_points_earned == 25
