from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.core.exceptions import InsufficientBalanceError
from referral_market.db.pagination import PaginationParams
from referral_market.db.session import session_scope
from referral_market.pricing.enums import PricingKey
from referral_market.pricing.models import PricingSetting
from referral_market.wallets.enums import (
    TransactionSource,
    TransactionType,
    WithdrawalStatus,
)
from referral_market.wallets.exceptions import (
    BelowMinimumWithdrawalError,
    PayoutDetailsMissingError,
    SelfInviteError,
    WithdrawableBalanceExceededError,
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
)
from referral_market.wallets.models import WalletWithdrawal
from referral_market.wallets.withdrawals import PayoutDestination, WithdrawalDesk

from .conftest import ADMIN_ID, Market

UPI = PayoutDestination(upi_id="referrer@okbank")


@pytest.fixture
def desk(market: Market) -> WithdrawalDesk:
    return WithdrawalDesk(
        ledger=market.ledger,
        pricing=market.pricing,
        settings=market.settings,
        clock=market.clock,
    )


@pytest.fixture
def referrer_id() -> uuid.UUID:
    return uuid.uuid4()


async def _earn(
    factory: async_sessionmaker[AsyncSession],
    market: Market,
    owner_id: uuid.UUID,
    payouts: Decimal | str,
    bonus: Decimal | str = "0",
) -> None:
    async with session_scope(factory) as session:
        await market.ledger.credit_bonus(
            session,
            owner_id,
            Decimal(payouts),
            source=TransactionSource.REFERRAL_PAYOUT,
            description="Referral payout",
        )
        if Decimal(bonus) > 0:
            await market.ledger.credit_bonus(
                session, owner_id, Decimal(bonus), source=TransactionSource.ADMIN_BONUS
            )


async def _withdraw(
    factory: async_sessionmaker[AsyncSession],
    desk: WithdrawalDesk,
    owner_id: uuid.UUID,
    amount: str,
    destination: PayoutDestination = UPI,
) -> WalletWithdrawal:
    async with session_scope(factory) as session:
        return await desk.request_withdrawal(session, owner_id, Decimal(amount), destination)


class TestWithdrawableBalance:
    async def test_only_referral_earnings_count(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250", bonus="100")

        async with session_scope(session_factory) as session:
            summary = await desk.get_withdrawable_balance(session, referrer_id)

        assert summary.withdrawable == Decimal("250.00")
        assert summary.referral_earnings == Decimal("250.00")
        assert summary.total_withdrawn == Decimal("0.00")
        assert summary.minimum_withdrawal == Decimal("200.00")
        assert summary.withdrawal_fee == Decimal("0.00")
        assert summary.can_withdraw is True

    async def test_held_funds_are_not_withdrawable(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250")
        async with session_scope(session_factory) as session:
            await market.ledger.place_hold(
                session, referrer_id, Decimal("99"), reference_id=uuid.uuid4()
            )

        async with session_scope(session_factory) as session:
            summary = await desk.get_withdrawable_balance(session, referrer_id)

        assert summary.withdrawable == Decimal("151.00")
        assert summary.can_withdraw is False


class TestRequestWithdrawal:
    async def test_amount_leaves_the_balance_immediately(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250", bonus="100")

        withdrawal = await _withdraw(session_factory, desk, referrer_id, "220")

        assert withdrawal.status is WithdrawalStatus.PENDING
        assert withdrawal.amount == Decimal("220.00")
        assert withdrawal.net_amount == Decimal("220.00")
        assert withdrawal.upi_id == "referrer@okbank"

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, referrer_id)
            summary = await desk.get_withdrawable_balance(session, referrer_id)
            entries, _ = await market.ledger.get_transactions(
                session,
                referrer_id,
                PaginationParams(),
                transaction_type=TransactionType.DEBIT,
            )

        assert balance.balance == Decimal("130.00")
        assert summary.withdrawable == Decimal("30.00")
        assert summary.total_withdrawn == Decimal("220.00")
        assert [(entry.source, entry.reference) for entry in entries] == [
            (TransactionSource.WITHDRAWAL, f"withdrawal:{withdrawal.id}")
        ]

    async def test_limits_are_checked_in_order(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250", bonus="100")

        with pytest.raises(InsufficientBalanceError):
            await _withdraw(session_factory, desk, referrer_id, "400")
        with pytest.raises(WithdrawableBalanceExceededError) as exceeded:
            await _withdraw(session_factory, desk, referrer_id, "300")
        with pytest.raises(BelowMinimumWithdrawalError):
            await _withdraw(session_factory, desk, referrer_id, "150")

        assert exceeded.value.details["withdrawable"] == "250.00"
        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, referrer_id)
        assert balance.balance == Decimal("350.00")

    @pytest.mark.parametrize(
        "destination",
        [
            PayoutDestination(),
            PayoutDestination(upi_id="   "),
            PayoutDestination(bank_account_number="000123456789", bank_ifsc="HDFC0001234"),
        ],
    )
    async def test_requires_a_payout_destination(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
        destination: PayoutDestination,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250")
        with pytest.raises(PayoutDetailsMissingError):
            await _withdraw(session_factory, desk, referrer_id, "200", destination)

    async def test_bank_transfer_is_normalised(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250")
        bank = PayoutDestination(
            bank_account_number=" 000123456789 ",
            bank_ifsc="hdfc0001234",
            account_holder_name="Asha Rao",
        )

        withdrawal = await _withdraw(session_factory, desk, referrer_id, "200", bank)

        assert withdrawal.upi_id is None
        assert withdrawal.bank_account_number == "000123456789"
        assert withdrawal.bank_ifsc == "HDFC0001234"

    async def test_concurrent_requests_cannot_overdraw_earnings(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250", bonus="250")

        results = await asyncio.gather(
            _withdraw(session_factory, desk, referrer_id, "200"),
            _withdraw(session_factory, desk, referrer_id, "200"),
            return_exceptions=True,
        )

        accepted = [result for result in results if isinstance(result, WalletWithdrawal)]
        refused = [result for result in results if isinstance(result, BaseException)]
        assert len(accepted) == 1
        assert len(refused) == 1
        assert isinstance(refused[0], WithdrawableBalanceExceededError)

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, referrer_id)
        assert balance.balance == Decimal("300.00")


class TestProcessWithdrawal:
    async def test_approval_records_the_transfer(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250")
        withdrawal = await _withdraw(session_factory, desk, referrer_id, "250")

        async with session_scope(session_factory) as session:
            approved = await desk.process_withdrawal(
                session, withdrawal.id, approve=True, admin_id=ADMIN_ID
            )

        assert approved.status is WithdrawalStatus.COMPLETED
        assert approved.payment_reference == "Manual transfer"
        assert approved.processed_by == ADMIN_ID
        assert approved.processed_at == market.clock.now()

        with pytest.raises(WithdrawalAlreadyProcessedError):
            async with session_scope(session_factory) as session:
                await desk.process_withdrawal(
                    session, withdrawal.id, approve=False, admin_id=ADMIN_ID
                )

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, referrer_id)
            summary = await desk.get_withdrawable_balance(session, referrer_id)
        assert balance.balance == Decimal("0.00")
        assert summary.total_withdrawn == Decimal("250.00")

    async def test_rejection_refunds_the_amount(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        await _earn(session_factory, market, referrer_id, "250")
        withdrawal = await _withdraw(session_factory, desk, referrer_id, "220")
        market.clock.advance(minutes=1)

        async with session_scope(session_factory) as session:
            rejected = await desk.process_withdrawal(
                session,
                withdrawal.id,
                approve=False,
                admin_id=ADMIN_ID,
                rejection_reason="IFSC does not match account",
            )

        assert rejected.status is WithdrawalStatus.REJECTED
        assert rejected.rejection_reason == "IFSC does not match account"

        async with session_scope(session_factory) as session:
            balance = await market.ledger.get_balance(session, referrer_id)
            summary = await desk.get_withdrawable_balance(session, referrer_id)
            credits, _ = await market.ledger.get_transactions(
                session,
                referrer_id,
                PaginationParams(),
                transaction_type=TransactionType.CREDIT,
            )

        assert balance.balance == Decimal("250.00")
        assert summary.withdrawable == Decimal("250.00")
        assert credits[0].source is TransactionSource.WITHDRAWAL_REFUND
        assert credits[0].reference == f"withdrawal_refund:{withdrawal.id}"

    async def test_unknown_withdrawal(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        desk: WithdrawalDesk,
    ) -> None:
        with pytest.raises(WithdrawalNotFoundError):
            async with session_scope(session_factory) as session:
                await desk.process_withdrawal(
                    session, uuid.uuid4(), approve=True, admin_id=ADMIN_ID
                )

    async def test_listing_filters_by_owner_and_status(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
        desk: WithdrawalDesk,
        referrer_id: uuid.UUID,
    ) -> None:
        other_id = uuid.uuid4()
        await _earn(session_factory, market, referrer_id, "500")
        await _earn(session_factory, market, other_id, "200")
        first = await _withdraw(session_factory, desk, referrer_id, "200")
        market.clock.advance(minutes=5)
        await _withdraw(session_factory, desk, referrer_id, "200")
        await _withdraw(session_factory, desk, other_id, "200")
        async with session_scope(session_factory) as session:
            await desk.process_withdrawal(session, first.id, approve=True, admin_id=ADMIN_ID)

        async with session_scope(session_factory) as session:
            own, own_total = await desk.list_withdrawals(
                session, PaginationParams(), owner_id=referrer_id
            )
            pending, pending_total = await desk.list_withdrawals(
                session, PaginationParams(), status=WithdrawalStatus.PENDING
            )

        assert own_total == 2
        assert own[-1].id == first.id
        assert pending_total == 2
        assert all(item.status is WithdrawalStatus.PENDING for item in pending)


class TestReferralSignupBonus:
    async def test_credits_both_users_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
    ) -> None:
        new_user, inviter = uuid.uuid4(), uuid.uuid4()

        async with session_scope(session_factory) as session:
            grant = await market.ledger.grant_referral_signup_bonus(
                session, new_user, inviter
            )
        async with session_scope(session_factory) as session:
            repeated = await market.ledger.grant_referral_signup_bonus(
                session, new_user, inviter
            )

        assert grant is not None
        assert grant.amount == Decimal("50.00")
        assert grant.new_user_entry.source is TransactionSource.REFERRAL_SIGNUP_BONUS
        assert grant.referrer_entry.owner_id == inviter
        assert repeated is None

        async with session_scope(session_factory) as session:
            joined = await market.ledger.get_balance(session, new_user)
            invited = await market.ledger.get_balance(session, inviter)
        assert (joined.balance, invited.balance) == (Decimal("50.00"), Decimal("50.00"))

    async def test_disabled_bonus_grants_nothing(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
    ) -> None:
        async with session_scope(session_factory) as session:
            session.add(
                PricingSetting(
                    key=PricingKey.REFERRAL_SIGNUP_BONUS,
                    tier=None,
                    value=Decimal("0"),
                    is_active=True,
                )
            )

        async with session_scope(session_factory) as session:
            grant = await market.ledger.grant_referral_signup_bonus(
                session, uuid.uuid4(), uuid.uuid4()
            )
        assert grant is None

    async def test_user_cannot_invite_themselves(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        market: Market,
    ) -> None:
        user_id = uuid.uuid4()
        with pytest.raises(SelfInviteError):
            async with session_scope(session_factory) as session:
                await market.ledger.grant_referral_signup_bonus(session, user_id, user_id)
