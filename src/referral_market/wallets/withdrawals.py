from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.db.pagination import PaginationParams, paginate_query
from referral_market.db.types import quantize_money
from referral_market.observability import metrics_service
from referral_market.pricing.enums import PricingKey
from referral_market.pricing.service import PricingResolver

from .enums import TransactionSource, TransactionType, WithdrawalStatus
from .exceptions import (
    BelowMinimumWithdrawalError,
    InsufficientBalanceError,
    InvalidAmountError,
    PayoutDetailsMissingError,
    WithdrawableBalanceExceededError,
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
)
from .models import WalletTransaction, WalletWithdrawal
from .service import ZERO, WalletLedger

# Only money earned by referring can be paid out; bonuses and recharges stay in-app.
WITHDRAWABLE_SOURCES = frozenset({TransactionSource.REFERRAL_PAYOUT})

DEFAULT_PAYMENT_REFERENCE = "Manual transfer"
DEFAULT_REJECTION_REASON = "Request rejected by admin"


@dataclass(slots=True, frozen=True)
class PayoutDestination:
    """Where an approved withdrawal is sent: a UPI id or a full bank account."""

    upi_id: str | None = None
    bank_account_number: str | None = None
    bank_ifsc: str | None = None
    account_holder_name: str | None = None

    def validate(self) -> PayoutDestination:
        upi_id = (self.upi_id or "").strip() or None
        account = (self.bank_account_number or "").strip() or None
        ifsc = (self.bank_ifsc or "").strip().upper() or None
        holder = (self.account_holder_name or "").strip() or None
        if upi_id is None and not (account and ifsc and holder):
            raise PayoutDetailsMissingError(
                "Provide a UPI id or bank account number, IFSC code and account holder name"
            )
        return PayoutDestination(
            upi_id=upi_id,
            bank_account_number=account,
            bank_ifsc=ifsc,
            account_holder_name=holder,
        )


@dataclass(slots=True)
class WithdrawableBalance:
    owner_id: uuid.UUID
    withdrawable: Decimal
    referral_earnings: Decimal
    total_withdrawn: Decimal
    minimum_withdrawal: Decimal
    withdrawal_fee: Decimal

    @property
    def can_withdraw(self) -> bool:
        return self.withdrawable >= self.minimum_withdrawal


class WithdrawalDesk:
    """Pays referral earnings out of the wallet.

    The amount leaves the balance when the withdrawal is requested. An operator
    then approves it once the transfer is made, or rejects it, which credits
    the amount back. Methods flush but never commit.
    """

    def __init__(
        self,
        *,
        ledger: WalletLedger | None = None,
        pricing: PricingResolver | None = None,
        settings: Settings | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._settings = settings or get_settings()
        self._pricing = pricing or PricingResolver(settings=self._settings, clock=clock)
        self._ledger = ledger or WalletLedger(
            settings=self._settings, pricing=self._pricing, clock=clock
        )
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    async def get_withdrawable_balance(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> WithdrawableBalance:
        """Earned and not yet withdrawn, capped at what is currently spendable."""
        earnings_stmt = select(
            func.coalesce(func.sum(WalletTransaction.amount), ZERO)
        ).where(
            WalletTransaction.owner_id == owner_id,
            WalletTransaction.type == TransactionType.CREDIT,
            WalletTransaction.source.in_(WITHDRAWABLE_SOURCES),
        )
        earnings = quantize_money((await session.execute(earnings_stmt)).scalar() or ZERO)

        withdrawn_stmt = select(
            func.coalesce(func.sum(WalletWithdrawal.amount), ZERO)
        ).where(
            WalletWithdrawal.owner_id == owner_id,
            WalletWithdrawal.status.in_(
                [status for status in WithdrawalStatus if status.counts_as_withdrawn]
            ),
        )
        withdrawn = quantize_money((await session.execute(withdrawn_stmt)).scalar() or ZERO)

        balance = await self._ledger.get_balance(session, owner_id)
        withdrawable = max(ZERO, min(earnings - withdrawn, balance.available))
        return WithdrawableBalance(
            owner_id=owner_id,
            withdrawable=withdrawable,
            referral_earnings=earnings,
            total_withdrawn=withdrawn,
            minimum_withdrawal=await self._pricing.get_setting(
                session, PricingKey.MINIMUM_WITHDRAWAL
            ),
            withdrawal_fee=await self._pricing.get_setting(
                session, PricingKey.WITHDRAWAL_FEE
            ),
        )

    async def request_withdrawal(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        amount: Decimal,
        destination: PayoutDestination,
    ) -> WalletWithdrawal:
        amount = self._ledger.validate_amount(amount)
        destination = destination.validate()

        # Serialises concurrent withdrawals against the same earnings.
        wallet = await self._ledger.lock_wallet(session, owner_id)
        summary = await self.get_withdrawable_balance(session, owner_id)
        balance = await self._ledger.get_balance(session, owner_id)

        if balance.available < amount:
            raise InsufficientBalanceError(
                balance=balance.balance, available=balance.available, required=amount
            )
        if amount > summary.withdrawable:
            raise WithdrawableBalanceExceededError(
                "Amount exceeds the withdrawable balance",
                withdrawable=str(summary.withdrawable),
                requested=str(amount),
            )
        if amount < summary.minimum_withdrawal:
            raise BelowMinimumWithdrawalError(
                f"Minimum withdrawal amount is {summary.minimum_withdrawal}",
                minimum=str(summary.minimum_withdrawal),
                requested=str(amount),
            )

        fee = min(summary.withdrawal_fee, amount)
        if amount - fee <= ZERO:
            raise InvalidAmountError(
                "Amount does not cover the processing fee", fee=str(fee)
            )

        now = self._clock.now()
        withdrawal = WalletWithdrawal(
            id=uuid.uuid4(),
            wallet_id=wallet.id,
            owner_id=owner_id,
            amount=amount,
            processing_fee=fee,
            net_amount=amount - fee,
            status=WithdrawalStatus.PENDING,
            upi_id=destination.upi_id,
            bank_account_number=destination.bank_account_number,
            bank_ifsc=destination.bank_ifsc,
            account_holder_name=destination.account_holder_name,
            requested_at=now,
            created_at=now,
            updated_at=now,
        )
        await self._ledger.debit(
            session,
            owner_id,
            amount,
            source=TransactionSource.WITHDRAWAL,
            description="Withdrawal request",
            reference=f"withdrawal:{withdrawal.id}",
        )
        session.add(withdrawal)
        await session.flush()

        metrics_service.record_withdrawal("requested")
        self._logger.info(
            "wallet_withdrawal_requested",
            owner_id=str(owner_id),
            withdrawal_id=str(withdrawal.id),
            amount=str(amount),
            net_amount=str(withdrawal.net_amount),
        )
        return withdrawal

    async def process_withdrawal(
        self,
        session: AsyncSession,
        withdrawal_id: uuid.UUID,
        *,
        approve: bool,
        admin_id: uuid.UUID,
        payment_reference: str | None = None,
        rejection_reason: str | None = None,
    ) -> WalletWithdrawal:
        """Approve or reject a pending withdrawal; a rejection refunds the amount."""
        withdrawal = await self.get_withdrawal(session, withdrawal_id)

        now = self._clock.now()
        values: dict[str, object] = {
            "processed_at": now,
            "processed_by": admin_id,
            "updated_at": now,
        }
        if approve:
            target = WithdrawalStatus.COMPLETED
            values["payment_reference"] = payment_reference or DEFAULT_PAYMENT_REFERENCE
        else:
            target = WithdrawalStatus.REJECTED
            values["rejection_reason"] = rejection_reason or DEFAULT_REJECTION_REASON

        result = await session.execute(
            update(WalletWithdrawal)
            .where(
                WalletWithdrawal.id == withdrawal.id,
                WalletWithdrawal.status == WithdrawalStatus.PENDING,
            )
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.refresh(withdrawal)
            raise WithdrawalAlreadyProcessedError(
                "Withdrawal has already been processed",
                withdrawal_id=str(withdrawal.id),
                status=withdrawal.status.value,
            )
        await session.refresh(withdrawal)

        if target is WithdrawalStatus.REJECTED:
            await self._ledger.credit_bonus(
                session,
                withdrawal.owner_id,
                withdrawal.amount,
                source=TransactionSource.WITHDRAWAL_REFUND,
                description=f"Refund for rejected withdrawal: {withdrawal.rejection_reason}",
                reference=f"withdrawal_refund:{withdrawal.id}",
            )

        metrics_service.record_withdrawal(target.value)
        self._logger.info(
            "wallet_withdrawal_processed",
            withdrawal_id=str(withdrawal.id),
            owner_id=str(withdrawal.owner_id),
            admin_id=str(admin_id),
            status=target.value,
            amount=str(withdrawal.amount),
        )
        return withdrawal

    async def get_withdrawal(
        self, session: AsyncSession, withdrawal_id: uuid.UUID
    ) -> WalletWithdrawal:
        withdrawal = await session.get(WalletWithdrawal, withdrawal_id)
        if withdrawal is None:
            raise WithdrawalNotFoundError(
                "Withdrawal not found", withdrawal_id=str(withdrawal_id)
            )
        return withdrawal

    async def list_withdrawals(
        self,
        session: AsyncSession,
        pagination: PaginationParams,
        *,
        owner_id: uuid.UUID | None = None,
        status: WithdrawalStatus | None = None,
    ) -> tuple[list[WalletWithdrawal], int]:
        stmt: Select[tuple[WalletWithdrawal]] = select(WalletWithdrawal)
        if owner_id is not None:
            stmt = stmt.where(WalletWithdrawal.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(WalletWithdrawal.status == status)
        stmt = stmt.order_by(
            WalletWithdrawal.requested_at.desc(), WalletWithdrawal.id.desc()
        )
        return await paginate_query(session, stmt, pagination)
