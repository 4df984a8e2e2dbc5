from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.db.pagination import PaginationParams, paginate_query
from referral_market.db.types import quantize_money
from referral_market.observability import metrics_service
from referral_market.pricing.enums import PricingKey
from referral_market.pricing.service import PricingResolver

from .enums import (
    HoldAction,
    HoldStatus,
    TransactionSource,
    TransactionType,
    WalletStatus,
)
from .exceptions import (
    DuplicateHoldError,
    HoldNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    RechargeReferenceConflictError,
    SelfInviteError,
    WalletConcurrencyError,
    WalletFrozenError,
)
from .models import Wallet, WalletHold, WalletHoldEvent, WalletTransaction

ZERO = Decimal("0.00")


@dataclass(slots=True)
class WalletBalance:
    """Point-in-time view of a wallet."""

    owner_id: uuid.UUID
    balance: Decimal
    held: Decimal
    available: Decimal
    currency: str


@dataclass(slots=True)
class WalletSummary:
    balance: WalletBalance
    total_credits: Decimal
    total_debits: Decimal
    transaction_count: int
    active_holds: int


@dataclass(slots=True)
class SignupBonusGrant:
    amount: Decimal
    new_user_entry: WalletTransaction
    referrer_entry: WalletTransaction


@dataclass(slots=True)
class HoldRelease:
    """Outcome of releasing a hold; ``released`` is False when none was active."""

    released: bool
    amount: Decimal
    hold_id: uuid.UUID | None = None


class WalletLedger:
    """Balances, holds and the append-only transaction log.

    Every mutating operation locks the wallet row first and writes exactly one
    ledger entry per balance change. Methods flush but never commit.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        pricing: PricingResolver | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._settings = settings or get_settings()
        self._pricing = pricing
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    async def get_or_create_wallet(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> Wallet:
        wallet = await self._find_wallet(session, owner_id)
        if wallet is not None:
            return wallet

        try:
            async with session.begin_nested():
                wallet = Wallet(
                    owner_id=owner_id,
                    balance=ZERO,
                    currency=self._settings.wallet.currency,
                    status=WalletStatus.ACTIVE,
                )
                session.add(wallet)
                await session.flush()
        except IntegrityError:
            # Lost a creation race; the other writer's row is authoritative.
            wallet = await self._find_wallet(session, owner_id)
            if wallet is None:
                raise
            self._logger.info("wallet_creation_race_resolved", owner_id=str(owner_id))
            return wallet

        self._logger.info("wallet_created", owner_id=str(owner_id), wallet_id=str(wallet.id))
        return wallet

    async def place_hold(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        amount: Decimal,
        *,
        reference_id: uuid.UUID,
        reason: str | None = None,
    ) -> WalletHold:
        """Reserve ``amount`` of the available balance against ``reference_id``."""
        amount = self.validate_amount(amount)
        wallet = await self.lock_wallet(session, owner_id)
        self._ensure_spendable(wallet)

        if await self._find_active_hold(session, reference_id) is not None:
            raise DuplicateHoldError(
                "An active hold already exists for this reference",
                reference_id=str(reference_id),
            )

        held = await self._active_holds_total(session, wallet.id)
        available = wallet.balance - held
        if available < amount:
            raise InsufficientBalanceError(
                balance=wallet.balance, available=available, required=amount
            )

        hold = WalletHold(
            wallet_id=wallet.id,
            owner_id=owner_id,
            reference_id=reference_id,
            amount=amount,
            status=HoldStatus.ACTIVE,
            reason=reason,
            created_at=self._clock.now(),
        )
        session.add(hold)
        await session.flush()
        self._record_hold_event(hold, HoldAction.PLACED, available - amount, session)
        await session.flush()

        self._logger.info(
            "wallet_hold_placed",
            owner_id=str(owner_id),
            hold_id=str(hold.id),
            reference_id=str(reference_id),
            amount=str(amount),
            available_after=str(available - amount),
        )
        return hold

    async def release_hold(
        self, session: AsyncSession, reference_id: uuid.UUID
    ) -> HoldRelease:
        """Return a reservation to the available balance; no-op without one."""
        located = await self._lock_active_hold(session, reference_id)
        if located is None:
            return HoldRelease(released=False, amount=ZERO)
        wallet, hold = located

        hold.status = HoldStatus.RELEASED
        hold.released_at = self._clock.now()
        await session.flush()

        held = await self._active_holds_total(session, wallet.id)
        self._record_hold_event(hold, HoldAction.RELEASED, wallet.balance - held, session)
        await session.flush()

        self._logger.info(
            "wallet_hold_released",
            owner_id=str(hold.owner_id),
            hold_id=str(hold.id),
            reference_id=str(reference_id),
            amount=str(hold.amount),
        )
        return HoldRelease(released=True, amount=hold.amount, hold_id=hold.id)

    async def finalize_hold(
        self,
        session: AsyncSession,
        reference_id: uuid.UUID,
        *,
        source: TransactionSource = TransactionSource.REFERRAL_REQUEST,
        description: str | None = None,
    ) -> WalletTransaction:
        """Convert the active hold for ``reference_id`` into a permanent debit."""
        located = await self._lock_active_hold(session, reference_id)
        if located is None:
            raise HoldNotFoundError(
                "No active hold for reference", reference_id=str(reference_id)
            )
        wallet, hold = located

        hold.status = HoldStatus.CONVERTED
        hold.converted_at = self._clock.now()
        entry = await self._apply(
            session,
            wallet,
            TransactionType.DEBIT,
            hold.amount,
            source=source,
            description=description,
            hold_id=hold.id,
        )

        held = await self._active_holds_total(session, wallet.id)
        self._record_hold_event(hold, HoldAction.CONVERTED, wallet.balance - held, session)
        await session.flush()
        return entry

    async def debit(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        amount: Decimal,
        *,
        source: TransactionSource,
        description: str | None = None,
        reference: str | None = None,
    ) -> WalletTransaction:
        """Immediate debit against the available (not held) balance."""
        amount = self.validate_amount(amount)
        wallet = await self.lock_wallet(session, owner_id)
        self._ensure_spendable(wallet)

        held = await self._active_holds_total(session, wallet.id)
        available = wallet.balance - held
        if available < amount:
            raise InsufficientBalanceError(
                balance=wallet.balance, available=available, required=amount
            )

        return await self._apply(
            session,
            wallet,
            TransactionType.DEBIT,
            amount,
            source=source,
            description=description,
            reference=reference,
        )

    async def credit_bonus(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        amount: Decimal,
        *,
        source: TransactionSource,
        description: str | None = None,
        reference: str | None = None,
    ) -> WalletTransaction:
        amount = self.validate_amount(amount)
        wallet = await self.lock_wallet(session, owner_id)
        return await self._apply(
            session,
            wallet,
            TransactionType.CREDIT,
            amount,
            source=source,
            description=description,
            reference=reference,
        )

    async def credit_recharge(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        amount: Decimal,
        *,
        payment_reference: str,
        description: str | None = None,
    ) -> WalletTransaction:
        """Apply a verified gateway recharge exactly once per payment reference."""
        existing = await self._find_transaction_by_reference(session, payment_reference)
        if existing is not None:
            return self._replayed_recharge(existing, owner_id, payment_reference)

        try:
            async with session.begin_nested():
                entry = await self.credit_bonus(
                    session,
                    owner_id,
                    amount,
                    source=TransactionSource.RECHARGE,
                    description=description or "Wallet recharge",
                    reference=payment_reference,
                )
        except IntegrityError:
            existing = await self._find_transaction_by_reference(
                session, payment_reference
            )
            if existing is None:
                raise
            return self._replayed_recharge(existing, owner_id, payment_reference)
        return entry

    async def grant_welcome_bonus(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> WalletTransaction | None:
        """Credit the configured welcome bonus once per wallet."""
        reference = f"welcome_bonus:{owner_id}"
        if await self._find_transaction_by_reference(session, reference) is not None:
            return None

        pricing = self._pricing or PricingResolver(settings=self._settings)
        amount = await pricing.get_setting(session, PricingKey.WELCOME_BONUS)
        if amount <= ZERO:
            return None

        return await self.credit_bonus(
            session,
            owner_id,
            amount,
            source=TransactionSource.WELCOME_BONUS,
            description="Welcome bonus",
            reference=reference,
        )

    async def grant_referral_signup_bonus(
        self,
        session: AsyncSession,
        new_user_id: uuid.UUID,
        referrer_id: uuid.UUID,
    ) -> SignupBonusGrant | None:
        """Credit both sides of an invite once per new user.

        Returns None when the bonus is disabled or was already granted.
        """
        if new_user_id == referrer_id:
            raise SelfInviteError("A user cannot invite themselves", user_id=str(new_user_id))

        joiner_reference = f"referral_signup_bonus:{new_user_id}:joiner"
        if await self._find_transaction_by_reference(session, joiner_reference) is not None:
            return None

        pricing = self._pricing or PricingResolver(settings=self._settings)
        amount = await pricing.get_setting(session, PricingKey.REFERRAL_SIGNUP_BONUS)
        if amount <= ZERO:
            self._logger.info("referral_signup_bonus_disabled", new_user_id=str(new_user_id))
            return None

        try:
            async with session.begin_nested():
                joiner_entry = await self.credit_bonus(
                    session,
                    new_user_id,
                    amount,
                    source=TransactionSource.REFERRAL_SIGNUP_BONUS,
                    description="Bonus for joining with an invite",
                    reference=joiner_reference,
                )
                referrer_entry = await self.credit_bonus(
                    session,
                    referrer_id,
                    amount,
                    source=TransactionSource.REFERRAL_SIGNUP_BONUS,
                    description="Bonus for inviting a new user",
                    reference=f"referral_signup_bonus:{new_user_id}:referrer",
                )
        except IntegrityError:
            if await self._find_transaction_by_reference(session, joiner_reference) is None:
                raise
            self._logger.info("referral_signup_bonus_replayed", new_user_id=str(new_user_id))
            return None

        return SignupBonusGrant(
            amount=amount,
            new_user_entry=joiner_entry,
            referrer_entry=referrer_entry,
        )

    async def get_balance(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> WalletBalance:
        wallet = await self._find_wallet(session, owner_id)
        if wallet is None:
            return WalletBalance(
                owner_id=owner_id,
                balance=ZERO,
                held=ZERO,
                available=ZERO,
                currency=self._settings.wallet.currency,
            )
        held = await self._active_holds_total(session, wallet.id)
        return WalletBalance(
            owner_id=owner_id,
            balance=wallet.balance,
            held=held,
            available=wallet.balance - held,
            currency=wallet.currency,
        )

    async def get_transactions(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        transaction_type: TransactionType | None = None,
    ) -> tuple[list[WalletTransaction], int]:
        stmt: Select[tuple[WalletTransaction]] = select(WalletTransaction).where(
            WalletTransaction.owner_id == owner_id
        )
        if transaction_type is not None:
            stmt = stmt.where(WalletTransaction.type == transaction_type)
        stmt = stmt.order_by(
            WalletTransaction.created_at.desc(), WalletTransaction.id.desc()
        )
        return await paginate_query(session, stmt, pagination)

    async def get_holds(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        *,
        status: HoldStatus | None = None,
    ) -> list[WalletHold]:
        stmt = select(WalletHold).where(WalletHold.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(WalletHold.status == status)
        stmt = stmt.order_by(WalletHold.created_at.desc())
        return list((await session.execute(stmt)).scalars().all())

    async def get_wallet_summary(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> WalletSummary:
        balance = await self.get_balance(session, owner_id)

        totals_stmt = (
            select(
                WalletTransaction.type,
                func.coalesce(func.sum(WalletTransaction.amount), ZERO),
                func.count(WalletTransaction.id),
            )
            .where(WalletTransaction.owner_id == owner_id)
            .group_by(WalletTransaction.type)
        )
        totals = {
            row[0]: (quantize_money(row[1]), row[2])
            for row in (await session.execute(totals_stmt)).all()
        }
        credits, credit_count = totals.get(TransactionType.CREDIT, (ZERO, 0))
        debits, debit_count = totals.get(TransactionType.DEBIT, (ZERO, 0))

        holds_stmt = select(func.count(WalletHold.id)).where(
            WalletHold.owner_id == owner_id, WalletHold.status == HoldStatus.ACTIVE
        )
        active_holds = (await session.execute(holds_stmt)).scalar() or 0

        return WalletSummary(
            balance=balance,
            total_credits=credits,
            total_debits=debits,
            transaction_count=credit_count + debit_count,
            active_holds=active_holds,
        )

    async def _apply(
        self,
        session: AsyncSession,
        wallet: Wallet,
        entry_type: TransactionType,
        amount: Decimal,
        *,
        source: TransactionSource,
        description: str | None = None,
        reference: str | None = None,
        hold_id: uuid.UUID | None = None,
    ) -> WalletTransaction:
        before = wallet.balance
        after = before + amount if entry_type is TransactionType.CREDIT else before - amount
        if after < ZERO:
            held = await self._active_holds_total(session, wallet.id)
            raise InsufficientBalanceError(
                balance=before, available=before - held, required=amount
            )

        now = self._clock.now()
        # Compare-and-set on the balance read under the row lock.
        result = await session.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id, Wallet.balance == before)
            .values(balance=after, last_transaction_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WalletConcurrencyError(
                "Wallet balance changed during update", wallet_id=str(wallet.id)
            )
        set_committed_value(wallet, "balance", after)
        set_committed_value(wallet, "last_transaction_at", now)

        entry = WalletTransaction(
            wallet_id=wallet.id,
            owner_id=wallet.owner_id,
            type=entry_type,
            amount=amount,
            balance_before=before,
            balance_after=after,
            source=source,
            reference=reference,
            hold_id=hold_id,
            description=description,
            created_at=now,
        )
        session.add(entry)
        await session.flush()

        metrics_service.record_ledger_entry(entry_type.value, source.value, amount)
        self._logger.info(
            "wallet_ledger_entry_written",
            owner_id=str(wallet.owner_id),
            transaction_id=str(entry.id),
            type=entry_type.value,
            source=source.value,
            amount=str(amount),
            balance_before=str(before),
            balance_after=str(after),
        )
        return entry

    def _replayed_recharge(
        self, entry: WalletTransaction, owner_id: uuid.UUID, payment_reference: str
    ) -> WalletTransaction:
        if entry.owner_id != owner_id:
            raise RechargeReferenceConflictError(
                "Payment reference already applied to another wallet",
                payment_reference=payment_reference,
            )
        self._logger.info(
            "wallet_recharge_replayed",
            owner_id=str(owner_id),
            payment_reference=payment_reference,
        )
        return entry

    def _record_hold_event(
        self,
        hold: WalletHold,
        action: HoldAction,
        available_after: Decimal,
        session: AsyncSession,
    ) -> None:
        session.add(
            WalletHoldEvent(
                hold_id=hold.id,
                action=action,
                amount=hold.amount,
                available_balance_after=available_after,
                created_at=self._clock.now(),
            )
        )
        metrics_service.record_hold_event(action.value)

    async def _find_wallet(
        self, session: AsyncSession, owner_id: uuid.UUID
    ) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.owner_id == owner_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def lock_wallet(self, session: AsyncSession, owner_id: uuid.UUID) -> Wallet:
        """Return the owner's wallet, created if needed, locked for this transaction."""
        wallet = await self.get_or_create_wallet(session, owner_id)
        stmt = (
            select(Wallet)
            .where(Wallet.id == wallet.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one()

    async def _find_active_hold(
        self, session: AsyncSession, reference_id: uuid.UUID
    ) -> WalletHold | None:
        stmt = (
            select(WalletHold)
            .where(
                WalletHold.reference_id == reference_id,
                WalletHold.status == HoldStatus.ACTIVE,
            )
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalars().first()

    async def _lock_active_hold(
        self, session: AsyncSession, reference_id: uuid.UUID
    ) -> tuple[Wallet, WalletHold] | None:
        hold = await self._find_active_hold(session, reference_id)
        if hold is None:
            return None
        wallet = await self.lock_wallet(session, hold.owner_id)
        # Re-read under the wallet lock; a concurrent release may have won.
        hold = await self._find_active_hold(session, reference_id)
        if hold is None:
            return None
        return wallet, hold

    async def _active_holds_total(
        self, session: AsyncSession, wallet_id: uuid.UUID
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(WalletHold.amount), ZERO)).where(
            WalletHold.wallet_id == wallet_id,
            WalletHold.status == HoldStatus.ACTIVE,
        )
        return quantize_money((await session.execute(stmt)).scalar() or ZERO)

    async def _find_transaction_by_reference(
        self, session: AsyncSession, reference: str
    ) -> WalletTransaction | None:
        stmt = select(WalletTransaction).where(WalletTransaction.reference == reference)
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def validate_amount(amount: Decimal | int | str) -> Decimal:
        try:
            normalized = quantize_money(amount)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise InvalidAmountError("Amount must be a number", amount=str(amount)) from exc
        if not normalized.is_finite() or normalized <= ZERO:
            raise InvalidAmountError("Amount must be positive", amount=str(amount))
        return normalized

    @staticmethod
    def _ensure_spendable(wallet: Wallet) -> None:
        if wallet.status is WalletStatus.FROZEN:
            raise WalletFrozenError("Wallet is frozen", wallet_id=str(wallet.id))
