from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referral_market.core.constants import DEFAULT_CURRENCY
from referral_market.db.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from referral_market.db.types import GUID, Money, UTCDateTime

from .enums import (
    HoldAction,
    HoldStatus,
    TransactionSource,
    TransactionStatus,
    TransactionType,
    WalletStatus,
    WithdrawalStatus,
)


class Wallet(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-user balance. Available balance is balance minus active holds."""

    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance >= 0", name="balance_non_negative"),)

    owner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=DEFAULT_CURRENCY
    )
    status: Mapped[WalletStatus] = mapped_column(
        Enum(WalletStatus, name="wallet_status", native_enum=False),
        nullable=False,
        default=WalletStatus.ACTIVE,
    )
    last_transaction_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())

    transactions: Mapped[list[WalletTransaction]] = relationship(
        back_populates="wallet",
        order_by="WalletTransaction.created_at",
        passive_deletes=True,
    )


class WalletTransaction(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Immutable ledger entry written alongside every balance mutation."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
    )

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("wallets.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="wallet_transaction_type", native_enum=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    source: Mapped[TransactionSource] = mapped_column(
        Enum(TransactionSource, name="wallet_transaction_source", native_enum=False),
        nullable=False,
    )
    reference: Mapped[str | None] = mapped_column(String(128), unique=True)
    hold_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("wallet_holds.id", ondelete="SET NULL")
    )
    description: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="wallet_transaction_status", native_enum=False),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )

    wallet: Mapped[Wallet] = relationship(back_populates="transactions")


class WalletHold(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Reservation of part of a balance against a pending purchase."""

    __tablename__ = "wallet_holds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("ix_wallet_holds_reference_status", "reference_id", "status"),
        Index("ix_wallet_holds_wallet_status", "wallet_id", "status"),
    )

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("wallets.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    reference_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    status: Mapped[HoldStatus] = mapped_column(
        Enum(HoldStatus, name="wallet_hold_status", native_enum=False),
        nullable=False,
        default=HoldStatus.ACTIVE,
    )
    reason: Mapped[str | None] = mapped_column(String(255))
    converted_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    released_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())


class WalletHoldEvent(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Append-only audit trail for hold placement, release and conversion."""

    __tablename__ = "wallet_hold_events"

    hold_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("wallet_holds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[HoldAction] = mapped_column(
        Enum(HoldAction, name="wallet_hold_action", native_enum=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    available_balance_after: Mapped[Decimal] = mapped_column(Money(), nullable=False)


class WalletWithdrawal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Payout of earned balance to a bank account or UPI handle."""

    __tablename__ = "wallet_withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("processing_fee >= 0", name="processing_fee_non_negative"),
        CheckConstraint(
            "upi_id IS NOT NULL OR bank_account_number IS NOT NULL",
            name="payout_destination_present",
        ),
        Index("ix_wallet_withdrawals_owner_requested", "owner_id", "requested_at"),
        Index("ix_wallet_withdrawals_status_requested", "status", "requested_at"),
    )

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("wallets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    net_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    status: Mapped[WithdrawalStatus] = mapped_column(
        Enum(WithdrawalStatus, name="wallet_withdrawal_status", native_enum=False),
        nullable=False,
        default=WithdrawalStatus.PENDING,
    )
    upi_id: Mapped[str | None] = mapped_column(String(100))
    bank_account_number: Mapped[str | None] = mapped_column(String(34))
    bank_ifsc: Mapped[str | None] = mapped_column(String(11))
    account_holder_name: Mapped[str | None] = mapped_column(String(200))
    requested_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    processed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    processed_by: Mapped[uuid.UUID | None] = mapped_column(GUID())
    payment_reference: Mapped[str | None] = mapped_column(String(128))
    rejection_reason: Mapped[str | None] = mapped_column(String(500))
