from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from referral_market.wallets.enums import (
    HoldStatus,
    TransactionSource,
    TransactionStatus,
    TransactionType,
    WithdrawalStatus,
)


class WalletBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: uuid.UUID
    balance: Decimal = Field(..., description="Total balance including held funds")
    held: Decimal = Field(..., description="Sum of active holds")
    available: Decimal = Field(..., description="Balance that can still be spent")
    currency: str


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    source: TransactionSource
    reference: str | None
    hold_id: uuid.UUID | None
    description: str | None
    status: TransactionStatus
    created_at: dt.datetime


class WalletHoldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference_id: uuid.UUID
    amount: Decimal
    status: HoldStatus
    reason: str | None
    created_at: dt.datetime
    converted_at: dt.datetime | None
    released_at: dt.datetime | None


class WalletSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    balance: WalletBalanceResponse
    total_credits: Decimal
    total_debits: Decimal
    transaction_count: int
    active_holds: int


class RechargeEvent(BaseModel):
    """A recharge already verified by the payment gateway."""

    owner_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_reference: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=500)


class WithdrawableBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    withdrawable: Decimal = Field(..., description="Referral earnings not yet paid out")
    referral_earnings: Decimal
    total_withdrawn: Decimal
    minimum_withdrawal: Decimal
    withdrawal_fee: Decimal
    can_withdraw: bool


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    upi_id: str | None = Field(None, max_length=100)
    bank_account_number: str | None = Field(None, max_length=34)
    bank_ifsc: str | None = Field(None, max_length=11)
    account_holder_name: str | None = Field(None, max_length=200)


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    amount: Decimal
    processing_fee: Decimal
    net_amount: Decimal
    status: WithdrawalStatus
    upi_id: str | None
    bank_account_number: str | None
    bank_ifsc: str | None
    account_holder_name: str | None
    requested_at: dt.datetime
    processed_at: dt.datetime | None
    payment_reference: str | None
    rejection_reason: str | None
