"""Wallet ledger exceptions."""

from referral_market.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "InsufficientBalanceError",
    "InvalidAmountError",
    "WalletFrozenError",
    "WalletNotFoundError",
    "DuplicateHoldError",
    "HoldNotFoundError",
    "WalletConcurrencyError",
    "RechargeReferenceConflictError",
    "SelfInviteError",
    "PayoutDetailsMissingError",
    "BelowMinimumWithdrawalError",
    "WithdrawableBalanceExceededError",
    "WithdrawalNotFoundError",
    "WithdrawalAlreadyProcessedError",
]


class InvalidAmountError(ValidationError):
    """Raised when an amount is zero, negative or not a number."""

    code = "invalid_amount"


class WalletFrozenError(ValidationError):
    """Raised when spending from a frozen wallet."""

    code = "wallet_frozen"


class WalletNotFoundError(NotFoundError):
    """Raised when a wallet does not exist."""

    code = "wallet_not_found"


class DuplicateHoldError(ConflictError):
    """Raised when a reference already has an active hold."""

    code = "duplicate_hold"


class HoldNotFoundError(NotFoundError):
    """Raised when no active hold exists for a reference."""

    code = "hold_not_found"


class WalletConcurrencyError(ConflictError):
    """Raised when the balance moved between read and guarded update."""

    code = "wallet_concurrent_update"


class RechargeReferenceConflictError(ConflictError):
    """Raised when a payment reference was already applied to another wallet."""

    code = "recharge_reference_conflict"


class SelfInviteError(ValidationError):
    """Raised when a signup bonus names the same user on both sides."""

    code = "self_invite"


class PayoutDetailsMissingError(ValidationError):
    """Raised when a withdrawal names neither a UPI id nor a full bank account."""

    code = "payout_details_missing"


class BelowMinimumWithdrawalError(ValidationError):
    """Raised when a withdrawal is smaller than the configured minimum."""

    code = "below_minimum_withdrawal"


class WithdrawableBalanceExceededError(ValidationError):
    """Raised when a withdrawal asks for more than the earned, unwithdrawn balance."""

    code = "withdrawable_balance_exceeded"


class WithdrawalNotFoundError(NotFoundError):
    """Raised when a withdrawal does not exist."""

    code = "withdrawal_not_found"


class WithdrawalAlreadyProcessedError(ConflictError):
    """Raised when deciding a withdrawal that is no longer pending."""

    code = "withdrawal_already_processed"
