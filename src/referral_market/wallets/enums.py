from enum import StrEnum


class WalletStatus(StrEnum):
    ACTIVE = "active"
    FROZEN = "frozen"


class TransactionType(StrEnum):
    """Direction of a ledger entry."""

    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(StrEnum):
    COMPLETED = "completed"


class TransactionSource(StrEnum):
    """Why a ledger entry was written."""

    WELCOME_BONUS = "welcome_bonus"
    REFERRAL_SIGNUP_BONUS = "referral_signup_bonus"
    ADMIN_BONUS = "admin_bonus"
    REFERRAL_PAYOUT = "referral_payout"
    POINTS_CONVERSION = "points_conversion"
    RECHARGE = "recharge"
    RECHARGE_BONUS = "recharge_bonus"
    REFERRAL_REQUEST = "referral_request"
    JOB_PUBLISH = "job_publish"
    AI_JOBS_ACCESS = "ai_jobs_access"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_REFUND = "withdrawal_refund"


class HoldStatus(StrEnum):
    """Lifecycle of a balance reservation."""

    ACTIVE = "active"
    CONVERTED = "converted"
    RELEASED = "released"


class HoldAction(StrEnum):
    PLACED = "placed"
    RELEASED = "released"
    CONVERTED = "converted"


class WithdrawalStatus(StrEnum):
    """Payout request lifecycle; funds leave the balance when requested."""

    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def counts_as_withdrawn(self) -> bool:
        return self is not WithdrawalStatus.REJECTED
