from enum import StrEnum


class ReferralTier(StrEnum):
    """Organization tiers that drive request cost and referrer payout."""

    STANDARD = "standard"
    PREMIUM = "premium"
    ELITE = "elite"


class ItemKind(StrEnum):
    """Purchasable items priced by the settings store."""

    REFERRAL_REQUEST = "referral_request"
    JOB_PUBLISH = "job_publish"
    AI_JOBS_ACCESS = "ai_jobs_access"


class PricingKey(StrEnum):
    """Keys understood by the settings store."""

    REFERRAL_REQUEST_COST = "REFERRAL_REQUEST_COST"
    REFERRER_PAYOUT = "REFERRER_PAYOUT"
    JOB_PUBLISH_COST = "JOB_PUBLISH_COST"
    AI_JOBS_COST = "AI_JOBS_COST"
    WELCOME_BONUS = "WELCOME_BONUS"
    REFERRAL_SIGNUP_BONUS = "REFERRAL_SIGNUP_BONUS"
    MINIMUM_WITHDRAWAL = "MINIMUM_WITHDRAWAL"
    WITHDRAWAL_FEE = "WITHDRAWAL_FEE"
