from enum import StrEnum


class PointsType(StrEnum):
    """Reason a reward entry was written; one entry per type per request."""

    PROOF_SUBMISSION = "proof_submission"
    QUICK_RESPONSE_BONUS = "quick_response_bonus"
    VERIFICATION = "verification"
    CONVERSION = "conversion"
    GENERAL = "general"
