"""Referral lifecycle exceptions."""

from referral_market.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)


class InvalidTargetError(ValidationError):
    """Raised when a request names both or neither of the job targets."""

    code = "invalid_target"


class JobNotFoundError(NotFoundError):
    """Raised when an internal job target does not exist."""

    code = "job_not_found"


class JobNotOpenError(ValidationError):
    """Raised when an internal job target is not published."""

    code = "job_not_open"


class UnknownOrganizationError(ValidationError):
    """Raised when an external target cannot be matched to an organization."""

    code = "unknown_organization"


class DailyLimitExceededError(ValidationError):
    """Raised when a seeker has used up today's request allowance."""

    code = "daily_limit_exceeded"


class DuplicateRequestError(ConflictError):
    """Raised when an open request already exists for the same target."""

    code = "duplicate_request"


class ReferralRequestNotFoundError(NotFoundError):
    """Raised when a referral request is not found."""

    code = "request_not_found"


class SelfReferralError(ValidationError):
    """Raised when a seeker tries to refer their own request."""

    code = "self_referral"


class ReferrerNotEligibleError(ValidationError):
    """Raised when the referrer does not currently work at the organization."""

    code = "referrer_not_eligible"


class NotAssignedReferrerError(ValidationError):
    """Raised when someone other than the assigned referrer submits proof."""

    code = "not_assigned_referrer"


class NotRequestOwnerError(ValidationError):
    """Raised when someone other than the seeker verifies or cancels."""

    code = "not_request_owner"


class RequestNoLongerAvailableError(ConflictError):
    """Raised when a claim loses the race or the request already left pending."""

    code = "no_longer_available"


class InvalidTransitionError(ConflictError):
    """Raised when transitioning out of a terminal state."""

    code = "invalid_transition"


class IllegalStateError(ValidationError):
    """Raised when the request is not in a state the operation accepts."""

    code = "illegal_state"


class DuplicateProofError(ConflictError):
    """Raised when the referrer already submitted proof for the request."""

    code = "duplicate_proof"


class RequestNotExpirableError(ValidationError):
    """Raised when expiring a request that is too young or already verified."""

    code = "not_expirable"
