from __future__ import annotations

from .enums import (
    EXPIRABLE_STATUSES,
    NON_TERMINAL_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    ActorRole,
    ReferralEvent,
    ReferralStatus,
)
from .exceptions import (
    DailyLimitExceededError,
    DuplicateProofError,
    DuplicateRequestError,
    IllegalStateError,
    InvalidTargetError,
    InvalidTransitionError,
    JobNotFoundError,
    JobNotOpenError,
    NotAssignedReferrerError,
    NotRequestOwnerError,
    ReferralRequestNotFoundError,
    ReferrerNotEligibleError,
    RequestNoLongerAvailableError,
    RequestNotExpirableError,
    SelfReferralError,
    UnknownOrganizationError,
)
from .models import ReferralProof, ReferralRequest, ReferralStatusHistory

# The engine lives in ``referrals.service``; importing it here would cycle
# through ``stats``, which reads the request tables.

__all__ = [
    "EXPIRABLE_STATUSES",
    "NON_TERMINAL_STATUSES",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "ActorRole",
    "ReferralEvent",
    "ReferralStatus",
    "DailyLimitExceededError",
    "DuplicateProofError",
    "DuplicateRequestError",
    "IllegalStateError",
    "InvalidTargetError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "JobNotOpenError",
    "NotAssignedReferrerError",
    "NotRequestOwnerError",
    "ReferralRequestNotFoundError",
    "ReferrerNotEligibleError",
    "RequestNoLongerAvailableError",
    "RequestNotExpirableError",
    "SelfReferralError",
    "UnknownOrganizationError",
    "ReferralProof",
    "ReferralRequest",
    "ReferralStatusHistory",
]
