from enum import StrEnum


class ReferralStatus(StrEnum):
    """Referral request lifecycle states."""

    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    VERIFIED = "verified"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ReferralStatus.VERIFIED, ReferralStatus.EXPIRED, ReferralStatus.CANCELLED}
)

# Requests in these states count toward referrer pending counters.
OPEN_STATUSES = frozenset({ReferralStatus.PENDING, ReferralStatus.CLAIMED})

NON_TERMINAL_STATUSES = frozenset(
    {ReferralStatus.PENDING, ReferralStatus.CLAIMED, ReferralStatus.COMPLETED}
)

# Requests in these states are swept once stale; completed only while unverified.
EXPIRABLE_STATUSES = NON_TERMINAL_STATUSES


class ActorRole(StrEnum):
    """Who caused a status change."""

    SEEKER = "seeker"
    REFERRER = "referrer"
    SYSTEM = "system"


class ReferralEvent(StrEnum):
    """Notification topics emitted by the request lifecycle."""

    REQUEST_CREATED = "request_created"
    REQUEST_CLAIMED = "request_claimed"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_VERIFIED = "request_verified"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_EXPIRED = "request_expired"
