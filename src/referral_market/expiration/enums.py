from enum import StrEnum


class ExpirationTrigger(StrEnum):
    """What started an expiration sweep."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
