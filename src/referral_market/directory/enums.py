from enum import StrEnum


class JobStatus(StrEnum):
    """Publication status of an internal job listing."""

    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"
