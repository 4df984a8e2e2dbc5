from __future__ import annotations

from .enums import JobStatus
from .models import Employment, Job, Organization
from .service import (
    JobInfo,
    OrganizationDirectory,
    OrganizationInfo,
    SqlOrganizationDirectory,
)

__all__ = [
    "JobStatus",
    "Employment",
    "Job",
    "Organization",
    "JobInfo",
    "OrganizationDirectory",
    "OrganizationInfo",
    "SqlOrganizationDirectory",
]
