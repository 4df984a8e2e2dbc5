from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.pricing.enums import ReferralTier

from .enums import JobStatus
from .models import Employment, Job, Organization


@dataclass(slots=True, frozen=True)
class OrganizationInfo:
    id: uuid.UUID
    name: str
    tier: ReferralTier


@dataclass(slots=True, frozen=True)
class JobInfo:
    id: uuid.UUID
    title: str
    status: JobStatus
    organization: OrganizationInfo

    @property
    def is_published(self) -> bool:
        return self.status is JobStatus.PUBLISHED


class OrganizationDirectory(Protocol):
    """Employment and organization facts the referral engine relies on."""

    async def get_job(self, session: AsyncSession, job_id: uuid.UUID) -> JobInfo | None:
        """Return the job together with its owning organization."""

    async def get_organization(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> OrganizationInfo | None:
        """Return an organization by id."""

    async def find_organization_by_name(
        self, session: AsyncSession, name: str
    ) -> OrganizationInfo | None:
        """Resolve a free-form company name to a known organization."""

    async def is_current_employee(
        self, session: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
    ) -> bool:
        """True when the user currently works at the organization."""

    async def eligible_referrers(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> list[uuid.UUID]:
        """Users currently employed at the organization and open to refer."""

    async def lapsed_referrers(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> list[uuid.UUID]:
        """Users with an employment at the organization who can no longer refer there."""

    async def current_organizations(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        *,
        open_to_refer_only: bool = False,
    ) -> list[uuid.UUID]:
        """Organizations where the user currently works."""


def _to_info(organization: Organization) -> OrganizationInfo:
    return OrganizationInfo(
        id=organization.id, name=organization.name, tier=organization.tier
    )


class SqlOrganizationDirectory:
    """Directory backed by the organizations, jobs and employments tables."""

    async def get_job(self, session: AsyncSession, job_id: uuid.UUID) -> JobInfo | None:
        stmt = (
            select(Job, Organization)
            .join(Organization, Organization.id == Job.organization_id)
            .where(Job.id == job_id)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return None
        job, organization = row
        return JobInfo(
            id=job.id,
            title=job.title,
            status=job.status,
            organization=_to_info(organization),
        )

    async def get_organization(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> OrganizationInfo | None:
        organization = await session.get(Organization, organization_id)
        return _to_info(organization) if organization is not None else None

    async def find_organization_by_name(
        self, session: AsyncSession, name: str
    ) -> OrganizationInfo | None:
        normalized = name.strip().lower()
        if not normalized:
            return None
        stmt = select(Organization).where(func.lower(Organization.name) == normalized)
        organization = (await session.execute(stmt)).scalars().first()
        return _to_info(organization) if organization is not None else None

    async def is_current_employee(
        self, session: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
    ) -> bool:
        stmt = (
            select(Employment.id)
            .where(
                Employment.user_id == user_id,
                Employment.organization_id == organization_id,
                Employment.is_current.is_(True),
            )
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def eligible_referrers(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> list[uuid.UUID]:
        stmt = (
            select(Employment.user_id)
            .where(
                Employment.organization_id == organization_id,
                Employment.is_current.is_(True),
                Employment.open_to_refer.is_(True),
            )
            .distinct()
        )
        return list((await session.execute(stmt)).scalars().all())

    async def lapsed_referrers(
        self, session: AsyncSession, organization_id: uuid.UUID
    ) -> list[uuid.UUID]:
        stmt = (
            select(Employment.user_id)
            .where(
                Employment.organization_id == organization_id,
                or_(
                    Employment.is_current.is_(False),
                    Employment.open_to_refer.is_(False),
                ),
            )
            .distinct()
        )
        lapsed = set((await session.execute(stmt)).scalars().all())
        return list(lapsed - set(await self.eligible_referrers(session, organization_id)))

    async def current_organizations(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        *,
        open_to_refer_only: bool = False,
    ) -> list[uuid.UUID]:
        stmt = select(Employment.organization_id).where(
            Employment.user_id == user_id, Employment.is_current.is_(True)
        )
        if open_to_refer_only:
            stmt = stmt.where(Employment.open_to_refer.is_(True))
        stmt = stmt.distinct()
        return list((await session.execute(stmt)).scalars().all())
