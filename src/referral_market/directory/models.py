from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referral_market.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from referral_market.db.types import GUID
from referral_market.pricing.enums import ReferralTier

from .enums import JobStatus


class Organization(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Employer that referrers work for and jobs belong to."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    tier: Mapped[ReferralTier] = mapped_column(
        Enum(ReferralTier, name="organization_tier", native_enum=False),
        nullable=False,
        default=ReferralTier.STANDARD,
    )

    jobs: Mapped[list[Job]] = relationship(back_populates="organization")


class Job(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Internal job listing that a referral request can target."""

    __tablename__ = "jobs"
    __table_args__ = (Index("ix_jobs_organization_status", "organization_id", "status"),)

    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", native_enum=False),
        nullable=False,
        default=JobStatus.PUBLISHED,
    )

    organization: Mapped[Organization] = relationship(back_populates="jobs")


class Employment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's (current or past) position at an organization."""

    __tablename__ = "employments"
    __table_args__ = (
        Index("ix_employments_org_current", "organization_id", "is_current"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    open_to_refer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
