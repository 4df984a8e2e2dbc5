from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referral_market.db.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    utcnow,
)
from referral_market.db.types import GUID, Money, UTCDateTime
from referral_market.pricing.enums import ReferralTier

from .enums import NON_TERMINAL_STATUSES, ActorRole, ReferralStatus

# Enum columns store member names.
OPEN_REQUEST_PREDICATE = "status IN ({})".format(
    ", ".join(
        f"'{name}'" for name in sorted(status.name for status in NON_TERMINAL_STATUSES)
    )
)


def _open_request_index(name: str, *columns: str, target_column: str) -> Index:
    """At most one non-terminal request per seeker and target."""
    predicate = text(f"{target_column} IS NOT NULL AND {OPEN_REQUEST_PREDICATE}")
    return Index(
        name,
        *columns,
        unique=True,
        postgresql_where=predicate,
        sqlite_where=predicate,
    )


class ReferralRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A seeker's paid request for a referral at one organization."""

    __tablename__ = "referral_requests"
    __table_args__ = (
        CheckConstraint(
            "(job_id IS NOT NULL AND ext_job_id IS NULL)"
            " OR (job_id IS NULL AND ext_job_id IS NOT NULL)",
            name="exactly_one_target",
        ),
        Index("ix_referral_requests_status_requested", "status", "requested_at"),
        Index("ix_referral_requests_org_status", "organization_id", "status"),
        Index("ix_referral_requests_requester_status", "requester_id", "status"),
        Index("ix_referral_requests_referrer", "assigned_referrer_id"),
        _open_request_index(
            "uq_referral_requests_open_internal",
            "requester_id",
            "job_id",
            target_column="job_id",
        ),
        _open_request_index(
            "uq_referral_requests_open_external",
            "requester_id",
            "organization_id",
            "ext_job_id",
            target_column="ext_job_id",
        ),
    )

    requester_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    resume_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("jobs.id", ondelete="RESTRICT")
    )
    ext_job_id: Mapped[str | None] = mapped_column(String(128))
    job_title: Mapped[str | None] = mapped_column(String(200))
    company_name: Mapped[str | None] = mapped_column(String(200))
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[ReferralStatus] = mapped_column(
        Enum(ReferralStatus, name="referral_status", native_enum=False),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    tier: Mapped[ReferralTier] = mapped_column(
        Enum(ReferralTier, name="referral_request_tier", native_enum=False),
        nullable=False,
    )
    cost: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    message: Mapped[str | None] = mapped_column(String(1000))
    requested_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    assigned_referrer_id: Mapped[uuid.UUID | None] = mapped_column(GUID())
    claimed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    referred_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    verified: Mapped[bool | None] = mapped_column(Boolean)
    verified_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    resolved_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())

    proofs: Mapped[list[ReferralProof]] = relationship(
        back_populates="request", order_by="ReferralProof.submitted_at"
    )

    @property
    def is_external(self) -> bool:
        return self.job_id is None


class ReferralProof(UUIDPrimaryKeyMixin, Base):
    """Evidence uploaded by the referrer that the referral was made."""

    __tablename__ = "referral_proofs"
    __table_args__ = (
        UniqueConstraint(
            "request_id", "referrer_id", name="uq_referral_proofs_request_referrer"
        ),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("referral_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    referrer_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[str | None] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(String(1000))
    submitted_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )

    request: Mapped[ReferralRequest] = relationship(back_populates="proofs")


class ReferralStatusHistory(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Immutable audit row written for every status change, creation included."""

    __tablename__ = "referral_status_history"
    __table_args__ = (
        UniqueConstraint(
            "request_id", "sequence", name="uq_referral_status_history_request_sequence"
        ),
        Index("ix_referral_status_history_request", "request_id", "created_at"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("referral_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[ReferralStatus | None] = mapped_column(
        Enum(ReferralStatus, name="referral_history_from_status", native_enum=False)
    )
    to_status: Mapped[ReferralStatus] = mapped_column(
        Enum(ReferralStatus, name="referral_history_to_status", native_enum=False),
        nullable=False,
    )
    changed_by: Mapped[uuid.UUID | None] = mapped_column(GUID())
    changed_by_role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, name="referral_actor_role", native_enum=False),
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(String(500))
