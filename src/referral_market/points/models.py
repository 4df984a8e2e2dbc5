from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from referral_market.db.base import Base, UUIDPrimaryKeyMixin, utcnow
from referral_market.db.types import GUID, UTCDateTime

from .enums import PointsType


class ReferralReward(UUIDPrimaryKeyMixin, Base):
    """Points ledger entry. Conversions are recorded as negative entries."""

    __tablename__ = "referral_rewards"
    __table_args__ = (
        UniqueConstraint(
            "referrer_id",
            "request_id",
            "points_type",
            name="uq_referral_rewards_referrer_request_type",
        ),
        Index("ix_referral_rewards_referrer_awarded", "referrer_id", "awarded_at"),
    )

    referrer_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    request_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("referral_requests.id", ondelete="CASCADE")
    )
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    points_type: Mapped[PointsType] = mapped_column(
        Enum(PointsType, name="referral_points_type", native_enum=False),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(String(255))
    awarded_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )


class ReferrerPoints(UUIDPrimaryKeyMixin, Base):
    """Running point totals per referrer."""

    __tablename__ = "referrer_points"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="points_balance_non_negative"),
    )

    referrer_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, unique=True)
    points_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
