from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import CheckConstraint, Integer
from sqlalchemy.orm import Mapped, mapped_column

from referral_market.db.base import Base, UUIDPrimaryKeyMixin
from referral_market.db.types import GUID, UTCDateTime


class ReferrerStats(UUIDPrimaryKeyMixin, Base):
    """Denormalised count of open requests a referrer could pick up."""

    __tablename__ = "referrer_stats"
    __table_args__ = (
        CheckConstraint("pending_count >= 0", name="pending_count_non_negative"),
    )

    referrer_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, unique=True)
    pending_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: dt.datetime.now(dt.UTC)
    )
