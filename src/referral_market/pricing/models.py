from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from referral_market.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from referral_market.db.types import Money

from .enums import ReferralTier


class PricingSetting(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Operator-managed price or bonus amount, optionally scoped to a tier."""

    __tablename__ = "pricing_settings"
    __table_args__ = (UniqueConstraint("key", "tier", name="uq_pricing_settings_key_tier"),)

    key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tier: Mapped[ReferralTier | None] = mapped_column(
        Enum(ReferralTier, name="pricing_tier", native_enum=False),
        nullable=True,
    )
    value: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(String(255))
