from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Enum, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from referral_market.db.base import Base, UUIDPrimaryKeyMixin
from referral_market.db.types import GUID, JSONType, Money, UTCDateTime

from .enums import ExpirationTrigger


class ExpirationRunLog(UUIDPrimaryKeyMixin, Base):
    """One row per expiration sweep, written after the sweep finishes."""

    __tablename__ = "referral_expiration_runs"
    __table_args__ = (Index("ix_referral_expiration_runs_started", "started_at"),)

    execution_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, unique=True)
    trigger: Mapped[ExpirationTrigger] = mapped_column(
        Enum(ExpirationTrigger, name="expiration_trigger", native_enum=False),
        nullable=False,
    )
    started_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    finished_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False)
    days_old: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expired: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    holds_released: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_released: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0.00")
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[Any]] = mapped_column(JSONType(), nullable=False, default=list)
