from __future__ import annotations

from .enums import PointsType
from .models import ReferralReward, ReferrerPoints
from .service import (
    PointsAwarder,
    PointsConversion,
    PointsHistory,
    PointsHistoryEntry,
)

__all__ = [
    "PointsType",
    "ReferralReward",
    "ReferrerPoints",
    "PointsAwarder",
    "PointsConversion",
    "PointsHistory",
    "PointsHistoryEntry",
]
