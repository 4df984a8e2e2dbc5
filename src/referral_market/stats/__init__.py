from __future__ import annotations

from .models import ReferrerStats
from .service import ReferrerStatsTracker

__all__ = ["ReferrerStats", "ReferrerStatsTracker"]
