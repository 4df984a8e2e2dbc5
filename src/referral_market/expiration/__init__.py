from __future__ import annotations

from .enums import ExpirationTrigger
from .models import ExpirationRunLog
from .service import (
    ExpirationRunStats,
    ExpirationSummary,
    ExpirationSweeper,
    build_expiration_sweeper,
)
from .tasks import ExpirationScheduler

__all__ = [
    "ExpirationTrigger",
    "ExpirationRunLog",
    "ExpirationRunStats",
    "ExpirationSummary",
    "ExpirationSweeper",
    "build_expiration_sweeper",
    "ExpirationScheduler",
]
