from __future__ import annotations

from .cache import SettingsCache
from .enums import ItemKind, PricingKey, ReferralTier
from .models import PricingSetting
from .service import (
    DEFAULT_FLAT_SETTINGS,
    DEFAULT_TIERED_SETTINGS,
    PricingResolver,
)

__all__ = [
    "SettingsCache",
    "ItemKind",
    "PricingKey",
    "ReferralTier",
    "PricingSetting",
    "PricingResolver",
    "DEFAULT_FLAT_SETTINGS",
    "DEFAULT_TIERED_SETTINGS",
]
