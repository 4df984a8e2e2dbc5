from __future__ import annotations

from referral_market.pricing.service import PricingResolver

_RESOLVER: PricingResolver | None = None


def get_pricing_resolver() -> PricingResolver:
    """Process-wide resolver so every request shares one settings cache."""
    global _RESOLVER
    if _RESOLVER is None:
        _RESOLVER = PricingResolver()
    return _RESOLVER


def reset_pricing_dependencies() -> None:
    """Reset cached singletons to allow reconfiguration during tests."""

    global _RESOLVER
    _RESOLVER = None
