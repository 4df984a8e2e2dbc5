from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.core.clock import Clock, system_clock
from referral_market.core.config import Settings, get_settings
from referral_market.db.types import quantize_money
from referral_market.observability import metrics_service

from .cache import SettingsCache
from .enums import ItemKind, PricingKey, ReferralTier
from .models import PricingSetting

SettingsSnapshot = Mapping[tuple[str, ReferralTier | None], Decimal]
SettingsLoader = Callable[[AsyncSession], Awaitable[Sequence[PricingSetting]]]

DEFAULT_TIERED_SETTINGS: dict[str, dict[ReferralTier, Decimal]] = {
    PricingKey.REFERRAL_REQUEST_COST: {
        ReferralTier.STANDARD: Decimal("49.00"),
        ReferralTier.PREMIUM: Decimal("79.00"),
        ReferralTier.ELITE: Decimal("99.00"),
    },
    PricingKey.REFERRER_PAYOUT: {
        ReferralTier.STANDARD: Decimal("20.00"),
        ReferralTier.PREMIUM: Decimal("35.00"),
        ReferralTier.ELITE: Decimal("50.00"),
    },
}

DEFAULT_FLAT_SETTINGS: dict[str, Decimal] = {
    PricingKey.JOB_PUBLISH_COST: Decimal("50.00"),
    PricingKey.AI_JOBS_COST: Decimal("99.00"),
    PricingKey.WELCOME_BONUS: Decimal("100.00"),
    PricingKey.REFERRAL_SIGNUP_BONUS: Decimal("50.00"),
    PricingKey.MINIMUM_WITHDRAWAL: Decimal("200.00"),
    PricingKey.WITHDRAWAL_FEE: Decimal("0.00"),
}

ITEM_KEYS: dict[ItemKind, PricingKey] = {
    ItemKind.REFERRAL_REQUEST: PricingKey.REFERRAL_REQUEST_COST,
    ItemKind.JOB_PUBLISH: PricingKey.JOB_PUBLISH_COST,
    ItemKind.AI_JOBS_ACCESS: PricingKey.AI_JOBS_COST,
}


async def load_active_settings(session: AsyncSession) -> Sequence[PricingSetting]:
    stmt = select(PricingSetting).where(PricingSetting.is_active.is_(True))
    return (await session.execute(stmt)).scalars().all()


class PricingResolver:
    """Resolve tiered prices and bonus amounts from a TTL-cached settings store.

    Lookups fall back from the tier-specific row to the tier-less row and then
    to the compiled-in defaults. A failing settings store is logged and answered
    with defaults; defaults are never cached so the next lookup retries.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        cache: SettingsCache[SettingsSnapshot] | None = None,
        clock: Clock = system_clock,
        loader: SettingsLoader = load_active_settings,
    ) -> None:
        settings = settings or get_settings()
        self._cache = cache or SettingsCache(settings.pricing.cache_ttl_seconds, clock)
        self._loader = loader
        self._logger = structlog.get_logger(__name__)

    async def get_cost(
        self,
        session: AsyncSession,
        tier: ReferralTier,
        item_kind: ItemKind = ItemKind.REFERRAL_REQUEST,
    ) -> Decimal:
        return await self.get_setting(session, ITEM_KEYS[item_kind], tier)

    async def get_payout(self, session: AsyncSession, tier: ReferralTier) -> Decimal:
        return await self.get_setting(session, PricingKey.REFERRER_PAYOUT, tier)

    async def get_setting(
        self,
        session: AsyncSession,
        key: str,
        tier: ReferralTier | None = None,
    ) -> Decimal:
        snapshot = await self._snapshot(session)
        if snapshot is not None:
            for candidate in ((key, tier), (key, None)):
                if candidate in snapshot:
                    return snapshot[candidate]
        return self._default(key, tier)

    async def get_all_settings(
        self, session: AsyncSession
    ) -> dict[str, dict[str, Decimal]]:
        """Effective value of every known key, per tier."""
        resolved: dict[str, dict[str, Decimal]] = {}
        for key in DEFAULT_TIERED_SETTINGS:
            resolved[key] = {
                tier.value: await self.get_setting(session, key, tier)
                for tier in ReferralTier
            }
        for key in DEFAULT_FLAT_SETTINGS:
            resolved[key] = {"all": await self.get_setting(session, key)}
        return resolved

    def invalidate(self) -> None:
        self._cache.invalidate()
        self._logger.info("pricing_cache_invalidated")

    async def _snapshot(self, session: AsyncSession) -> SettingsSnapshot | None:
        cached = self._cache.get()
        if cached is not None:
            metrics_service.record_cache_hit("pricing")
            return cached

        metrics_service.record_cache_miss("pricing")
        try:
            async with session.begin_nested():
                rows = await self._loader(session)
        except Exception:
            self._logger.exception("pricing_settings_fetch_failed")
            return None

        snapshot = {(row.key, row.tier): quantize_money(row.value) for row in rows}
        self._cache.set(snapshot)
        self._logger.debug("pricing_settings_loaded", count=len(snapshot))
        return snapshot

    def _default(self, key: str, tier: ReferralTier | None) -> Decimal:
        tiered = DEFAULT_TIERED_SETTINGS.get(key)
        if tiered is not None:
            return tiered[tier or ReferralTier.STANDARD]
        flat = DEFAULT_FLAT_SETTINGS.get(key)
        if flat is not None:
            return flat
        self._logger.warning("pricing_setting_unknown", key=key, tier=tier)
        return Decimal("0.00")
