from __future__ import annotations

from fastapi import Depends

from referral_market.core.config import Settings, get_settings
from referral_market.directory.service import SqlOrganizationDirectory
from referral_market.points.dependencies import get_points_awarder
from referral_market.points.service import PointsAwarder
from referral_market.pricing.dependencies import get_pricing_resolver
from referral_market.pricing.service import PricingResolver
from referral_market.referrals.notifications import (
    LoggingReferralNotifier,
    ReferralNotifier,
)
from referral_market.referrals.service import ReferralRequestEngine
from referral_market.stats.service import ReferrerStatsTracker
from referral_market.wallets.dependencies import get_wallet_ledger
from referral_market.wallets.service import WalletLedger

__all__ = ["get_referral_engine", "get_referral_notifier"]

_NOTIFIER: ReferralNotifier = LoggingReferralNotifier()


def get_referral_notifier() -> ReferralNotifier:
    return _NOTIFIER


def get_referral_engine(
    settings: Settings = Depends(get_settings),
    ledger: WalletLedger = Depends(get_wallet_ledger),
    pricing: PricingResolver = Depends(get_pricing_resolver),
    points: PointsAwarder = Depends(get_points_awarder),
    notifier: ReferralNotifier = Depends(get_referral_notifier),
) -> ReferralRequestEngine:
    directory = SqlOrganizationDirectory()
    return ReferralRequestEngine(
        settings=settings,
        ledger=ledger,
        pricing=pricing,
        points=points,
        stats=ReferrerStatsTracker(directory=directory),
        directory=directory,
        notifier=notifier,
    )
