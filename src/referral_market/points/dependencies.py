from __future__ import annotations

from fastapi import Depends

from referral_market.core.config import Settings, get_settings
from referral_market.points.service import PointsAwarder
from referral_market.wallets.dependencies import get_wallet_ledger
from referral_market.wallets.service import WalletLedger

__all__ = ["get_points_awarder"]


def get_points_awarder(
    settings: Settings = Depends(get_settings),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> PointsAwarder:
    return PointsAwarder(settings=settings, ledger=ledger)
