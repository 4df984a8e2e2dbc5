from __future__ import annotations

from fastapi import Depends

from referral_market.core.config import Settings, get_settings
from referral_market.pricing.dependencies import get_pricing_resolver
from referral_market.pricing.service import PricingResolver
from referral_market.wallets.service import WalletLedger
from referral_market.wallets.withdrawals import WithdrawalDesk

__all__ = ["get_wallet_ledger", "get_withdrawal_desk"]


def get_wallet_ledger(
    settings: Settings = Depends(get_settings),
    pricing: PricingResolver = Depends(get_pricing_resolver),
) -> WalletLedger:
    return WalletLedger(settings=settings, pricing=pricing)


def get_withdrawal_desk(
    settings: Settings = Depends(get_settings),
    pricing: PricingResolver = Depends(get_pricing_resolver),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> WithdrawalDesk:
    return WithdrawalDesk(ledger=ledger, pricing=pricing, settings=settings)
