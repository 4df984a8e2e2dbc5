from __future__ import annotations

from .enums import (
    HoldAction,
    HoldStatus,
    TransactionSource,
    TransactionStatus,
    TransactionType,
    WalletStatus,
)
from .models import Wallet, WalletHold, WalletHoldEvent, WalletTransaction
from .service import HoldRelease, WalletBalance, WalletLedger, WalletSummary

__all__ = [
    "HoldAction",
    "HoldStatus",
    "TransactionSource",
    "TransactionStatus",
    "TransactionType",
    "WalletStatus",
    "Wallet",
    "WalletHold",
    "WalletHoldEvent",
    "WalletTransaction",
    "HoldRelease",
    "WalletBalance",
    "WalletLedger",
    "WalletSummary",
]
