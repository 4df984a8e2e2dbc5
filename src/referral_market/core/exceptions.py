"""Error taxonomy shared by every domain module."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, ClassVar


class MarketplaceError(RuntimeError):
    """Base exception for marketplace domain failures."""

    code: ClassVar[str] = "marketplace_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(MarketplaceError):
    """Raised when input or state preconditions are not met."""

    code = "validation_error"


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"


class ConflictError(MarketplaceError):
    """Raised when an operation collides with current persisted state."""

    code = "conflict"


class InsufficientBalanceError(MarketplaceError):
    """Raised when a wallet cannot cover the requested amount."""

    code = "insufficient_balance"

    def __init__(
        self,
        *,
        balance: Decimal,
        available: Decimal,
        required: Decimal,
    ) -> None:
        shortfall = max(required - available, Decimal("0.00"))
        super().__init__(
            f"Insufficient balance. Available: {available}, required: {required}",
            balance=balance,
            available=available,
            required=required,
            shortfall=shortfall,
        )
        self.balance = balance
        self.available = available
        self.required = required
        self.shortfall = shortfall
