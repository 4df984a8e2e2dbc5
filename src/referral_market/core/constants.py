"""Global constants for the referral marketplace service."""

from __future__ import annotations

from decimal import Decimal

SERVICE_NAME = "referral-market"
DEFAULT_TIMEZONE = "UTC"
REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_CTX_KEY = "request_id"
USER_ID_HEADER = "X-User-Id"
DEFAULT_ENV_FILE = ".env"
SECRETS_DIR = "/run/secrets"

DEFAULT_CURRENCY = "INR"
MONEY_QUANTUM = Decimal("0.01")
