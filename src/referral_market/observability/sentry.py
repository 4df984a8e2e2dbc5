"""Sentry error tracking integration."""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import sentry_sdk
from pydantic import SecretStr
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.threading import ThreadingIntegration

from referral_market.core.constants import REQUEST_ID_CTX_KEY
from referral_market.core.logging import get_request_id


class SentrySettingsProtocol(Protocol):
    """Protocol defining required Sentry settings fields."""

    enabled: bool
    dsn: SecretStr | None
    environment: str | None
    release: str | None
    sample_rate: float
    traces_sample_rate: float
    send_default_pii: bool
    debug: bool


def configure_sentry(settings: SentrySettingsProtocol) -> bool:
    """Initialise the Sentry SDK; returns False when tracking is disabled."""
    if not settings.enabled or settings.dsn is None:
        return False

    sentry_sdk.init(
        dsn=settings.dsn.get_secret_value(),
        environment=settings.environment or os.getenv("ENVIRONMENT", "development"),
        release=settings.release or os.getenv("APP_VERSION", "unknown"),
        sample_rate=settings.sample_rate,
        traces_sample_rate=settings.traces_sample_rate,
        send_default_pii=settings.send_default_pii,
        debug=settings.debug,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            ThreadingIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_before_send,
    )
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Drop health check noise before it leaves the process."""
    if event.get("request", {}).get("url", "").endswith("/health"):
        return None
    return event


def capture_exception(exception: BaseException, **extra_context: Any) -> None:
    """Capture exception with additional context.

    A no-op when the SDK has not been initialised.
    """
    with sentry_sdk.new_scope() as scope:
        request_id = get_request_id()
        if request_id is not None:
            scope.set_tag(REQUEST_ID_CTX_KEY, request_id)
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    **data: Any,
) -> None:
    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data)
