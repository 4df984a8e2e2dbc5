from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Protocol

import structlog

from .enums import ReferralEvent
from .models import ReferralRequest


class ReferralNotifier(Protocol):
    """Delivers lifecycle notifications (push, email, in-app) to users."""

    async def notify(
        self,
        event: ReferralEvent,
        request: ReferralRequest,
        recipients: Sequence[uuid.UUID],
        context: dict[str, Any],
    ) -> None:
        """Dispatch a notification; failures are the caller's to swallow."""


class LoggingReferralNotifier:
    """Default notifier that logs events in lieu of an external integration."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def notify(
        self,
        event: ReferralEvent,
        request: ReferralRequest,
        recipients: Sequence[uuid.UUID],
        context: dict[str, Any],
    ) -> None:
        self._logger.info(
            "referral_notification",
            notification_event=event.value,
            request_id=str(request.id),
            status=request.status.value,
            recipients=[str(recipient) for recipient in recipients],
            context=context,
        )
