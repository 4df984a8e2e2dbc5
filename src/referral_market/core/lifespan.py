from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.types import Lifespan

from referral_market.core.config import Settings
from referral_market.db.session import dispose_engine, get_engine
from referral_market.expiration.tasks import ExpirationScheduler
from referral_market.pricing.dependencies import get_pricing_resolver


def create_lifespan(settings: Settings) -> Lifespan[FastAPI]:
    logger = structlog.get_logger(__name__).bind(environment=settings.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("application_startup")
        # Initialise pooled resources so they can be reused across requests.
        get_engine(settings)
        get_pricing_resolver()

        scheduler = ExpirationScheduler(settings)
        try:
            scheduler.start()
        except Exception:
            logger.exception("expiration_scheduler_start_failed")
            raise
        app.state.expiration_scheduler = scheduler

        try:
            yield
        finally:
            try:
                scheduler.stop()
            except Exception:
                logger.exception("expiration_scheduler_stop_failed")
            finally:
                app.state.expiration_scheduler = None

            await dispose_engine()
            logger.info("application_shutdown")

    return lifespan
