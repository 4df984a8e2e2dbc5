from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

import referral_market.directory.models  # noqa: F401 - register directory tables
import referral_market.expiration.models  # noqa: F401 - register expiration run log
import referral_market.points.models  # noqa: F401 - register points tables
import referral_market.pricing.models  # noqa: F401 - register pricing settings
import referral_market.referrals.models  # noqa: F401 - register referral tables
import referral_market.stats.models  # noqa: F401 - register referrer stats
import referral_market.wallets.models  # noqa: F401 - register wallet tables
from referral_market.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from referral_market.api.routes import load_routers
from referral_market.core.config import Settings, get_settings
from referral_market.core.lifespan import create_lifespan
from referral_market.core.logging import configure_logging
from referral_market.observability import configure_sentry, metrics_service


def _register_middlewares(app: FastAPI) -> None:
    # Last added runs outermost, so request logs carry the correlation id.
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def _register_routers(app: FastAPI) -> None:
    for router in load_routers():
        app.include_router(router)


def create_app() -> FastAPI:
    settings: Settings = get_settings()
    configure_logging(settings)

    # Configure Sentry first to capture all initialization errors
    if settings.sentry.enabled and settings.sentry.dsn:
        configure_sentry(settings.sentry)

    app = FastAPI(
        title=settings.project_name,
        description=settings.project_description,
        version=settings.project_version,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        default_response_class=ORJSONResponse,
        lifespan=create_lifespan(settings),
    )

    app.state.settings = settings
    app.openapi_tags = [
        {"name": "health", "description": "Service health check operations"},
        {
            "name": "referrals",
            "description": (
                "Referral request lifecycle: create, claim, proof, verify, cancel."
            ),
        },
        {"name": "wallet", "description": "Balances, holds and the transaction ledger."},
        {"name": "points", "description": "Referrer reward points and conversion."},
        {
            "name": "admin",
            "description": (
                "Expiration sweeps, stats recomputation and pricing cache control. "
                "Requires an administrator identity."
            ),
        },
    ]

    metrics_service.instrument_app(app, settings.prometheus)

    _register_middlewares(app)
    _register_routers(app)

    return app
