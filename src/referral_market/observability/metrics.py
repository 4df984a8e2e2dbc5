"""Prometheus metrics collection and configuration."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

if TYPE_CHECKING:
    from fastapi import FastAPI
    from prometheus_client.registry import CollectorRegistry

# Business metrics
LEDGER_ENTRIES_TOTAL = Counter(
    "wallet_ledger_entries_total",
    "Total number of wallet ledger entries written",
    ["type", "source"],
)

LEDGER_AMOUNT_TOTAL = Counter(
    "wallet_ledger_amount_total",
    "Total amount moved through the wallet ledger",
    ["type", "source"],
)

WALLET_HOLD_EVENTS_TOTAL = Counter(
    "wallet_hold_events_total",
    "Total number of hold placements, releases and conversions",
    ["action"],
)

WALLET_WITHDRAWALS_TOTAL = Counter(
    "wallet_withdrawals_total",
    "Withdrawal requests and decisions",
    ["outcome"],
)

REFERRAL_TRANSITIONS_TOTAL = Counter(
    "referral_request_transitions_total",
    "Referral request state transitions",
    ["from_status", "to_status"],
)

REFERRAL_CLAIM_CONFLICTS_TOTAL = Counter(
    "referral_claim_conflicts_total",
    "Claims rejected because the request was no longer available",
)

POINTS_AWARDS_TOTAL = Counter(
    "referral_points_awards_total",
    "Point award attempts by type and outcome",
    ["points_type", "outcome"],
)

EXPIRATION_RUNS_TOTAL = Counter(
    "referral_expiration_runs_total",
    "Expiration sweeps by trigger and result",
    ["trigger", "success"],
)

EXPIRATION_REQUESTS_TOTAL = Counter(
    "referral_expiration_requests_total",
    "Requests processed by expiration sweeps",
    ["outcome"],
)

EXPIRATION_DURATION_SECONDS = Histogram(
    "referral_expiration_duration_seconds",
    "Time spent running an expiration sweep",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, float("inf")],
)

CACHE_HITS_TOTAL = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
)

CACHE_MISSES_TOTAL = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
)


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry: CollectorRegistry | None = registry
        self._instrumentator: Instrumentator | None = None

    def create_instrumentator(self, settings: Any) -> Instrumentator:
        """Create and configure FastAPI instrumentator."""
        return Instrumentator(
            should_group_status_codes=settings.should_group_status_codes,
            should_ignore_untemplated=settings.should_ignore_untemplated,
            should_group_untemplated=settings.should_group_untemplated,
            should_round_latency_decimals=settings.should_round_latency_decimals,
            should_respect_env_var=settings.should_respect_env_var,
            excluded_handlers=settings.excluded_handlers,
            env_var_name="ENABLE_METRICS",
            round_latency_decimals=4,
            registry=self.registry,
        )

    def instrument_app(self, app: FastAPI, settings: Any) -> None:
        """Instrument FastAPI application with metrics."""
        if not settings.enabled:
            return

        self._instrumentator = self.create_instrumentator(settings)
        self._instrumentator.instrument(app)
        self._instrumentator.expose(
            app,
            should_gzip=True,
            endpoint=settings.metrics_path,
            include_in_schema=False,
        )

    def record_ledger_entry(self, entry_type: str, source: str, amount: Decimal) -> None:
        LEDGER_ENTRIES_TOTAL.labels(type=entry_type, source=source).inc()
        LEDGER_AMOUNT_TOTAL.labels(type=entry_type, source=source).inc(float(amount))

    def record_hold_event(self, action: str) -> None:
        WALLET_HOLD_EVENTS_TOTAL.labels(action=action).inc()

    def record_withdrawal(self, outcome: str) -> None:
        """Outcome is one of ``requested``, ``completed`` or ``rejected``."""
        WALLET_WITHDRAWALS_TOTAL.labels(outcome=outcome).inc()

    def record_transition(self, from_status: str | None, to_status: str) -> None:
        REFERRAL_TRANSITIONS_TOTAL.labels(
            from_status=from_status or "none", to_status=to_status
        ).inc()

    def record_claim_conflict(self) -> None:
        REFERRAL_CLAIM_CONFLICTS_TOTAL.inc()

    def record_points_award(self, points_type: str, outcome: str) -> None:
        """Outcome is one of ``awarded``, ``duplicate`` or ``failed``."""
        POINTS_AWARDS_TOTAL.labels(points_type=points_type, outcome=outcome).inc()

    def record_expiration_run(
        self,
        trigger: str,
        *,
        expired: int,
        failed: int,
        success: bool,
        duration_seconds: float,
    ) -> None:
        EXPIRATION_RUNS_TOTAL.labels(trigger=trigger, success=str(success).lower()).inc()
        EXPIRATION_REQUESTS_TOTAL.labels(outcome="expired").inc(expired)
        EXPIRATION_REQUESTS_TOTAL.labels(outcome="failed").inc(failed)
        EXPIRATION_DURATION_SECONDS.observe(duration_seconds)

    def record_cache_hit(self, cache_type: str = "pricing") -> None:
        CACHE_HITS_TOTAL.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str = "pricing") -> None:
        CACHE_MISSES_TOTAL.labels(cache_type=cache_type).inc()


# Global metrics service instance
metrics_service: MetricsService = MetricsService()
