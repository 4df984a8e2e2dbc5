"""Scheduled expiration sweeps."""

from __future__ import annotations

import asyncio
import threading

import schedule
import structlog

from referral_market.core.config import Settings
from referral_market.db.session import create_engine, create_session_factory

from .enums import ExpirationTrigger
from .service import ExpirationSummary, build_expiration_sweeper

logger = structlog.get_logger(__name__)


class ExpirationScheduler:
    """Runs the expiration sweep on a fixed interval in a daemon thread."""

    join_timeout_seconds = 5.0

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._scheduler = schedule.Scheduler()
        self._running = False
        self._wakeup = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if not self.settings.expiration.enabled:
            logger.info("expiration_scheduler_disabled")
            return
        if self._running:
            return

        interval = self.settings.expiration.interval_minutes
        self._scheduler.every(interval).minutes.do(self._run_sweep)
        self._running = True
        self._wakeup.clear()
        self._thread = threading.Thread(
            target=self._run_scheduler, name="expiration-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("expiration_scheduler_started", interval_minutes=interval)

    def stop(self) -> None:
        """Stop scheduling and wait for an in-flight sweep to finish."""
        self._running = False
        self._wakeup.set()
        self._scheduler.clear()
        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive():
            thread.join(timeout=self.join_timeout_seconds)
            if thread.is_alive():
                logger.warning(
                    "expiration_scheduler_join_timeout",
                    timeout_seconds=self.join_timeout_seconds,
                )
        logger.info("expiration_scheduler_stopped")

    def _run_scheduler(self) -> None:
        while self._running:
            try:
                self._scheduler.run_pending()
                self._wakeup.wait(1)
            except Exception:
                logger.exception("expiration_scheduler_loop_failed")
                self._wakeup.wait(5)

    def _run_sweep(self) -> None:
        try:
            asyncio.run(run_scheduled_expiration(self.settings))
        except Exception:
            logger.exception("expiration_scheduled_run_failed")


async def run_scheduled_expiration(settings: Settings) -> ExpirationSummary:
    """Run one sweep on a private engine bound to the current event loop."""
    engine = create_engine(settings.database.dsn, echo=settings.database.echo)
    try:
        sweeper = build_expiration_sweeper(
            create_session_factory(engine), settings=settings
        )
        return await sweeper.run(
            batch_size=settings.expiration.batch_size,
            trigger=ExpirationTrigger.SCHEDULED,
        )
    finally:
        await engine.dispose()
