from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from gse_tracker.config import Settings, TradingWindow
from gse_tracker.jobs.ingest import IngestionService, utcnow
from gse_tracker.jobs.retry import RetryExecutor
from gse_tracker.summary.engine import MarketSummaryAggregator

log = logging.getLogger("scheduler")


class CycleOutcome(str, Enum):
    SKIPPED = "skipped"      # outside the trading window (policy, not an error)
    COMPLETED = "completed"
    FAILED = "failed"        # live ingestion failed after all retries


def is_trading_window(now: datetime, window: TradingWindow) -> bool:
    """True iff `now` (UTC) is a permitted weekday and open_hour <= hour < close_hour."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    if window.weekdays_only and now.weekday() >= 5:
        return False
    return window.open_hour_utc <= now.hour < window.close_hour_utc


class IngestionScheduler:
    """
    Periodic ingestion driver.

    Each tick: gate on the trading window, then
      1. live ingestion      (retried; failure ends the cycle as FAILED)
      2. detail refresh      (optional; retried; failure only logged)
      3. market summary      (optional; retried; failure only logged)

    Missing live data is a failed cycle; a stale summary or missing details are not.
    Ad-hoc triggers run as independent fire-and-forget tasks against the same store.
    """

    def __init__(
        self,
        ingestion: IngestionService,
        aggregator: MarketSummaryAggregator,
        settings: Settings,
        retry: Optional[RetryExecutor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ingestion = ingestion
        self.aggregator = aggregator
        self.settings = settings
        self.retry = retry or RetryExecutor()
        self.clock = clock

        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------
    # One cycle
    # -------------------------
    async def run_cycle(self, now: Optional[datetime] = None) -> CycleOutcome:
        now = now or self.clock()
        window = self.settings.trading_window
        log.info("Starting scrape cycle at %s", now.isoformat())

        if not is_trading_window(now, window):
            log.info(
                "Outside trading hours (%02d:00-%02d:00 UTC%s). now=%s weekday=%s. Skipping scrape.",
                window.open_hour_utc,
                window.close_hour_utc,
                ", Mon-Fri" if window.weekdays_only else "",
                now.strftime("%Y-%m-%d %H:%M:%S"),
                now.strftime("%A"),
            )
            return CycleOutcome.SKIPPED

        try:
            await self._with_retry("fetch live data", self.ingestion.fetch_and_store_live)
        except Exception as e:
            log.error("Scrape cycle failed: live data unavailable error=%s", e)
            return CycleOutcome.FAILED

        if self.settings.fetch_detail_data:
            try:
                await self._with_retry("refresh equity details", self.ingestion.refresh_details)
            except Exception as e:
                log.warning("Failed to refresh equity details: %s", e)

        if self.settings.generate_market_summary:
            try:
                await self._with_retry("generate market summary", self._generate_summary)
            except Exception as e:
                log.warning("Failed to generate market summary: %s", e)

        log.info("Completed scrape cycle at %s", self.clock().isoformat())
        return CycleOutcome.COMPLETED

    async def _with_retry(self, name: str, operation: Callable[[], Awaitable]) -> None:
        await self.retry.execute(
            operation,
            max_retries=self.settings.max_retries,
            delay=self.settings.retry_delay_seconds,
            name=name,
        )

    async def _generate_summary(self) -> None:
        self.aggregator.run(self.clock())

    # -------------------------
    # Periodic driver
    # -------------------------
    async def run_forever(self) -> None:
        """Run one cycle now, then one per scrape interval (fixed rate) until cancelled."""
        interval = self.settings.scrape_interval_seconds
        log.info("Starting data scraping worker with interval: %d seconds", interval)

        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while True:
            try:
                await self.run_cycle()
            except Exception:
                # Keep the driver alive whatever a single cycle does.
                log.exception("Unexpected error in scrape cycle")

            next_tick += interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def start(self) -> asyncio.Task:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run_forever(), name="ingestion-scheduler")
        return self._loop_task

    async def stop(self) -> None:
        tasks = [t for t in [self._loop_task, *self._tasks] if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None

    # -------------------------
    # Ad-hoc triggers (fire-and-forget)
    # -------------------------
    def trigger_ingestion(self) -> asyncio.Task:
        return self._spawn("live data refresh", self._triggered_ingestion)

    def trigger_detail_refresh(self) -> asyncio.Task:
        return self._spawn("equity data refresh", self._triggered_detail_refresh)

    async def ensure_initial_data(self) -> None:
        """Startup warm-up: live fetch then summary, regardless of the trading window."""
        log.info("Ensuring initial data availability...")
        try:
            await self.ingestion.fetch_and_store_live()
        except Exception as e:
            log.error("Initial data fetch failed: %s", e)
            return

        try:
            self.aggregator.run(self.clock())
        except Exception as e:
            log.error("Initial market summary generation failed: %s", e)
            return

        log.info("Initial data and summary ready")

    async def _triggered_ingestion(self) -> None:
        await self.ingestion.fetch_and_store_live()

    async def _triggered_detail_refresh(self) -> None:
        await self.ingestion.refresh_details()
        # Regenerate the summary so market cap reflects the new share counts
        self.aggregator.run(self.clock())

    def _spawn(self, name: str, operation: Callable[[], Awaitable]) -> asyncio.Task:
        async def runner() -> None:
            try:
                await operation()
            except Exception as e:
                log.error("Background %s failed: %s", name, e)
            else:
                log.info("Background %s completed successfully", name)

        task = asyncio.create_task(runner(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
