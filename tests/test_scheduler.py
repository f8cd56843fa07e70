import asyncio
import unittest

from fakes import FakeClock, FakeProvider, FakeSleep, detail, quote, utc

from gse_tracker.config import Settings, TradingWindow
from gse_tracker.errors import StorageError
from gse_tracker.jobs.ingest import IngestionService
from gse_tracker.jobs.retry import RetryExecutor
from gse_tracker.jobs.scheduler import CycleOutcome, IngestionScheduler, is_trading_window
from gse_tracker.models.market import SnapshotKind
from gse_tracker.storage.engine import MemoryEngine
from gse_tracker.storage.store import TimeSeriesStore
from gse_tracker.storage.symbols import SymbolIndex
from gse_tracker.summary.engine import MarketSummaryAggregator

# Wednesday 2024-03-06, inside the 10-15 UTC window
IN_HOURS = utc(2024, 3, 6, 11, 30)


class TestTradingWindow(unittest.TestCase):
    def setUp(self):
        self.window = TradingWindow(open_hour_utc=10, close_hour_utc=15, weekdays_only=True)

    def test_closed_times(self):
        self.assertFalse(is_trading_window(utc(2024, 3, 9, 12, 0), self.window))    # Saturday
        self.assertFalse(is_trading_window(utc(2024, 3, 10, 12, 0), self.window))   # Sunday
        self.assertFalse(is_trading_window(utc(2024, 3, 5, 9, 59), self.window))    # Tuesday, before open
        self.assertFalse(is_trading_window(utc(2024, 3, 5, 15, 0), self.window))    # Tuesday, at close

    def test_open_times(self):
        self.assertTrue(is_trading_window(utc(2024, 3, 6, 10, 0), self.window))     # Wednesday, at open
        self.assertTrue(is_trading_window(utc(2024, 3, 6, 14, 59), self.window))    # Wednesday, last minute

    def test_weekends_allowed_when_not_weekdays_only(self):
        window = TradingWindow(open_hour_utc=10, close_hour_utc=15, weekdays_only=False)
        self.assertTrue(is_trading_window(utc(2024, 3, 9, 12, 0), window))


class FailingAggregator(MarketSummaryAggregator):
    def __init__(self, store, symbols):
        super().__init__(store, symbols)
        self.calls = 0

    def run(self, now=None):
        self.calls += 1
        raise StorageError("disk full")


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    def build(self, provider, aggregator_cls=MarketSummaryAggregator, **overrides):
        settings = Settings(
            storage_engine="memory",
            max_retries=3,
            retry_delay_seconds=5,
            fetch_detail_data=overrides.pop("fetch_detail_data", False),
            generate_market_summary=overrides.pop("generate_market_summary", True),
            **overrides,
        )
        engine = MemoryEngine()
        self.store = TimeSeriesStore(engine)
        self.clock = FakeClock(IN_HOURS)
        self.sleep = FakeSleep()
        self.provider = provider
        self.aggregator = aggregator_cls(self.store, SymbolIndex(engine))
        self.scheduler = IngestionScheduler(
            IngestionService(provider, self.store, clock=self.clock),
            self.aggregator,
            settings,
            retry=RetryExecutor(sleep=self.sleep),
            clock=self.clock,
        )
        return self.scheduler


class TestRunCycle(SchedulerTestCase):
    async def test_outside_window_is_skipped_without_fetching(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]))

        outcome = await scheduler.run_cycle(utc(2024, 3, 9, 12, 0))

        self.assertEqual(outcome, CycleOutcome.SKIPPED)
        self.assertEqual(self.provider.live_calls, 0)

    async def test_successful_cycle_stores_live_and_summary(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB", change=1.0, volume=4), quote("MTNGH", volume=6)]))

        outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.COMPLETED)
        self.assertEqual(self.store.get_latest("GCB", SnapshotKind.LIVE).volume, 4)
        self.assertEqual(self.store.get_latest_summary().total_volume, 10)

    async def test_live_failures_within_budget_are_retried(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")], live_failures=2))

        outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.COMPLETED)
        self.assertEqual(self.provider.live_calls, 3)
        self.assertEqual(self.sleep.calls, [5, 5])

    async def test_live_failure_after_retries_fails_cycle_and_stops_it(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")], live_failures=99))

        with self.assertLogs("scheduler", level="ERROR"):
            outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.FAILED)
        self.assertEqual(self.provider.live_calls, 4)
        self.assertIsNone(self.store.get_latest_summary())

    async def test_summary_failure_does_not_fail_cycle(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]), aggregator_cls=FailingAggregator)

        with self.assertLogs("scheduler", level="WARNING") as logs:
            outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.COMPLETED)
        self.assertEqual(self.aggregator.calls, 4)
        self.assertTrue(any("market summary" in line for line in logs.output))
        self.assertIsNotNone(self.store.get_latest("GCB", SnapshotKind.LIVE))

    async def test_summary_disabled(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]), generate_market_summary=False)
        await scheduler.run_cycle()
        self.assertIsNone(self.store.get_latest_summary())

    async def test_detail_refresh_when_enabled(self):
        provider = FakeProvider(
            live=[quote("GCB", price=2.0)],
            details={"GCB": detail("GCB", shares=10), "CAL": detail("CAL", shares=5)},
        )
        provider.detail_failures.add("CAL")
        scheduler = self.build(provider, fetch_detail_data=True)

        outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.COMPLETED)
        self.assertEqual(self.store.get_latest("GCB", SnapshotKind.DETAIL).shares, 10)
        self.assertIsNone(self.store.get_latest("CAL", SnapshotKind.DETAIL))
        # summary runs after details, so market cap sees the new share count
        self.assertAlmostEqual(self.store.get_latest_summary().total_market_cap, 20.0)

    async def test_detail_listing_failure_is_not_escalated(self):
        provider = FakeProvider(live=[quote("GCB")])
        provider.summaries_fail = True
        scheduler = self.build(provider, fetch_detail_data=True)

        outcome = await scheduler.run_cycle()

        self.assertEqual(outcome, CycleOutcome.COMPLETED)
        self.assertIsNotNone(self.store.get_latest_summary())


class TestTriggersAndDriver(SchedulerTestCase):
    async def test_trigger_ingestion_runs_in_background(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]))

        task = scheduler.trigger_ingestion()
        self.assertIsInstance(task, asyncio.Task)
        await task

        self.assertIsNotNone(self.store.get_latest("GCB", SnapshotKind.LIVE))

    async def test_trigger_failure_stays_in_log(self):
        scheduler = self.build(FakeProvider(live_failures=99))

        with self.assertLogs("scheduler", level="ERROR"):
            await scheduler.trigger_ingestion()

        # a triggered run is a single attempt
        self.assertEqual(self.provider.live_calls, 1)

    async def test_trigger_detail_refresh_regenerates_summary(self):
        provider = FakeProvider(details={"GCB": detail("GCB", shares=3)})
        scheduler = self.build(provider)
        self.store.append_live("GCB", quote("GCB", price=4.0), IN_HOURS)

        await scheduler.trigger_detail_refresh()

        self.assertAlmostEqual(self.store.get_latest_summary().total_market_cap, 12.0)

    async def test_concurrent_triggers_in_same_second_leave_one_entry(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]))

        await asyncio.gather(scheduler.trigger_ingestion(), scheduler.trigger_ingestion())

        points = self.store.get_range("GCB", SnapshotKind.LIVE, IN_HOURS, IN_HOURS)
        self.assertEqual(len(points), 1)

    async def test_ensure_initial_data_ignores_trading_window(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB", volume=3)]))
        self.clock.now = utc(2024, 3, 9, 3, 0)  # Saturday night

        await scheduler.ensure_initial_data()

        self.assertEqual(self.store.get_latest_summary().total_volume, 3)

    async def test_start_runs_first_cycle_immediately_and_stop_cancels(self):
        scheduler = self.build(FakeProvider(live=[quote("GCB")]))

        task = scheduler.start()
        for _ in range(5):
            await asyncio.sleep(0)
        self.assertEqual(self.provider.live_calls, 1)
        self.assertIs(scheduler.start(), task)

        await scheduler.stop()
        self.assertTrue(task.cancelled())


if __name__ == "__main__":
    unittest.main()
