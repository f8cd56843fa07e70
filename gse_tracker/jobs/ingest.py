from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from gse_tracker.errors import UpstreamError
from gse_tracker.models.market import DetailSnapshot
from gse_tracker.providers.base import DataSourceClient
from gse_tracker.storage.store import TimeSeriesStore

log = logging.getLogger("ingest")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionService:
    """
    Units of ingestion work: fetch from the provider, append to the store.

    One timestamp is taken per batch, so every quote of a fetch shares the same key
    second. Re-running a batch in the same second overwrites instead of duplicating.
    """

    def __init__(
        self,
        provider: DataSourceClient,
        store: TimeSeriesStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.clock = clock

    async def fetch_and_store_live(self) -> int:
        quotes = await self.provider.fetch_all_live()
        timestamp = self.clock()

        for quote in quotes:
            self.store.append_live(quote.symbol, quote, timestamp)

        log.info("Fetched and stored %d live quotes", len(quotes))
        return len(quotes)

    async def refresh_details(self) -> int:
        """
        Fetch and store the detail snapshot of every listed equity.
        A failure for one symbol is logged and skipped; listing or storage failures propagate.
        """
        summaries = await self.provider.fetch_all_summaries()
        timestamp = self.clock()
        stored = 0

        for summary in summaries:
            try:
                detail = await self.provider.fetch_detail(summary.symbol)
            except UpstreamError as e:
                log.warning("Failed to fetch detail for symbol=%s error=%s", summary.symbol, e)
                continue

            self.store.append_detail(detail.symbol, detail, timestamp)
            stored += 1

        log.info("Processed %d equities, stored %d detail snapshots", len(summaries), stored)
        return stored

    async def fetch_and_store_detail(self, symbol: str) -> DetailSnapshot:
        """On-demand detail fetch for a single symbol (used by reads that find no detail)."""
        log.info("Fetching fresh detail for symbol=%s", symbol)
        detail = await self.provider.fetch_detail(symbol)
        self.store.append_detail(detail.symbol, detail, self.clock())
        log.info("Stored detail for symbol=%s company=%s", detail.symbol, detail.company.name)
        return detail
