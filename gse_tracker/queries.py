from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from gse_tracker.errors import UpstreamError
from gse_tracker.jobs.ingest import IngestionService
from gse_tracker.models.market import (
    DetailSnapshot,
    LiveQuote,
    MarketSummary,
    SnapshotKind,
    TimeSeriesPoint,
)
from gse_tracker.storage import keys
from gse_tracker.storage.store import TimeSeriesStore
from gse_tracker.storage.symbols import SymbolIndex

log = logging.getLogger("queries")


def is_storable_symbol(symbol: str) -> bool:
    """A symbol can only have stored data if it is non-empty and free of the key separator."""
    return bool(symbol) and keys.SEP not in symbol


class MarketQueries:
    """Read/query surface consumed by the API layer."""

    def __init__(self, store: TimeSeriesStore, symbols: SymbolIndex, ingestion: IngestionService):
        self.store = store
        self.symbols = symbols
        self.ingestion = ingestion

    def list_latest_quotes(self) -> List[LiveQuote]:
        quotes: List[LiveQuote] = []
        for symbol in sorted(self.symbols.list_symbols()):
            quote = self.store.get_latest(symbol, SnapshotKind.LIVE)
            if quote is not None:
                quotes.append(quote)
        return quotes

    def get_latest_quote(self, symbol: str) -> Optional[LiveQuote]:
        if not is_storable_symbol(symbol):
            return None
        return self.store.get_latest(symbol, SnapshotKind.LIVE)

    async def get_symbol(self, symbol: str) -> Optional[Tuple[DetailSnapshot, Optional[LiveQuote]]]:
        """
        Latest detail + latest live quote for one symbol.

        With no stored detail, fetch it on demand first; the symbol is only reported
        missing (None) if that fetch fails too.
        """
        if not is_storable_symbol(symbol):
            log.warning("Rejected symbol=%r", symbol)
            return None

        detail = self.store.get_latest(symbol, SnapshotKind.DETAIL)

        if detail is None:
            try:
                detail = await self.ingestion.fetch_and_store_detail(symbol)
            except UpstreamError as e:
                log.warning("On-demand detail fetch failed for symbol=%s error=%s", symbol, e)
                return None

        return detail, self.store.get_latest(symbol, SnapshotKind.LIVE)

    def get_history(self, symbol: str, start: datetime, end: datetime) -> List[TimeSeriesPoint]:
        if not is_storable_symbol(symbol):
            return []
        return self.store.get_range(symbol, SnapshotKind.LIVE, start, end)

    def get_latest_summary(self) -> Optional[MarketSummary]:
        return self.store.get_latest_summary()
