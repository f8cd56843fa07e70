from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from gse_tracker.models.market import LiveQuote, MarketSummary, SnapshotKind
from gse_tracker.storage.store import TimeSeriesStore
from gse_tracker.storage.symbols import SymbolIndex

log = logging.getLogger("market_summary")

TOP_N = 5


class MarketSummaryAggregator:
    """
    Computes a market-wide summary from the latest snapshot of every known symbol.

    - total_volume: sum of latest live volumes
    - total_market_cap: sum of price * shares, only where the latest detail carries shares
    - gainers: change > 0, descending; losers: change < 0, ascending (most negative first)
    - change == 0 is in neither list
    - ties keep symbol order (symbols are visited sorted; both sorts are stable)
    """

    def __init__(self, store: TimeSeriesStore, symbols: SymbolIndex):
        self.store = store
        self.symbols = symbols

    def compute(self, now: Optional[datetime] = None) -> MarketSummary:
        now = now or datetime.now(timezone.utc)

        all_symbols = sorted(self.symbols.list_symbols())
        total_market_cap = 0.0
        total_volume = 0
        gainers: List[LiveQuote] = []
        losers: List[LiveQuote] = []

        for symbol in all_symbols:
            live = self.store.get_latest(symbol, SnapshotKind.LIVE)
            if live is None:
                continue

            total_volume += live.volume

            detail = self.store.get_latest(symbol, SnapshotKind.DETAIL)
            if detail is not None and detail.shares is not None:
                total_market_cap += live.price * detail.shares

            if live.change > 0:
                gainers.append(live)
            elif live.change < 0:
                losers.append(live)

        gainers.sort(key=lambda q: q.change, reverse=True)
        losers.sort(key=lambda q: q.change)

        return MarketSummary(
            total_market_cap=total_market_cap,
            total_volume=total_volume,
            total_symbols=len(all_symbols),
            top_gainers=gainers[:TOP_N],
            top_losers=losers[:TOP_N],
            computed_at=now,
        )

    def run(self, now: Optional[datetime] = None) -> MarketSummary:
        """Compute and persist one summary keyed at `now`."""
        now = now or datetime.now(timezone.utc)
        summary = self.compute(now)
        self.store.append_summary(summary, now)

        log.info(
            "Stored market summary symbols=%d volume=%d market_cap=%.2f",
            summary.total_symbols,
            summary.total_volume,
            summary.total_market_cap,
        )
        return summary
