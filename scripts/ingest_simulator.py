from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from gse_tracker.models.market import LiveQuote, SnapshotKind
from gse_tracker.storage.engine import MemoryEngine
from gse_tracker.storage.store import TimeSeriesStore
from gse_tracker.storage.symbols import SymbolIndex
from gse_tracker.summary.engine import MarketSummaryAggregator


def run(symbols: tuple = ("MTNGH", "GCB", "CAL", "EGH", "SCB"), hours: int = 24) -> None:
    """
    Generates fake hourly quotes for `hours` hours and appends them to an in-memory store.

    - Prices do a random walk per symbol.
    - Writes are shuffled so the store has to order them by timestamp, not arrival.
    - Prints the latest quotes, one symbol's history and the market summary at the end.
    """
    engine = MemoryEngine()
    store = TimeSeriesStore(engine)
    aggregator = MarketSummaryAggregator(store, SymbolIndex(engine))

    start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=hours)
    prices = {s: random.uniform(0.5, 10.0) for s in symbols}

    writes = []
    for h in range(hours):
        ts = start + timedelta(hours=h)
        for s in symbols:
            change = round(random.uniform(-0.2, 0.2), 2)
            prices[s] = max(0.01, prices[s] + change)
            writes.append((ts, LiveQuote(symbol=s, price=round(prices[s], 2), change=change,
                                         volume=random.randint(0, 50_000))))

    random.shuffle(writes)
    for ts, q in writes:
        store.append_live(q.symbol, q, ts)

    print(f"Stored {len(writes)} quotes for {len(symbols)} symbols over {hours}h\n")

    for s in sorted(symbols):
        q = store.get_latest(s, SnapshotKind.LIVE)
        print(f"[LATEST] {s} price={q.price} change={q.change} volume={q.volume}")

    first = symbols[0]
    history = store.get_range(first, SnapshotKind.LIVE, start, start + timedelta(hours=5))
    print(f"\n[HISTORY] {first} first 6h:")
    for p in history:
        print(f"  {p.timestamp.isoformat()} value={p.value} volume={p.volume}")

    summary = aggregator.run()
    print("\n[SUMMARY]")
    print(f"  symbols={summary.total_symbols} volume={summary.total_volume}")
    print(f"  gainers={[(q.symbol, q.change) for q in summary.top_gainers]}")
    print(f"  losers={[(q.symbol, q.change) for q in summary.top_losers]}")


if __name__ == "__main__":
    run()
