from __future__ import annotations

import logging
from typing import Optional, Set

from gse_tracker.storage import keys
from gse_tracker.storage.engine import KVEngine
from gse_tracker.storage.store import STOCK_NAMESPACE

log = logging.getLogger("symbol_index")


class SymbolIndex:
    """
    Set of known symbols, derived from the `stock:` key space (no separate table).

    Skip-scan: once a symbol is seen, the next seek jumps straight past all of
    that symbol's keys, so one listing costs one seek per symbol rather than a
    pass over every stored snapshot.
    """

    def __init__(self, engine: KVEngine):
        self.engine = engine

    def list_symbols(self) -> Set[str]:
        prefix = keys.namespace_prefix(STOCK_NAMESPACE)
        sep = keys.SEP.encode("utf-8")

        symbols: Set[str] = set()
        start: Optional[bytes] = None

        while True:
            row = next(self.engine.scan(prefix, start=start), None)
            if row is None:
                return symbols

            key = row[0]
            symbol_raw, found, _ = key[len(prefix):].partition(sep)
            if not found or not symbol_raw:
                log.warning("Skipping key without symbol field: %r", key)
                start = key + b"\x00"
                continue

            try:
                symbol = symbol_raw.decode("utf-8")
            except UnicodeDecodeError:
                log.warning("Skipping key with non-utf-8 symbol: %r", key)
                start = key + b"\x00"
                continue

            symbols.add(symbol)
            start = keys.symbol_range_end(STOCK_NAMESPACE, symbol)
