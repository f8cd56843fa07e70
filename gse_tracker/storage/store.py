from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from gse_tracker.errors import DecodeError, MalformedKey
from gse_tracker.models.market import (
    DetailSnapshot,
    LiveQuote,
    MarketSummary,
    SnapshotKind,
    TimeSeriesPoint,
)
from gse_tracker.storage import keys
from gse_tracker.storage.engine import KVEngine

log = logging.getLogger("timeseries_store")

STOCK_NAMESPACE = "stock"
MARKET_NAMESPACE = "market"
LAST_UPDATED_PREFIX = b"metadata:last_updated:"

M = TypeVar("M", bound=BaseModel)
Snapshot = Union[LiveQuote, DetailSnapshot]

_SYMBOL_MODELS = {
    SnapshotKind.LIVE: LiveQuote,
    SnapshotKind.DETAIL: DetailSnapshot,
}


def to_epoch_seconds(ts: datetime) -> int:
    """Whole UTC seconds for a datetime (naive values are treated as UTC)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(math.floor(ts.timestamp()))


def from_epoch_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class TimeSeriesStore:
    """
    Append-only, symbol-partitioned snapshot storage on top of an ordered KV engine.

    - appends are single puts (plus the last-updated marker); an identical
      (symbol, kind, timestamp) simply overwrites -> last-writer-wins
    - latest reads scan a partition backwards and return the first entry that decodes
    - range reads seek to the lower bound and stop at the first key past the upper bound
    - undecodable entries are logged and skipped, never raised to the caller
    """

    def __init__(self, engine: KVEngine):
        self.engine = engine

    # -------------------------
    # Writes
    # -------------------------
    def append_live(self, symbol: str, quote: LiveQuote, timestamp: datetime) -> None:
        self._append_symbol(symbol, SnapshotKind.LIVE, quote, timestamp)

    def append_detail(self, symbol: str, detail: DetailSnapshot, timestamp: datetime) -> None:
        self._append_symbol(symbol, SnapshotKind.DETAIL, detail, timestamp)

    def append_summary(self, summary: MarketSummary, timestamp: datetime) -> None:
        key = keys.encode(MARKET_NAMESPACE, None, SnapshotKind.SUMMARY.value, to_epoch_seconds(timestamp))
        self.engine.put(key, summary.model_dump_json().encode("utf-8"))

    def _append_symbol(self, symbol: str, kind: SnapshotKind, snapshot: BaseModel, timestamp: datetime) -> None:
        seconds = to_epoch_seconds(timestamp)
        key = keys.encode(STOCK_NAMESPACE, symbol, kind.value, seconds)
        self.engine.put(key, snapshot.model_dump_json().encode("utf-8"))
        self.engine.put(LAST_UPDATED_PREFIX + symbol.encode("utf-8"), seconds.to_bytes(8, "big", signed=True))

    # -------------------------
    # Reads
    # -------------------------
    def get_latest(self, symbol: str, kind: SnapshotKind) -> Optional[Snapshot]:
        model = _SYMBOL_MODELS[SnapshotKind(kind)]
        prefix = keys.partition_prefix(STOCK_NAMESPACE, symbol, SnapshotKind(kind).value)
        return self._latest(prefix, model)

    def get_latest_summary(self) -> Optional[MarketSummary]:
        prefix = keys.partition_prefix(MARKET_NAMESPACE, None, SnapshotKind.SUMMARY.value)
        return self._latest(prefix, MarketSummary)

    def get_range(
        self,
        symbol: str,
        kind: SnapshotKind,
        start: datetime,
        end: datetime,
    ) -> List[TimeSeriesPoint]:
        """All snapshots with start <= timestamp <= end, ascending, as TimeSeriesPoint."""
        kind = SnapshotKind(kind)
        model = _SYMBOL_MODELS[kind]
        points: List[TimeSeriesPoint] = []

        for seconds, snap in self._range(STOCK_NAMESPACE, symbol, kind, model, start, end):
            points.append(
                TimeSeriesPoint(
                    timestamp=from_epoch_seconds(seconds),
                    value=snap.price,
                    volume=snap.volume if isinstance(snap, LiveQuote) else None,
                )
            )
        return points

    def get_summary_range(self, start: datetime, end: datetime) -> List[MarketSummary]:
        return [
            s for _, s in self._range(MARKET_NAMESPACE, None, SnapshotKind.SUMMARY, MarketSummary, start, end)
        ]

    def get_last_updated(self, symbol: str) -> Optional[datetime]:
        raw = self.engine.get(LAST_UPDATED_PREFIX + symbol.encode("utf-8"))
        if raw is None or len(raw) != 8:
            return None
        return from_epoch_seconds(int.from_bytes(raw, "big", signed=True))

    # -------------------------
    # Internals
    # -------------------------
    def _decode_value(self, key: bytes, raw: bytes, model: Type[M]) -> M:
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            raise DecodeError(key, f"{model.__name__}: {e.error_count()} validation error(s)") from e

    def _latest(self, prefix: bytes, model: Type[M]) -> Optional[M]:
        for key, raw in self.engine.scan(prefix, reverse=True):
            try:
                keys.decode(key)
                return self._decode_value(key, raw, model)
            except (MalformedKey, DecodeError) as e:
                log.warning("Skipping undecodable entry: %s", e)
        return None

    def _range(
        self,
        namespace: str,
        symbol: Optional[str],
        kind: SnapshotKind,
        model: Type[M],
        start: datetime,
        end: datetime,
    ) -> Iterator[Tuple[int, M]]:
        lo = max(0, math.ceil(_as_utc(start).timestamp()))
        hi = min(keys.MAX_TIMESTAMP, to_epoch_seconds(end))
        if hi < lo:
            return

        prefix = keys.partition_prefix(namespace, symbol, kind.value)
        for key, raw in self.engine.scan(prefix, start=keys.encode(namespace, symbol, kind.value, lo)):
            try:
                seconds = keys.decode(key).timestamp
            except MalformedKey as e:
                log.warning("Skipping undecodable entry: %s", e)
                continue

            # keys are ordered by timestamp inside a partition
            if seconds > hi:
                break

            try:
                snap = self._decode_value(key, raw, model)
            except DecodeError as e:
                log.warning("Skipping undecodable entry: %s", e)
                continue
            yield seconds, snap


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts
