from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SnapshotKind(str, Enum):
    """Kind segment of a storage key."""
    LIVE = "live"
    DETAIL = "detail"
    SUMMARY = "summary"


class LiveQuote(BaseModel):
    """
    LiveQuote = one live trading observation for a symbol.

    symbol: GSE ticker (e.g., MTNGH)
    price: last traded price (GHS)
    change: price change for the session
    volume: shares traded in the session
    """
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    change: float
    volume: int


class Director(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    position: Optional[str] = None


class Company(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    address: Optional[str] = None
    directors: List[Director] = []
    email: Optional[str] = None
    facsimile: Optional[str] = None
    industry: Optional[str] = None
    sector: Optional[str] = None
    telephone: Optional[str] = None
    website: Optional[str] = None


class DetailSnapshot(BaseModel):
    """
    DetailSnapshot = company fundamentals captured at a point in time.

    shares is optional upstream; without it no market cap can be computed.
    dps / eps: dividend and earnings per share.
    """
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    shares: Optional[int] = None
    capital: Optional[float] = None
    dps: Optional[float] = None
    eps: Optional[float] = None
    company: Company


class SymbolSummary(BaseModel):
    """One row of the upstream equities listing."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float


class TimeSeriesPoint(BaseModel):
    """Read-model produced by range queries. Never persisted."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: float
    volume: Optional[int] = None


class MarketSummary(BaseModel):
    """
    Market-wide aggregate computed from the latest snapshot of every symbol.

    top_gainers / top_losers hold at most 5 quotes each.
    """
    model_config = ConfigDict(frozen=True)

    total_market_cap: float
    total_volume: int
    total_symbols: int
    top_gainers: List[LiveQuote] = []
    top_losers: List[LiveQuote] = []
    computed_at: datetime
