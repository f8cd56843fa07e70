from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from gse_tracker.models.market import DetailSnapshot, LiveQuote, SymbolSummary


class DataSourceClient(ABC):
    """
    Data-source contract (interface).

    Any provider must implement:
    - fetch_all_live(): live quotes for every listed symbol
    - fetch_all_summaries(): the equities listing (symbol + price)
    - fetch_detail(): company fundamentals for one symbol

    Each call retries internally and raises UpstreamError once its own budget is spent.
    """

    @abstractmethod
    async def fetch_all_live(self) -> List[LiveQuote]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_all_summaries(self) -> List[SymbolSummary]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_detail(self, symbol: str) -> DetailSnapshot:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass
