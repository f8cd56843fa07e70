from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from gse_tracker.config import Settings
from gse_tracker.jobs.ingest import IngestionService
from gse_tracker.jobs.scheduler import IngestionScheduler
from gse_tracker.providers.base import DataSourceClient
from gse_tracker.providers.loader import get_provider
from gse_tracker.queries import MarketQueries
from gse_tracker.storage.engine import KVEngine, MemoryEngine, RocksEngine
from gse_tracker.storage.store import TimeSeriesStore
from gse_tracker.storage.symbols import SymbolIndex
from gse_tracker.summary.engine import MarketSummaryAggregator


@dataclass
class Services:
    """Everything the running process shares; built once at startup and passed down."""
    settings: Settings
    engine: KVEngine
    provider: DataSourceClient
    store: TimeSeriesStore
    symbols: SymbolIndex
    ingestion: IngestionService
    aggregator: MarketSummaryAggregator
    scheduler: IngestionScheduler
    queries: MarketQueries


def open_engine(settings: Settings) -> KVEngine:
    name = settings.storage_engine
    if name == "rocksdb":
        return RocksEngine(settings.database_path)
    if name == "memory":
        return MemoryEngine()
    raise ValueError(f"Unknown STORAGE_ENGINE='{settings.storage_engine}'. Expected: rocksdb, memory")


def build_services(
    settings: Settings,
    engine: Optional[KVEngine] = None,
    provider: Optional[DataSourceClient] = None,
) -> Services:
    engine = engine if engine is not None else open_engine(settings)
    provider = provider if provider is not None else get_provider(settings)

    store = TimeSeriesStore(engine)
    symbols = SymbolIndex(engine)
    ingestion = IngestionService(provider, store)
    aggregator = MarketSummaryAggregator(store, symbols)
    scheduler = IngestionScheduler(ingestion, aggregator, settings)
    queries = MarketQueries(store, symbols, ingestion)

    return Services(
        settings=settings,
        engine=engine,
        provider=provider,
        store=store,
        symbols=symbols,
        ingestion=ingestion,
        aggregator=aggregator,
        scheduler=scheduler,
        queries=queries,
    )
