from gse_tracker.config import Settings
from gse_tracker.providers.base import DataSourceClient
from gse_tracker.providers.gse import GseClient


def get_provider(settings: Settings) -> DataSourceClient:
    """
    Provider loader / factory.

    Reads PROVIDER from settings and returns an instance of the selected provider.
    This is the single place that knows about concrete providers.
    """
    provider_name = settings.provider.strip().upper()

    if provider_name == "GSE":
        return GseClient(
            base_url=settings.gse_base_url,
            timeout_s=settings.gse_timeout_seconds,
            max_retries=settings.gse_max_retries,
        )

    raise ValueError(f"Unknown PROVIDER='{settings.provider}'. Expected: GSE")
