import asyncio
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gse_tracker.api.routes import install_error_handlers
from gse_tracker.api.routes import router as api_router
from gse_tracker.config import get_settings
from gse_tracker.state import build_services

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("main")

app = FastAPI(title="GSE Tracker API", version="0.1.0")
app.include_router(api_router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


@app.on_event("startup")
async def _startup():
    log.info("Starting GSE tracker app_env=%s storage=%s", settings.app_env, settings.storage_engine)

    services = build_services(settings)
    app.state.services = services

    # Periodic scrape loop (trading-window gated)
    services.scheduler.start()
    log.info("Background worker started with config: %s", settings)

    # Warm-up so the API has data before the first in-hours tick
    app.state.warmup = asyncio.create_task(services.scheduler.ensure_initial_data())


@app.on_event("shutdown")
async def _shutdown():
    services = getattr(app.state, "services", None)
    if services is None:
        return

    warmup = getattr(app.state, "warmup", None)
    if warmup is not None and not warmup.done():
        warmup.cancel()

    await services.scheduler.stop()
    await services.provider.aclose()
    services.engine.close()
    log.info("Shutdown complete")


def run() -> None:
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
