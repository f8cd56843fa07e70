from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Path, Query, Request
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError

from gse_tracker.errors import GseTrackerError, NotFound
from gse_tracker.state import Services

router = APIRouter()
log = logging.getLogger("api")

HISTORY_DEFAULT_DAYS = 30

_DATETIME = TypeAdapter(datetime)


def ok(data: Any) -> dict:
    return {"success": True, "data": data, "error": None}


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "data": None, "error": message})


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        log.warning("Not found path=%s what=%s", request.url.path, exc.what)
        return fail(404, str(exc))

    @app.exception_handler(GseTrackerError)
    async def _internal(request: Request, exc: GseTrackerError):
        log.error("Request failed path=%s error=%s", request.url.path, exc)
        return fail(500, "internal error")


def services_of(request: Request) -> Services:
    return request.app.state.services


def parse_bound(raw: Optional[str], default: datetime) -> datetime:
    """
    Lenient RFC 3339 parsing for history bounds.
    Missing or unparseable values fall back to `default` instead of failing the request.
    """
    if raw is None:
        return default
    try:
        dt = _DATETIME.validate_python(raw)
    except ValidationError:
        log.warning("Ignoring unparseable history bound value=%r", raw)
        return default
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


@router.get("/health")
def health():
    return ok({"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()})


@router.get("/api/stocks")
def list_stocks(request: Request):
    """Latest live quote of every known symbol."""
    quotes = services_of(request).queries.list_latest_quotes()
    return ok([q.model_dump(mode="json") for q in quotes])


@router.get("/api/stocks/{symbol}")
async def get_stock(request: Request, symbol: str = Path(..., description="GSE ticker, e.g. MTNGH")):
    """
    Detail + live data for one symbol.
    No stored detail -> fetch on demand; if that fails, fall back to live data alone.
    """
    queries = services_of(request).queries
    symbol = symbol.upper()

    found = await queries.get_symbol(symbol)
    if found is not None:
        detail, live = found
        body = detail.model_dump(mode="json")
        if live is not None:
            body["live_data"] = live.model_dump(mode="json")
        return ok(body)

    live = queries.get_latest_quote(symbol)
    if live is None:
        raise NotFound(f"stock {symbol}")

    return ok({"name": symbol, "price": live.price, "live_data": live.model_dump(mode="json")})


@router.get("/api/stocks/{symbol}/history")
def get_stock_history(
    request: Request,
    symbol: str,
    from_: Optional[str] = Query(None, alias="from", description="RFC 3339 lower bound (default: 30 days ago)"),
    to: Optional[str] = Query(None, description="RFC 3339 upper bound (default: now)"),
):
    now = datetime.now(timezone.utc)
    start = parse_bound(from_, now - timedelta(days=HISTORY_DEFAULT_DAYS))
    end = parse_bound(to, now)

    points = services_of(request).queries.get_history(symbol.upper(), start, end)
    return ok([p.model_dump(mode="json") for p in points])


@router.get("/api/market/summary")
def get_market_summary(request: Request):
    summary = services_of(request).queries.get_latest_summary()
    if summary is None:
        raise NotFound("market summary")
    return ok(summary.model_dump(mode="json"))


@router.post("/api/admin/refresh")
async def trigger_refresh(request: Request):
    services_of(request).scheduler.trigger_ingestion()
    return ok({"message": "Data refresh triggered", "status": "started"})


@router.post("/api/admin/refresh-equity")
async def trigger_equity_refresh(request: Request):
    services_of(request).scheduler.trigger_detail_refresh()
    return ok({"message": "Equity data refresh triggered (this will take several minutes)", "status": "started"})
