import unittest
from datetime import datetime, timedelta, timezone

from fakes import FakeProvider, detail, quote, utc
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gse_tracker.api.routes import install_error_handlers, router
from gse_tracker.config import Settings
from gse_tracker.errors import StorageError
from gse_tracker.models.market import MarketSummary
from gse_tracker.state import build_services
from gse_tracker.storage.engine import MemoryEngine


class BrokenEngine(MemoryEngine):
    def scan(self, prefix, start=None, reverse=False):
        raise StorageError("engine offline")


def make_app(engine=None, provider=None):
    app = FastAPI()
    app.include_router(router)
    install_error_handlers(app)
    app.state.services = build_services(
        Settings(storage_engine="memory"),
        engine=engine if engine is not None else MemoryEngine(),
        provider=provider if provider is not None else FakeProvider(),
    )
    return app


class TestRoutes(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider(details={"GCB": detail("GCB", price=5.0, shares=10)})
        self.app = make_app(provider=self.provider)
        self.store = self.app.state.services.store

    def test_health(self):
        with TestClient(self.app) as client:
            body = client.get("/health").json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["status"], "healthy")

    def test_list_stocks(self):
        self.store.append_live("GCB", quote("GCB", price=5.0, change=0.1, volume=7), utc(2024, 3, 6, 11))

        with TestClient(self.app) as client:
            body = client.get("/api/stocks").json()

        self.assertEqual(body["data"], [{"symbol": "GCB", "price": 5.0, "change": 0.1, "volume": 7}])

    def test_stock_detail_with_live_data(self):
        self.store.append_detail("GCB", detail("GCB", price=5.0, shares=10), utc(2024, 3, 6, 10))
        self.store.append_live("GCB", quote("GCB", price=5.2), utc(2024, 3, 6, 11))

        with TestClient(self.app) as client:
            body = client.get("/api/stocks/gcb").json()

        self.assertEqual(body["data"]["symbol"], "GCB")
        self.assertEqual(body["data"]["shares"], 10)
        self.assertEqual(body["data"]["live_data"]["price"], 5.2)

    def test_stock_falls_back_to_live_only(self):
        self.store.append_live("MTNGH", quote("MTNGH", price=1.5), utc(2024, 3, 6, 11))

        with TestClient(self.app) as client:
            resp = client.get("/api/stocks/MTNGH")

        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(data["name"], "MTNGH")
        self.assertEqual(data["price"], 1.5)
        self.assertEqual(data["live_data"]["symbol"], "MTNGH")

    def test_unknown_stock_is_404(self):
        with TestClient(self.app) as client:
            resp = client.get("/api/stocks/NOPE")

        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["success"])

    def test_history_with_bounds(self):
        for hour in (9, 10, 11):
            self.store.append_live("GCB", quote("GCB", price=float(hour)), utc(2024, 3, 6, hour))

        with TestClient(self.app) as client:
            body = client.get(
                "/api/stocks/GCB/history",
                params={"from": "2024-03-06T10:00:00Z", "to": "2024-03-06T11:00:00+00:00"},
            ).json()

        self.assertEqual([p["value"] for p in body["data"]], [10.0, 11.0])

    def test_history_ignores_unparseable_bounds(self):
        now = datetime.now(timezone.utc)
        self.store.append_live("GCB", quote("GCB", price=1.0), now - timedelta(days=40))
        self.store.append_live("GCB", quote("GCB", price=2.0), now - timedelta(days=1))

        with TestClient(self.app) as client:
            resp = client.get("/api/stocks/GCB/history", params={"from": "yesterday", "to": "not-a-date"})

        # falls back to the last 30 days
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([p["value"] for p in resp.json()["data"]], [2.0])

    def test_symbol_with_separator_is_unknown(self):
        self.store.append_live("A", quote("A"), utc(2024, 3, 6, 11))

        with TestClient(self.app) as client:
            stock = client.get("/api/stocks/A:B")
            history = client.get("/api/stocks/A:B/history")

        self.assertEqual(stock.status_code, 404)
        self.assertEqual(stock.json()["success"], False)
        self.assertIsNotNone(stock.json()["error"])
        self.assertEqual(self.provider.detail_calls, [])

        self.assertEqual(history.status_code, 200)
        self.assertEqual(history.json(), {"success": True, "data": [], "error": None})

    def test_market_summary(self):
        with TestClient(self.app) as client:
            self.assertEqual(client.get("/api/market/summary").status_code, 404)

            self.store.append_summary(
                MarketSummary(total_market_cap=1.0, total_volume=2, total_symbols=3, computed_at=utc(2024, 3, 6)),
                utc(2024, 3, 6),
            )
            body = client.get("/api/market/summary").json()

        self.assertEqual(body["data"]["total_symbols"], 3)

    def test_admin_triggers_return_immediately(self):
        with TestClient(self.app) as client:
            for path in ("/api/admin/refresh", "/api/admin/refresh-equity"):
                resp = client.post(path)
                self.assertEqual(resp.status_code, 200)
                self.assertEqual(resp.json()["data"]["status"], "started")

    def test_storage_failure_is_500(self):
        app = make_app(engine=BrokenEngine())

        with TestClient(app) as client:
            resp = client.get("/api/stocks")

        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.json()["success"])


if __name__ == "__main__":
    unittest.main()
