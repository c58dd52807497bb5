import logging
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient

from portfolio_tracker.database import create_db_engine, create_session_factory, init_db
from portfolio_tracker.main import create_app
from portfolio_tracker.services.repository import SqlLedgerRepository


class TestPortfolioRoutes(unittest.TestCase):
    def setUp(self):
        engine = create_db_engine("sqlite://")
        init_db(engine)
        repo = SqlLedgerRepository(create_session_factory(engine))
        self.alice = repo.create_owner("alice")
        self.bob = repo.create_owner("bob")

        # app startup reconfigures the root logger
        root = logging.getLogger()
        self.addCleanup(setattr, root, "handlers", root.handlers[:])
        self.addCleanup(root.setLevel, root.level)

        self.client = TestClient(create_app(engine))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def _headers(self, owner_id=None):
        return {"X-Owner-Id": str(owner_id or self.alice)}

    def _add_position(self, symbol="AAPL", owner_id=None, **extra):
        body = {"symbol": symbol, "name": f"{symbol} holding", "asset_class": "stock", "current_price": 100.0}
        body.update(extra)
        return self.client.post("/api/portfolio/positions", json=body, headers=self._headers(owner_id))

    def test_snapshot_for_new_owner(self):
        res = self.client.get("/api/portfolio", headers=self._headers())
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["owner_id"], self.alice)
        self.assertEqual(body["positions"], [])
        self.assertEqual(set(body["summary"]["allocation"]), {"stock", "crypto", "etf", "fund"})

    def test_missing_owner_header(self):
        self.assertEqual(self.client.get("/api/portfolio").status_code, 422)

    def test_unknown_owner(self):
        res = self.client.get("/api/portfolio", headers=self._headers(987654))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["detail"], "Owner not found or unauthorized")

    def test_position_and_transaction_flow(self):
        res = self._add_position(initial_quantity=10, initial_price=90.0)
        self.assertEqual(res.status_code, 201)
        position = res.json()
        self.assertEqual(position["quantity"], 10.0)
        self.assertEqual(position["average_cost"], 90.0)

        res = self.client.post(
            "/api/portfolio/transactions",
            json={
                "position_id": position["id"],
                "kind": "sell",
                "quantity": 4,
                "price_per_unit": 120.0,
                "occurred_at": "2099-01-01T00:00:00Z",
            },
            headers=self._headers(),
        )
        self.assertEqual(res.status_code, 201)
        tx_id = res.json()["id"]

        snapshot = self.client.get("/api/portfolio", headers=self._headers()).json()
        self.assertEqual(snapshot["positions"][0]["quantity"], 6.0)
        self.assertEqual(snapshot["summary"]["transaction_count"], 2)

        res = self.client.put(
            f"/api/portfolio/transactions/{tx_id}",
            json={"kind": "sell", "quantity": 5, "price_per_unit": 120.0, "occurred_at": "2099-01-01T00:00:00Z"},
            headers=self._headers(),
        )
        self.assertEqual(res.status_code, 200)

        performers = self.client.get("/api/portfolio/performers?limit=1", headers=self._headers()).json()
        self.assertEqual(len(performers["top"]), 1)
        self.assertAlmostEqual(performers["realized_gains"], 150.0)

        res = self.client.delete(f"/api/portfolio/transactions/{tx_id}", headers=self._headers())
        self.assertEqual(res.status_code, 200)
        snapshot = self.client.get("/api/portfolio", headers=self._headers()).json()
        self.assertEqual(snapshot["positions"][0]["quantity"], 10.0)

    def test_validation_errors_map_to_422(self):
        self.assertEqual(self._add_position(symbol="bad symbol").status_code, 422)
        self.assertEqual(self._add_position(current_price=0).status_code, 422)
        self.assertEqual(self._add_position().status_code, 201)
        res = self._add_position()
        self.assertEqual(res.status_code, 422)
        self.assertIn("already exists", res.json()["detail"])

    def test_other_owner_rows_are_not_found(self):
        foreign = self._add_position("TSLA", owner_id=self.bob).json()
        res = self.client.patch(
            f"/api/portfolio/positions/{foreign['id']}", json={"name": "Mine now"}, headers=self._headers()
        )
        self.assertEqual(res.status_code, 404)
        res = self.client.delete(f"/api/portfolio/positions/{foreign['id']}", headers=self._headers())
        self.assertEqual(res.status_code, 404)
        res = self.client.delete("/api/portfolio/transactions/12345", headers=self._headers())
        self.assertEqual(res.status_code, 404)

    def test_edit_and_delete_position(self):
        position = self._add_position(initial_quantity=1).json()
        res = self.client.patch(
            f"/api/portfolio/positions/{position['id']}",
            json={"name": "Apple", "current_price": 150.0},
            headers=self._headers(),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["name"], "Apple")

        res = self.client.delete(f"/api/portfolio/positions/{position['id']}", headers=self._headers())
        self.assertEqual(res.status_code, 200)
        snapshot = self.client.get("/api/portfolio", headers=self._headers()).json()
        self.assertEqual(snapshot["positions"], [])
        self.assertEqual(snapshot["transactions"], [])

    def test_price_updates_toggle(self):
        res = self.client.post("/api/portfolio/prices/start", headers=self._headers())
        self.assertEqual(res.json(), {"running": False})

        self._add_position(initial_quantity=1)
        res = self.client.post("/api/portfolio/prices/start", headers=self._headers())
        self.assertEqual(res.json(), {"running": True})
        res = self.client.post("/api/portfolio/prices/stop", headers=self._headers())
        self.assertEqual(res.json(), {"running": False})

    def test_search_and_volume(self):
        self._add_position("AAPL", initial_quantity=2, initial_price=50.0)
        self._add_position("MSFT", name="Microsoft")
        self._add_position("APP", owner_id=self.bob)

        res = self.client.get("/api/portfolio/search?q=micro", headers=self._headers())
        self.assertEqual(res.status_code, 200)
        self.assertEqual([p["symbol"] for p in res.json()], ["MSFT"])
        res = self.client.get("/api/portfolio/search?q=ap", headers=self._headers())
        self.assertEqual([p["symbol"] for p in res.json()], ["AAPL"])

        res = self.client.get("/api/portfolio/volume", headers=self._headers())
        self.assertEqual(res.json(), {"buy": 100.0, "sell": 0.0})

    def test_logout_releases_owner_state(self):
        registry = self.client.app.state.registry
        self._add_position(initial_quantity=1)
        self._add_position("TSLA", owner_id=self.bob)
        self.client.post("/api/portfolio/prices/start", headers=self._headers())
        self.assertEqual(len(registry), 2)

        res = self.client.post("/api/portfolio/logout", headers=self._headers())
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(registry), 1)
        # a second logout for the same owner is a no-op
        self.assertEqual(self.client.post("/api/portfolio/logout", headers=self._headers()).status_code, 200)
        self.assertEqual(len(registry), 1)

        # the next request opens a fresh coordinator from storage
        snapshot = self.client.get("/api/portfolio", headers=self._headers()).json()
        self.assertEqual([p["symbol"] for p in snapshot["positions"]], ["AAPL"])
        self.assertEqual(len(registry), 2)
        res = self.client.post("/api/portfolio/prices/stop", headers=self._headers())
        self.assertEqual(res.json(), {"running": False})


if __name__ == "__main__":
    unittest.main()
