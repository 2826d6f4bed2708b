"""
HTTP API tests (FastAPI TestClient against an in-memory runtime)
"""

import pytest
from fastapi.testclient import TestClient

import main


@pytest.fixture
def client(runtime, monkeypatch):
    monkeypatch.setattr(main, "runtime", runtime)
    with TestClient(main.app) as test_client:
        yield test_client


def create_account(client, name="Desk", balance=1000):
    response = client.post("/accounts", json={"name": name, "starting_balance": balance})
    assert response.status_code == 201
    return response.json()["account"]["id"]


class TestServiceInfo:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "healthy"
        assert body["symbol"] == "BTCUSDT"

    def test_health_reports_monitor_and_feed(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["exit_monitor"]["is_running"] is False
        assert body["price_feed"] is None
        assert body["open_policy"] == "reject"


class TestAccountsApi:

    def test_create_list_get(self, client):
        account_id = create_account(client, "Alpha", 500)

        listed = client.get("/accounts").json()
        assert [a["id"] for a in listed["accounts"]] == [account_id]

        info = client.get(f"/accounts/{account_id}").json()
        assert info["success"] is True
        assert info["account"]["balance"] == 500.0
        assert info["account"]["position"] is None

    def test_unknown_account_is_404(self, client):
        response = client.get("/accounts/missing")
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "account_not_found",
            "message": "Account not found: missing",
        }

    def test_validation_errors_use_error_shape(self, client):
        response = client.post("/accounts", json={"name": "", "starting_balance": -1})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "invalid_parameter"

    def test_rename_balance_delete(self, client):
        account_id = create_account(client)

        renamed = client.put(f"/accounts/{account_id}/name", json={"name": "Bravo"})
        assert renamed.json()["account"]["name"] == "Bravo"

        updated = client.put(f"/accounts/{account_id}/balance", json={"balance": 42.005})
        assert updated.json()["balance"] == 42.01

        assert client.delete(f"/accounts/{account_id}").status_code == 200
        assert client.get(f"/accounts/{account_id}").status_code == 404


class TestPositionsApi:

    def test_open_exit_and_report(self, client):
        account_id = create_account(client, balance=100)

        opened = client.post(f"/accounts/{account_id}/position", json={
            "side": "long", "margin": 10, "leverage": 5, "entry_price": 100,
        })
        assert opened.status_code == 200
        assert opened.json()["position"]["position_size"] == 50.0

        current = client.get(f"/accounts/{account_id}/position").json()
        assert current["position"]["side"] == "long"
        assert current["unrealized_pnl"] is None

        closed = client.post(f"/accounts/{account_id}/position/exit", json={"exit_price": 110})
        trade = closed.json()["trade"]
        assert trade["pnl"] == 5.0
        assert trade["percentage_pnl"] == 50.0
        assert trade["exit_reason"] == "MANUAL"

        history = client.get(f"/accounts/{account_id}/history", params={"page": 1, "limit": 5}).json()
        assert history["total_trades"] == 1

        summary = client.get(f"/accounts/{account_id}/summary").json()["summary"]
        assert summary["balance"] == 105.0
        assert summary["winning_trades"] == 1

        points = client.get(f"/accounts/{account_id}/balance-history").json()["points"]
        assert [p["balance"] for p in points] == [100.0, 105.0]

    def test_open_twice_is_conflict(self, client):
        account_id = create_account(client)
        payload = {"side": "short", "margin": 10, "leverage": 2, "entry_price": 100}
        client.post(f"/accounts/{account_id}/position", json=payload)

        response = client.post(f"/accounts/{account_id}/position", json=payload)
        assert response.status_code == 409
        assert response.json()["error"] == "position_already_open"

    def test_exit_when_flat(self, client):
        account_id = create_account(client)
        response = client.post(f"/accounts/{account_id}/position/exit", json={"exit_price": 110})
        assert response.status_code == 400
        assert response.json()["error"] == "no_active_trade"

    def test_out_of_range_exit_price_is_bad_request(self, client):
        account_id = create_account(client)
        client.post(f"/accounts/{account_id}/position", json={
            "side": "long", "margin": 10, "leverage": 5, "entry_price": 100,
        })

        response = client.post(f"/accounts/{account_id}/position/exit", json={"exit_price": 1e27})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_parameter"
        assert client.get(f"/accounts/{account_id}").json()["account"]["position"] is not None

    @pytest.mark.parametrize("payload", [
        {"side": "long", "margin": 10, "leverage": 0, "entry_price": 100},
        {"side": "up", "margin": 10, "leverage": 5, "entry_price": 100},
        {"side": "long", "margin": 10, "leverage": 5, "entry_price": 100, "stop_loss": -1},
        {"side": "long", "leverage": 5, "entry_price": 100},
        {"side": "long", "margin": 1e27, "leverage": 1, "entry_price": 100},
    ])
    def test_invalid_open_requests(self, client, payload):
        account_id = create_account(client)
        response = client.post(f"/accounts/{account_id}/position", json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_parameter"
        assert client.get(f"/accounts/{account_id}").json()["account"]["position"] is None


class TestTicksApi:

    def test_tick_triggers_stop_loss(self, client):
        account_id = create_account(client, balance=100)
        client.post(f"/accounts/{account_id}/position", json={
            "side": "long", "margin": 10, "leverage": 5, "entry_price": 100, "stop_loss": 95,
        })

        miss = client.post("/ticks", json={"symbol": "BTCUSDT", "price": 95.01}).json()
        assert miss["accepted"] is True
        assert miss["exits"] == []

        hit = client.post("/ticks", json={"symbol": "BTC/USDT", "price": 95}).json()
        assert [t["exit_reason"] for t in hit["exits"]] == ["STOP_LOSS"]

        status = client.get("/monitor/status").json()
        assert status["exits_executed"] == 1
        assert status["last_price"] == 95.0
        assert status["open_positions"] == 0

    def test_tick_for_other_symbol_is_ignored(self, client):
        body = client.post("/ticks", json={"symbol": "ETHUSDT", "price": 3000}).json()
        assert body["accepted"] is False

    def test_current_position_marked_to_last_tick(self, client):
        account_id = create_account(client)
        client.post(f"/accounts/{account_id}/position", json={
            "side": "short", "margin": 10, "leverage": 5, "entry_price": 100,
        })
        client.post("/ticks", json={"symbol": "BTCUSDT", "price": 90})

        current = client.get(f"/accounts/{account_id}/position").json()
        assert current["mark_price"] == 90.0
        assert current["unrealized_pnl"] == 5.0
