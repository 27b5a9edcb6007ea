from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app import schemas
from app.core.config import SyncConfig
from app.errors import ConflictError, NotFoundError, StoreError, UpstreamVenueError
from app.main import _market_service, _order_service, _sync_service, app, build_odds_job
from app.services.market_service import MarketQuery
from app.services.sync_service import SyncSummary


CID = "ab" * 32


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def order_service(client):
    service = MagicMock()
    app.dependency_overrides[_order_service] = lambda: service
    return service


@pytest.fixture
def market_service(client):
    service = MagicMock()
    app.dependency_overrides[_market_service] = lambda: service
    return service


def test_healthcheck(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_sync_platform_reports_summary(client):
    service = MagicMock()
    service.sync_platform.return_value = SyncSummary(platform="kalshi", event_type="sports", batches=3, events=42)
    app.dependency_overrides[_sync_service] = lambda: service

    response = client.post("/sync/platform/kalshi", params={"type": "sports"})

    assert response.status_code == 200
    assert "42" in response.json()["message"]
    service.sync_platform.assert_called_once_with("kalshi", "sports")


def test_sync_failures_are_server_errors(client):
    service = MagicMock()
    service.sync_platform.side_effect = NotFoundError("platform augur not found")
    app.dependency_overrides[_sync_service] = lambda: service

    response = client.post("/sync/platform/augur")

    assert response.status_code == 500
    assert response.json() == {"error": "platform augur not found"}


def test_list_markets_passes_query(client, market_service):
    market_service.list_markets.return_value = schemas.MarketList(total=0, page=2, page_size=5, items=[])

    response = client.get("/api/markets", params={"type": "nba", "status": "resolved", "page": 2, "page_size": 5})

    assert response.status_code == 200
    assert response.json() == {"total": 0, "page": 2, "page_size": 5, "items": []}
    market_service.list_markets.assert_called_once_with(
        MarketQuery(sport_type="nba", status="resolved", page=2, page_size=5)
    )


def test_market_detail(client, market_service):
    market_service.get_market_detail.return_value = schemas.MarketDetail(
        canonical_id=7,
        event=schemas.MarketEvent(event_uuid="1_100", title="Lakers vs Celtics", type="sports", status="active"),
        analytics=schemas.MarketAnalytics(best_price=0.62),
    )

    response = client.get("/api/markets/7")

    assert response.status_code == 200
    assert response.json()["canonical_id"] == 7
    market_service.get_market_detail.assert_called_once_with("7")


def test_market_errors_are_server_errors(client, market_service):
    market_service.get_market_detail.side_effect = NotFoundError("market 9 not found")

    response = client.get("/api/markets/9")

    assert response.status_code == 500
    assert response.json() == {"error": "market 9 not found"}


def test_prepare_order(client, order_service):
    order_service.prepare.return_value = schemas.PrepareOrderResponse(
        locked_odds=0.62, message_to_sign="PlaceOrder:x", expires_at_sec=1800000300
    )

    response = client.post(
        "/api/orders/prepare", json={"contract_order_id": CID, "event_uuid": "1_100", "bet_option": "YES"}
    )

    assert response.status_code == 200
    assert response.json()["locked_odds"] == 0.62
    order_service.prepare.assert_called_once_with(CID, "1_100", "YES")


def test_place_conflict_is_bad_request(client, order_service):
    order_service.place.side_effect = ConflictError("contract order already processed")

    response = client.post("/api/orders/place", json={"contract_order_id": CID, "event_uuid": "1_100", "bet_option": "YES"})

    assert response.status_code == 400
    assert response.json() == {"error": "contract order already processed"}


def test_place_venue_failure_is_server_error(client, order_service):
    order_service.place.side_effect = UpstreamVenueError("kalshi place order rejected", status_code=400)

    response = client.post("/api/orders/place", json={"contract_order_id": CID, "event_uuid": "1_100", "bet_option": "YES"})

    assert response.status_code == 500
    assert "kalshi place order rejected" in response.json()["error"]


def test_malformed_body_is_bad_request(client, order_service):
    response = client.post("/api/orders/place", content="not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert "error" in response.json()
    order_service.place.assert_not_called()


def test_unfreeze_returns_tx_hash(client, order_service):
    order_service.unfreeze.return_value = "0xrefund"

    response = client.post("/api/orders/unfreeze", json={"contract_order_id": CID, "wallet": "0xabc"})

    assert response.status_code == 200
    assert response.json() == {"tx_hash": "0xrefund"}
    order_service.unfreeze.assert_called_once_with(CID, "0xabc")


def test_contract_order_status_route_is_not_an_order_uuid(client, order_service):
    order_service.contract_order_status.return_value = "unprocessed"

    response = client.get("/api/orders/contract-order-status", params={"contract_order_id": CID})

    assert response.json() == {"status": "unprocessed"}
    order_service.order_detail.assert_not_called()


def test_order_detail_errors_are_server_errors(client, order_service):
    order_service.order_detail.side_effect = NotFoundError("order missing not found")

    response = client.get("/api/orders/missing")

    assert response.status_code == 500


def test_list_orders(client, order_service):
    order_service.list_orders.return_value = schemas.OrderList(total=0, page=1, page_size=20, items=[])

    response = client.get("/api/orders", params={"wallet": "0xabc", "status": "placed"})

    assert response.status_code == 200
    order_service.list_orders.assert_called_once_with("0xabc", status="placed", page=1, page_size=20)


def test_withdraw(client, order_service):
    info = schemas.WithdrawInfo(
        order_uuid=CID, type="kalshi", fund_currency="USDC", payout_amount=25.0, user_amount=25.0, status="withdrawn"
    )
    order_service.request_withdraw.return_value = schemas.WithdrawResult(order_uuid=CID, status="withdrawn", withdraw=info)

    response = client.post(f"/api/orders/{CID}/withdraw")

    assert response.status_code == 200
    assert response.json()["withdraw"]["type"] == "kalshi"


def test_store_errors_are_server_errors(client, order_service):
    order_service.withdraw_info.side_effect = StoreError("database unavailable")

    response = client.get(f"/api/orders/{CID}/withdraw-info")

    assert response.status_code == 500
    assert response.json() == {"error": "database unavailable"}


@pytest.mark.parametrize(
    "enabled, interval, starts",
    [(True, 30, True), (True, 0, False), (False, 30, False)],
)
def test_odds_job_needs_a_positive_interval(enabled, interval, starts):
    job = build_odds_job(SyncConfig(odds_sync_enabled=enabled, odds_sync_interval_sec=interval))

    assert (job is not None) == starts
    if starts:
        assert job.interval == 30.0
        assert not job.running
