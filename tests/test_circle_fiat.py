from __future__ import annotations

import json

import httpx
import pytest

from app.core.config import CircleConfig, Settings
from app.errors import InvalidInputError, UpstreamVenueError
from app.services.fiat import CircleFiatService, PassthroughFiatService, build_fiat_service
from ingestion.circle import CircleClient, normalize_currency
from ingestion.http import build_http_client


CIRCLE_URL = "https://circle.test"


def _client(handler, *, api_key: str | None = "circle-key") -> CircleClient:
    http = build_http_client(base_url=CIRCLE_URL, transport=httpx.MockTransport(handler))
    return CircleClient(CircleConfig(base_url=CIRCLE_URL, api_key=api_key), client=http)


@pytest.mark.parametrize("currency, expected", [("usd", "USD"), (" USDC ", "USDC"), ("usdt", "USDC")])
def test_normalize_currency(currency, expected):
    assert normalize_currency(currency) == expected


def test_normalize_currency_rejects_unknown():
    with pytest.raises(InvalidInputError):
        normalize_currency("EUR")


def test_convert_to_usd_requests_a_quote():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(201, json={"data": {"to": {"amount": "24.98", "currency": "USD"}}})

    service = CircleFiatService(_client(handler))

    assert service.convert_to_usd(25.0, "USDT") == pytest.approx(24.98)
    request = captured[0]
    assert request.url.path == "/v1/exchange/quotes"
    assert request.headers["Authorization"] == "Bearer circle-key"
    body = json.loads(request.content)
    assert body["from"] == {"amount": 25.0, "currency": "USDC"}
    assert body["to"] == {"currency": "USD"}
    assert body["idempotencyKey"]


def test_usd_needs_no_quote():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _client(handler).convert_to_usd(10.0, "USD") == 10.0


def test_quote_errors_surface_as_upstream():
    client = _client(lambda request: httpx.Response(503, text="maintenance"))

    with pytest.raises(UpstreamVenueError) as excinfo:
        client.convert_to_usd(5.0, "USDC")
    assert excinfo.value.status_code == 503


def test_malformed_quote_is_upstream_error():
    client = _client(lambda request: httpx.Response(200, json={"data": {}}))

    with pytest.raises(UpstreamVenueError, match="malformed"):
        client.convert_from_usd(5.0, "USDC")


def test_missing_api_key_is_invalid_input():
    client = _client(lambda request: httpx.Response(200), api_key=None)

    with pytest.raises(InvalidInputError):
        client.convert_to_usd(5.0, "USDC")


def test_passthrough_service():
    service = PassthroughFiatService()

    assert service.convert_to_usd(12.0, "usdc") == 12.0
    assert service.convert_from_usd(12.0, "USDT") == 12.0
    with pytest.raises(InvalidInputError):
        service.convert_to_usd(-1.0, "USDC")
    with pytest.raises(InvalidInputError):
        service.convert_to_usd(1.0, "DOGE")


def test_build_fiat_service_depends_on_api_key():
    assert isinstance(build_fiat_service(Settings()), PassthroughFiatService)
    configured = Settings(circle=CircleConfig(base_url=CIRCLE_URL, api_key="key"))
    assert isinstance(build_fiat_service(configured), CircleFiatService)
