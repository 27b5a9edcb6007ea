from __future__ import annotations

import math
from typing import Any
from urllib.parse import urlsplit

import httpx
from loguru import logger

from app.core.config import PlatformConfig, settings
from app.domain import PlaceOrderRequest, PlaceOrderResult
from app.errors import UpstreamVenueError
from app.models import KALSHI_PLATFORM_ID

from .http import build_http_client
from .kalshi_auth import KalshiSigner


DEFAULT_TRADING_URL = "https://demo-api.kalshi.co/trade-api/v2"
ORDERS_PATH = "/portfolio/orders"


def price_cents(locked_odds: float) -> int:
    return min(max(int(round(locked_odds * 100)), 1), 99)


def contract_count(bet_amount: float) -> int:
    return max(int(math.floor(bet_amount)), 1)


def build_order_body(request: PlaceOrderRequest) -> dict[str, Any]:
    side = "no" if request.bet_option.strip().upper() == "NO" else "yes"
    body: dict[str, Any] = {
        "ticker": request.platform_event_id,
        "side": side,
        "action": "buy",
        "count": contract_count(request.bet_amount),
        "type": "limit",
    }
    body[f"{side}_price"] = price_cents(request.locked_odds)
    return body


class KalshiTradingAdapter:
    """Places limit orders on Kalshi with RSA-PSS signed requests."""

    platform_id = KALSHI_PLATFORM_ID

    def __init__(
        self,
        config: PlatformConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or settings.platform("kalshi")
        self.base_url = (self.config.base_url or DEFAULT_TRADING_URL).rstrip("/")
        self._client = client
        self._signer: KalshiSigner | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = build_http_client(
                base_url=self.base_url,
                timeout=self.config.timeout,
                proxy=self.config.proxy,
            )
        return self._client

    @property
    def signer(self) -> KalshiSigner:
        if self._signer is None:
            self._signer = KalshiSigner(self.config.auth_key or "", self.config.auth_secret or "")
        return self._signer

    def place_order(self, request: PlaceOrderRequest) -> PlaceOrderResult:
        body = build_order_body(request)
        path = urlsplit(self.base_url).path.rstrip("/") + ORDERS_PATH
        headers = self.signer.headers("POST", path)
        logger.info(
            "Kalshi place order ticker={} side={} count={}",
            body["ticker"],
            body["side"],
            body["count"],
        )
        try:
            response = self.client.post(ORDERS_PATH, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamVenueError(f"kalshi place order failed: {exc}") from exc
        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise UpstreamVenueError(
                "kalshi place order rejected",
                status_code=response.status_code,
                body=response.text[:512],
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamVenueError(f"kalshi place order returned invalid JSON: {exc}") from exc
        order = payload.get("order") if isinstance(payload, dict) else None
        order_id = str((order or {}).get("order_id") or "").strip()
        if not order_id:
            raise UpstreamVenueError("kalshi place order returned an empty order_id")
        return PlaceOrderResult(platform_order_id=order_id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
