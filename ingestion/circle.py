from __future__ import annotations

from typing import Any
from uuid import uuid4

import httpx
from loguru import logger

from app.core.config import CircleConfig, settings
from app.errors import InvalidInputError, UpstreamVenueError

from .http import build_http_client


DEFAULT_CIRCLE_URL = "https://api-sandbox.circle.com"
QUOTES_PATH = "/v1/exchange/quotes"


def normalize_currency(currency: str) -> str:
    """Map a deposit currency to one Circle quotes; USDT is priced as USDC."""

    code = (currency or "").strip().upper()
    if code in {"USD", "USDC"}:
        return code
    if code == "USDT":
        return "USDC"
    raise InvalidInputError(f"unsupported currency {currency!r}")


class CircleClient:
    """Minimal Circle exchange-quotes client used for fiat conversion."""

    def __init__(
        self,
        config: CircleConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or settings.circle
        self.client = client or build_http_client(
            base_url=self.config.base_url or DEFAULT_CIRCLE_URL,
            timeout=self.config.timeout,
            proxy=self.config.proxy,
        )

    def _auth_headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise InvalidInputError("circle api_key is not configured")
        return {"Authorization": f"Bearer {self.config.api_key}", "Content-Type": "application/json"}

    def _quote(self, amount: float, from_currency: str, to_currency: str) -> float:
        body: dict[str, Any] = {
            "from": {"amount": round(amount, 6), "currency": from_currency},
            "to": {"currency": to_currency},
            "idempotencyKey": str(uuid4()),
            "type": "reference",
        }
        headers = self._auth_headers()
        try:
            response = self.client.post(QUOTES_PATH, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamVenueError(f"circle quote request failed: {exc}") from exc
        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise UpstreamVenueError(
                "circle quote rejected",
                status_code=response.status_code,
                body=response.text[:512],
            )
        try:
            quoted = response.json()["data"]["to"]["amount"]
            return float(quoted)
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamVenueError(f"circle quote response malformed: {exc}") from exc

    def convert_to_usd(self, amount: float, currency: str) -> float:
        code = normalize_currency(currency)
        if code == "USD":
            return amount
        usd = self._quote(amount, code, "USD")
        logger.info("Circle quoted {} {} as {} USD", amount, code, usd)
        return usd

    def convert_from_usd(self, amount: float, currency: str) -> float:
        code = normalize_currency(currency)
        if code == "USD":
            return amount
        return self._quote(amount, "USD", code)

    def ping(self) -> bool:
        try:
            response = self.client.get("/ping")
        except httpx.HTTPError as exc:
            raise UpstreamVenueError(f"circle ping failed: {exc}") from exc
        return response.status_code == httpx.codes.OK

    def close(self) -> None:
        self.client.close()
