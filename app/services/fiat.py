from __future__ import annotations

from typing import Protocol

from loguru import logger

from app.core.config import Settings
from app.errors import InvalidInputError
from ingestion.circle import CircleClient, normalize_currency


class FiatService(Protocol):
    def convert_to_usd(self, amount: float, currency: str) -> float:
        ...

    def convert_from_usd(self, amount: float, currency: str) -> float:
        ...


class CircleFiatService:
    """Quotes conversions through Circle."""

    def __init__(self, client: CircleClient) -> None:
        self._client = client

    def convert_to_usd(self, amount: float, currency: str) -> float:
        return self._client.convert_to_usd(amount, currency)

    def convert_from_usd(self, amount: float, currency: str) -> float:
        return self._client.convert_from_usd(amount, currency)


class PassthroughFiatService:
    """Treats the supported stablecoins as 1:1 with USD."""

    def convert_to_usd(self, amount: float, currency: str) -> float:
        normalize_currency(currency)
        if amount < 0:
            raise InvalidInputError("amount must not be negative")
        return amount

    def convert_from_usd(self, amount: float, currency: str) -> float:
        normalize_currency(currency)
        return amount


def build_fiat_service(settings: Settings) -> FiatService:
    if settings.circle.api_key:
        return CircleFiatService(CircleClient(settings.circle))
    logger.info("Circle api_key not configured; converting stablecoins 1:1")
    return PassthroughFiatService()


__all__ = ["CircleFiatService", "FiatService", "PassthroughFiatService", "build_fiat_service"]
