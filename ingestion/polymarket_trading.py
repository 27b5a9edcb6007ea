from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds, OrderArgs, OrderType, PartialCreateOrderOptions
from py_clob_client.order_builder.constants import BUY

from app.core.config import PlatformConfig, settings
from app.domain import PlaceOrderRequest, PlaceOrderResult
from app.errors import InvalidInputError, NotFoundError, UpstreamVenueError
from app.models import POLYMARKET_PLATFORM_ID

from .normalize import as_list
from .polymarket import PolymarketAdapter


DEFAULT_CLOB_URL = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137
DEFAULT_TICK_SIZE = 0.01
_YES_NO = ("YES", "NO")


@dataclass(slots=True)
class TokenSelection:
    token_id: str
    tick_size: float
    outcome: str


def tick_size_string(tick: float) -> str:
    if tick >= 0.1:
        return "0.1"
    if tick >= 0.01:
        return "0.01"
    if tick >= 0.001:
        return "0.001"
    return f"{tick:.4f}"


def _tick_for(market: dict[str, Any]) -> float:
    try:
        tick = float(market.get("orderPriceMinTickSize") or 0)
    except (TypeError, ValueError):
        tick = 0.0
    return tick if tick > 0 else DEFAULT_TICK_SIZE


def select_token(event: dict[str, Any], bet_option: str) -> TokenSelection:
    """Find the CLOB token for ``bet_option`` among the event's markets."""

    wanted = bet_option.strip()
    wanted_upper = wanted.upper()
    for market in event.get("markets") or []:
        if not isinstance(market, dict):
            continue
        outcomes = [str(item) for item in as_list(market.get("outcomes"))]
        token_ids = [str(item) for item in as_list(market.get("clobTokenIds"))]
        if not outcomes or len(outcomes) != len(token_ids):
            continue

        # Binary markets map YES/NO by position whatever the outcome labels say.
        if len(outcomes) == 2 and wanted_upper in _YES_NO:
            index = _YES_NO.index(wanted_upper)
            return TokenSelection(token_ids[index], _tick_for(market), outcomes[index])

        if not market.get("acceptingOrders"):
            continue
        for outcome, token_id in zip(outcomes, token_ids):
            if outcome.strip().lower() == wanted.lower():
                return TokenSelection(token_id, _tick_for(market), outcome)

    raise NotFoundError(f"no polymarket token for option {bet_option!r} on event {event.get('id')}")


class PolymarketTradingAdapter:
    """Places GTC limit buys on the Polymarket CLOB via py-clob-client."""

    platform_id = POLYMARKET_PLATFORM_ID

    def __init__(
        self,
        config: PlatformConfig | None = None,
        *,
        catalog: PolymarketAdapter | None = None,
        clob_client: ClobClient | None = None,
    ) -> None:
        self.config = config or settings.platform("polymarket")
        self.catalog = catalog or PolymarketAdapter(self.config)
        self._clob_client = clob_client

    def _build_clob_client(self) -> ClobClient:
        private_key = self.config.auth_private_key
        if not private_key:
            raise InvalidInputError("polymarket auth_private_key is required for trading")
        if not (self.config.auth_key and self.config.auth_secret and self.config.auth_token):
            raise InvalidInputError(
                "polymarket auth_key, auth_secret and auth_token (API passphrase) are required for trading"
            )
        client = ClobClient(
            self.config.clob_base_url or DEFAULT_CLOB_URL,
            key=private_key,
            chain_id=POLYGON_CHAIN_ID,
        )
        client.set_api_creds(
            ApiCreds(
                api_key=self.config.auth_key,
                api_secret=self.config.auth_secret,
                api_passphrase=self.config.auth_token,
            )
        )
        return client

    @property
    def clob_client(self) -> ClobClient:
        if self._clob_client is None:
            self._clob_client = self._build_clob_client()
        return self._clob_client

    def place_order(self, request: PlaceOrderRequest) -> PlaceOrderResult:
        if not 0 < request.locked_odds < 1:
            raise InvalidInputError(f"polymarket price must be in (0, 1), got {request.locked_odds}")

        event = self.catalog.fetch_event(request.platform_event_id)
        selection = select_token(event, request.bet_option)
        size = max(request.bet_amount, 1.0)
        logger.info(
            "Polymarket place order event={} outcome={} price={} size={}",
            request.platform_event_id,
            selection.outcome,
            request.locked_odds,
            size,
        )

        client = self.clob_client
        try:
            signed = client.create_order(
                OrderArgs(
                    token_id=selection.token_id,
                    price=request.locked_odds,
                    size=size,
                    side=BUY,
                ),
                options=PartialCreateOrderOptions(tick_size=tick_size_string(selection.tick_size)),
            )
            response = client.post_order(signed, OrderType.GTC)
        except Exception as exc:  # py-clob-client raises its own exception hierarchy
            raise UpstreamVenueError(f"polymarket place order failed: {exc}") from exc

        order_id = ""
        if isinstance(response, dict):
            order_id = str(response.get("orderID") or response.get("orderId") or "").strip()
            if not order_id and response.get("errorMsg"):
                raise UpstreamVenueError(f"polymarket place order rejected: {response['errorMsg']}")
        if not order_id:
            raise UpstreamVenueError("polymarket place order returned an empty order id")
        return PlaceOrderResult(platform_order_id=order_id)

    def close(self) -> None:
        self.catalog.close()
