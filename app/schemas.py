from typing import Any

from pydantic import BaseModel, Field, field_validator


class ErrorResponse(BaseModel):
    error: str


class SyncResponse(BaseModel):
    message: str


# ----------------------------------------------------------------------
# Markets


class MarketSummary(BaseModel):
    id: int
    title: str
    sport_type: str
    home_team: str = ""
    away_team: str = ""
    match_time: int = 0
    status: str
    platform_count: int = 0
    best_price: float = 0.0
    best_platform_id: int | None = None
    best_platform: str | None = None
    best_option: str | None = None
    max_win_price: float = 0.0
    max_draw_price: float = 0.0
    max_lose_price: float = 0.0
    event_uuid: str | None = None


class MarketList(BaseModel):
    total: int
    page: int
    page_size: int
    items: list[MarketSummary]


class MarketEvent(BaseModel):
    event_uuid: str
    title: str
    type: str
    status: str
    start_time: int = 0
    end_time: int = 0


class PlatformOption(BaseModel):
    platform_id: int
    platform_name: str
    option_name: str
    option_type: str
    price: float

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float:
        return float(value or 0)


class MarketAnalytics(BaseModel):
    best_price: float = 0.0
    best_platform_id: int | None = None
    best_platform: str | None = None
    best_option: str | None = None
    platform_count: int = 0
    option_count: int = 0
    price_min: float = 0.0
    price_max: float = 0.0
    price_spread_pct: float = 0.0


class MarketDetail(BaseModel):
    canonical_id: int | None = None
    event: MarketEvent
    platform_options: list[PlatformOption] = Field(default_factory=list)
    analytics: MarketAnalytics


# ----------------------------------------------------------------------
# Orders


class PrepareOrderRequest(BaseModel):
    contract_order_id: str = ""
    event_uuid: str = ""
    bet_option: str = ""


class PrepareOrderResponse(BaseModel):
    locked_odds: float
    message_to_sign: str
    expires_at_sec: int


class PlaceOrderRequest(BaseModel):
    contract_order_id: str = ""
    event_uuid: str = ""
    bet_option: str = ""
    amount: float = 0.0
    currency: str = ""
    locked_odds: float = 0.0
    message: str = ""
    signature: str = ""


class PlaceOrderResponse(BaseModel):
    order_uuid: str
    platform_order_id: str
    platform_id: int
    status: str


class UnfreezeRequest(BaseModel):
    contract_order_id: str = ""
    wallet: str = ""


class UnfreezeResponse(BaseModel):
    tx_hash: str


class ContractOrderStatus(BaseModel):
    status: str


class OrderSummary(BaseModel):
    order_uuid: str
    event_id: int
    event_title: str | None = None
    platform_id: int
    platform_order_id: str | None = None
    bet_option: str
    bet_amount: float
    fund_currency: str
    locked_odds: float
    expected_profit: float
    status: str
    created_at: int = 0


class OrderList(BaseModel):
    total: int
    page: int
    page_size: int
    items: list[OrderSummary]


class OrderDetail(OrderSummary):
    user_wallet: str
    event_uuid: str | None = None
    event_start_time: int = 0
    event_end_time: int = 0
    actual_profit: float = 0.0
    platform_fee: float = 0.0
    manage_fee: float = 0.0
    gas_fee: float = 0.0
    fund_lock_tx_hash: str | None = None
    settlement_tx_hash: str | None = None
    updated_at: int = 0


class WithdrawInfo(BaseModel):
    order_uuid: str
    type: str
    method: str | None = None
    contract_address: str | None = None
    fund_currency: str
    payout_amount: float
    fee: float = 0.0
    user_amount: float
    status: str


class WithdrawResult(BaseModel):
    order_uuid: str
    status: str
    withdraw: WithdrawInfo
