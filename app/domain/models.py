"""Typed domain representations used across ingestion, persistence, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class NormalizedEvent:
    """Venue event converted to the shared schema, ready for upsert."""

    platform_id: int
    platform_event_id: str
    event_uuid: str
    title: str
    type: str
    start_time: datetime | None
    end_time: datetime | None
    status: str
    updated_at: datetime
    options: dict[str, Any] = field(default_factory=dict)
    result: str | None = None
    result_source: str | None = None
    result_verified: bool = False


@dataclass(slots=True)
class NormalizedOdds:
    """One (event, outcome) price row; ``platform_event_id`` links it before ids exist."""

    platform_id: int
    platform_event_id: str
    unique_event_platform: str
    option_name: str
    option_type: str
    price: float
    updated_at: datetime
    event_id: int | None = None
    liquidity: float | None = None
    volume: float | None = None


@dataclass(slots=True)
class ConvertedBatch:
    events: list[NormalizedEvent] = field(default_factory=list)
    odds: list[NormalizedOdds] = field(default_factory=list)


@dataclass(slots=True)
class EventResult:
    """Outcome reported by a venue; empty strings mean "not known yet"."""

    result: str = ""
    status: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.result and not self.status


@dataclass(slots=True)
class PlaceOrderRequest:
    order_uuid: str
    platform_event_id: str
    bet_option: str
    bet_amount: float
    locked_odds: float
    user_wallet: str = ""


@dataclass(slots=True)
class PlaceOrderResult:
    platform_order_id: str
    status: str = "placed"


@dataclass(slots=True)
class DepositEvent:
    """Decoded escrow ``FundsLocked`` log."""

    contract_order_id: str
    user_wallet: str
    amount: float
    currency: str
    tx_hash: str
    block_number: int
    raw_data: dict[str, Any] | None = None
