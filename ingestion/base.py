"""Capability contracts implemented by venue adapters."""

from __future__ import annotations

from typing import Any, Iterator, Protocol, Sequence, runtime_checkable

from app.domain import ConvertedBatch, EventResult, NormalizedOdds, PlaceOrderRequest, PlaceOrderResult


RawEvent = dict[str, Any]


@runtime_checkable
class PlatformAdapter(Protocol):
    """Minimal interface every venue supplies."""

    name: str
    platform_id: int

    def iter_event_batches(self, event_type: str) -> Iterator[list[RawEvent]]:
        """Yield raw events grouped by source chunk, each id at most once per call."""

    def convert_to_db_model(self, raw_events: Sequence[RawEvent], event_type: str) -> ConvertedBatch:
        """Convert raw venue events into normalized events and odds."""

    def close(self) -> None:
        """Release the underlying HTTP transport."""


@runtime_checkable
class LiveOddsFetcher(Protocol):
    def fetch_live_odds(self, platform_event_id: str) -> list[NormalizedOdds]:
        """Return current prices for one event, bypassing the store."""


@runtime_checkable
class ResultFetcher(Protocol):
    def fetch_event_result(self, platform_event_id: str) -> EventResult:
        """Return the venue's outcome; an empty result means not decided."""


@runtime_checkable
class TradingAdapter(Protocol):
    platform_id: int

    def place_order(self, request: PlaceOrderRequest) -> PlaceOrderResult:
        """Submit an order to the venue, raising on any venue-side failure."""


__all__ = [
    "LiveOddsFetcher",
    "PlatformAdapter",
    "RawEvent",
    "ResultFetcher",
    "TradingAdapter",
]
