"""Domain models representing normalized venue data and order intents."""

from .models import (
    ConvertedBatch,
    DepositEvent,
    EventResult,
    NormalizedEvent,
    NormalizedOdds,
    PlaceOrderRequest,
    PlaceOrderResult,
)

__all__ = [
    "ConvertedBatch",
    "DepositEvent",
    "EventResult",
    "NormalizedEvent",
    "NormalizedOdds",
    "PlaceOrderRequest",
    "PlaceOrderResult",
]
