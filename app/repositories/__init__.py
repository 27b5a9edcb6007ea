"""Repository abstractions for database interactions."""

from .canonical_repository import CanonicalRepository
from .event_repository import EventRepository
from .order_repository import OrderRepository

__all__ = [
    "CanonicalRepository",
    "EventRepository",
    "OrderRepository",
]
