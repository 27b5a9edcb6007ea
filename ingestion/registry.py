"""Runtime registry mapping venue names to adapter factories."""

from __future__ import annotations

from typing import Callable, Dict

from app.core.config import PlatformConfig, Settings

from .base import PlatformAdapter, TradingAdapter
from .kalshi import KalshiAdapter
from .kalshi_trading import KalshiTradingAdapter
from .polymarket import PolymarketAdapter
from .polymarket_trading import PolymarketTradingAdapter


class UnknownPlatformError(LookupError):
    """Raised when a sync or order targets a venue without a registered adapter."""


AdapterFactory = Callable[[PlatformConfig], PlatformAdapter]

_ADAPTERS: Dict[str, AdapterFactory] = {}


def register_adapter(name: str, factory: AdapterFactory) -> None:
    """Register or replace the factory for ``name``."""

    _ADAPTERS[name.lower()] = factory


def build_adapter(name: str, config: PlatformConfig) -> PlatformAdapter:
    """Instantiate the adapter registered under ``name``."""

    try:
        factory = _ADAPTERS[name.lower()]
    except KeyError as exc:
        raise UnknownPlatformError(f"platform adapter '{name}' is not registered") from exc
    return factory(config)


def available_adapters() -> tuple[str, ...]:
    return tuple(sorted(_ADAPTERS))


def build_adapters_by_id(settings: Settings) -> dict[int, PlatformAdapter]:
    """One read adapter per registered venue, keyed by its platform id."""

    adapters: dict[int, PlatformAdapter] = {}
    for name in available_adapters():
        adapter = build_adapter(name, settings.platform(name))
        adapters[adapter.platform_id] = adapter
    return adapters


def build_trading_adapters(settings: Settings) -> dict[int, TradingAdapter]:
    """Trading adapters keyed by platform id, as the router reports them."""

    return {
        PolymarketTradingAdapter.platform_id: PolymarketTradingAdapter(settings.platform("polymarket")),
        KalshiTradingAdapter.platform_id: KalshiTradingAdapter(settings.platform("kalshi")),
    }


register_adapter(PolymarketAdapter.name, PolymarketAdapter)
register_adapter(KalshiAdapter.name, KalshiAdapter)


__all__ = [
    "UnknownPlatformError",
    "available_adapters",
    "build_adapter",
    "build_adapters_by_id",
    "build_trading_adapters",
    "register_adapter",
]
