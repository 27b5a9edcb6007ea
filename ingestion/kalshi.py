from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import httpx
from loguru import logger

from app.core.config import PlatformConfig, settings
from app.domain import ConvertedBatch, EventResult, NormalizedEvent, NormalizedOdds
from app.errors import UpstreamVenueError
from app.models import KALSHI_PLATFORM_ID, EventStatus, OptionType

from .http import build_http_client, get_json
from .normalize import (
    OPTION_NAME_MAX_LEN,
    PLATFORM_EVENT_ID_MAX_LEN,
    TITLE_MAX_LEN,
    build_event_uuid,
    map_status,
    parse_price,
    parse_time,
    truncate,
    utcnow,
)


DEFAULT_TRADE_API_URL = "https://api.elections.kalshi.com/trade-api/v2"
SPORTS_EVENT_TYPE = "sports"
SERIES_CACHE_TTL_SECONDS = 4 * 60 * 60
EVENTS_PAGE_LIMIT = 200

_SPORTS_KEYWORDS = (
    "nfl",
    "nba",
    "mlb",
    "nhl",
    "soccer",
    "football",
    "basketball",
    "baseball",
    "hockey",
    "ufc",
    "boxing",
    "tennis",
    "golf",
    "olympics",
)
_SETTLED_STATUSES = {"settled", "finalized", "determined"}


def is_sports_category(category: str | None) -> bool:
    value = (category or "").strip().lower()
    if not value:
        return False
    if value == "sports" or "sport" in value:
        return True
    return any(keyword in value for keyword in _SPORTS_KEYWORDS)


class SeriesTickerCache:
    """Sports series tickers per API base URL, refreshed after ``ttl`` seconds."""

    def __init__(self, ttl: float = SERIES_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, list[str]]] = {}

    def get(self, key: str) -> list[str] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, tickers = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return list(tickers)

    def put(self, key: str, tickers: Sequence[str]) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), list(tickers))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


series_ticker_cache = SeriesTickerCache()


def _yes_no_prices(market: dict[str, Any]) -> list[tuple[str, float]]:
    """Synthesize YES/NO prices from ask quotes, falling back to the last trade."""

    last = parse_price(market.get("last_price_dollars"))
    yes = parse_price(market.get("yes_ask_dollars"))
    if yes is None:
        yes = last
    no = parse_price(market.get("no_ask_dollars"))
    if no is None and last is not None:
        no = 1.0 - last

    prices: list[tuple[str, float]] = []
    if yes is not None:
        prices.append(("YES", yes))
    if no is not None:
        prices.append(("NO", no))
    return prices


class KalshiAdapter:
    """Trade API client streaming open sports events one series ticker at a time."""

    name = "kalshi"
    platform_id = KALSHI_PLATFORM_ID

    def __init__(
        self,
        config: PlatformConfig | None = None,
        *,
        client: httpx.Client | None = None,
        series_cache: SeriesTickerCache | None = None,
    ) -> None:
        self.config = config or settings.platform(self.name)
        self.base_url = (self.config.base_url or DEFAULT_TRADE_API_URL).rstrip("/")
        self.series_cache = series_cache if series_cache is not None else series_ticker_cache
        self.client = client or build_http_client(
            base_url=self.base_url,
            timeout=self.config.timeout,
            proxy=self.config.proxy,
        )

    # ------------------------------------------------------------------
    # Series discovery

    def _configured_tickers(self) -> list[str]:
        tickers = [ticker for ticker in self.config.series_tickers if ticker]
        if self.config.series_ticker.strip():
            tickers.insert(0, self.config.series_ticker.strip())
        return list(dict.fromkeys(tickers))

    def _fetch_sports_series(self, params: dict[str, Any] | None) -> list[str]:
        payload = get_json(self.client, "/series", params=params, venue=self.name)
        series = payload.get("series") if isinstance(payload, dict) else None
        tickers: list[str] = []
        for item in series or []:
            if not isinstance(item, dict):
                continue
            ticker = str(item.get("ticker") or "").strip()
            if ticker and is_sports_category(item.get("category")):
                tickers.append(ticker)
        return tickers

    def sports_series_tickers(self) -> list[str]:
        configured = self._configured_tickers()
        if configured:
            return configured

        cached = self.series_cache.get(self.base_url)
        if cached is not None:
            return cached

        tickers = self._fetch_sports_series({"category": "Sports"})
        if tickers:
            logger.info("Kalshi GET /series?category=Sports returned {} sports tickers", len(tickers))
        else:
            tickers = self._fetch_sports_series(None)
            logger.info("Kalshi GET /series (all) filtered to {} sports tickers", len(tickers))
        self.series_cache.put(self.base_url, tickers)
        return tickers

    # ------------------------------------------------------------------
    # Streaming

    def _fetch_events(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        merged = {"with_nested_markets": "true", "status": "open", "limit": EVENTS_PAGE_LIMIT}
        merged.update(params)
        logger.info("Kalshi GET /events params={}", merged)
        payload = get_json(self.client, "/events", params=merged, venue=self.name)
        events = payload.get("events") if isinstance(payload, dict) else None
        return [event for event in events or [] if isinstance(event, dict)]

    def iter_event_batches(self, event_type: str) -> Iterator[list[dict[str, Any]]]:
        seen: set[str] = set()

        def unseen(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
            batch = []
            for event in events:
                ticker = str(event.get("event_ticker") or "").strip()
                if not ticker or ticker in seen:
                    continue
                seen.add(ticker)
                batch.append(event)
            return batch

        if event_type != SPORTS_EVENT_TYPE:
            try:
                batch = unseen(self._fetch_events({}))
            except UpstreamVenueError as exc:
                logger.warning("Kalshi {} listing failed, nothing to ingest: {}", event_type, exc)
                return
            if batch:
                yield batch
            return

        for ticker in self.sports_series_tickers():
            try:
                events = self._fetch_events({"series_ticker": ticker})
            except UpstreamVenueError as exc:
                logger.warning("Skipping Kalshi series {}: {}", ticker, exc)
                continue
            batch = unseen(events)
            if batch:
                yield batch

    # ------------------------------------------------------------------
    # Conversion

    def _odds_for_event(self, raw: dict[str, Any], platform_event_id: str, updated_at) -> list[NormalizedOdds]:
        markets = [market for market in raw.get("markets") or [] if isinstance(market, dict)]
        prices = _yes_no_prices(markets[0]) if markets else []
        if not prices:
            prices = [("YES", 0.0), ("NO", 0.0)]
        odds = []
        for option, price in prices:
            option_name = truncate(option, OPTION_NAME_MAX_LEN, "option_name")
            odds.append(
                NormalizedOdds(
                    platform_id=self.platform_id,
                    platform_event_id=platform_event_id,
                    unique_event_platform=f"{self.platform_id}_{platform_event_id}_{option_name}",
                    option_name=option_name,
                    option_type=OptionType.WIN.value if option == "YES" else OptionType.LOSE.value,
                    price=price,
                    updated_at=updated_at,
                )
            )
        return odds

    def convert_to_db_model(self, raw_events: Sequence[dict[str, Any]], event_type: str) -> ConvertedBatch:
        converted = ConvertedBatch()
        for raw in raw_events:
            ticker = str(raw.get("event_ticker") or "").strip()
            if not ticker:
                logger.warning("Kalshi event without event_ticker skipped: {}", raw.get("title"))
                continue
            platform_event_id = truncate(ticker, PLATFORM_EVENT_ID_MAX_LEN, "platform_event_id")
            markets = [market for market in raw.get("markets") or [] if isinstance(market, dict)]
            open_time = raw.get("strike_date")
            close_time = raw.get("strike_date")
            raw_status = "closed"
            if markets:
                first = markets[0]
                open_time = first.get("open_time") or open_time
                close_time = first.get("close_time") or close_time
                raw_status = str(first.get("status") or "")

            now = utcnow()
            odds = self._odds_for_event(raw, platform_event_id, now)
            converted.events.append(
                NormalizedEvent(
                    platform_id=self.platform_id,
                    platform_event_id=platform_event_id,
                    event_uuid=build_event_uuid(self.platform_id, platform_event_id),
                    title=truncate(raw.get("title"), TITLE_MAX_LEN, "title"),
                    type=event_type,
                    start_time=parse_time(open_time, field_name="open_time"),
                    end_time=parse_time(close_time, field_name="close_time"),
                    status=map_status(raw_status),
                    updated_at=now,
                    options={row.option_name: "available" for row in odds},
                )
            )
            converted.odds.extend(odds)
        return converted

    # ------------------------------------------------------------------
    # Per-event lookups

    def fetch_event(self, platform_event_id: str) -> dict[str, Any]:
        payload = get_json(
            self.client,
            f"/events/{platform_event_id}",
            params={"with_nested_markets": "true"},
            venue=self.name,
        )
        event = payload.get("event") if isinstance(payload, dict) else None
        if not isinstance(event, dict):
            raise UpstreamVenueError(f"kalshi event {platform_event_id} missing from response")
        if not event.get("markets") and isinstance(payload.get("markets"), list):
            event = {**event, "markets": payload["markets"]}
        return event

    def fetch_live_odds(self, platform_event_id: str) -> list[NormalizedOdds]:
        event = self.fetch_event(platform_event_id)
        return self._odds_for_event(event, platform_event_id, utcnow())

    def fetch_event_result(self, platform_event_id: str) -> EventResult:
        event = self.fetch_event(platform_event_id)
        markets = [market for market in event.get("markets") or [] if isinstance(market, dict)]
        if not markets:
            return EventResult()
        market = markets[0]
        outcome = str(market.get("result") or "").strip().lower()
        if outcome in {"yes", "no"}:
            return EventResult(result=outcome.upper(), status=EventStatus.RESOLVED.value)
        if str(market.get("status") or "").lower() in _SETTLED_STATUSES:
            return EventResult(status=EventStatus.CANCELED.value)
        return EventResult()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "KalshiAdapter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
