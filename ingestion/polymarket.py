from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

import httpx
from loguru import logger

from app.core.config import PlatformConfig, settings
from app.domain import ConvertedBatch, EventResult, NormalizedEvent, NormalizedOdds
from app.errors import UpstreamVenueError
from app.models import POLYMARKET_PLATFORM_ID, EventStatus

from .http import build_http_client, get_json
from .normalize import (
    OPTION_NAME_MAX_LEN,
    PLATFORM_EVENT_ID_MAX_LEN,
    RESULT_SOURCE_MAX_LEN,
    TITLE_MAX_LEN,
    UNTYPED_OPTION,
    as_list,
    build_event_uuid,
    map_active_closed,
    option_type_for,
    parse_price,
    parse_time,
    truncate,
    utcnow,
)


DEFAULT_GAMMA_URL = "https://gamma-api.polymarket.com"
SPORTS_EVENT_TYPE = "sports"
RESOLVED_PRICE_THRESHOLD = 0.99
_UNIQUE_KEY_MAX_LEN = 128


def _as_event_list(payload: Any) -> list[dict[str, Any]]:
    """Gamma answers with a list, a single object, or null depending on the query."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict) and payload:
        return [payload]
    return []


def _split_tags(raw_tags: Any) -> list[str]:
    if isinstance(raw_tags, list):
        return [str(tag).strip() for tag in raw_tags if str(tag).strip()]
    return [tag.strip() for tag in str(raw_tags or "").split(",") if tag.strip()]


class PolymarketAdapter:
    """Gamma catalog client that streams sports events and converts them to the shared schema."""

    name = "polymarket"
    platform_id = POLYMARKET_PLATFORM_ID

    def __init__(
        self,
        config: PlatformConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or settings.platform(self.name)
        self.base_url = self.config.base_url or DEFAULT_GAMMA_URL
        self.sports_path = self.config.sport_path or "/sports"
        self.client = client or build_http_client(
            base_url=self.base_url,
            timeout=self.config.timeout,
            proxy=self.config.proxy,
        )

    # ------------------------------------------------------------------
    # Streaming

    def _series_tag_pairs(self) -> list[tuple[str, str]]:
        payload = get_json(self.client, self.sports_path, venue=self.name)
        pairs: list[tuple[str, str]] = []
        seen_pairs: set[tuple[str, str]] = set()
        for item in payload if isinstance(payload, list) else []:
            if not isinstance(item, dict):
                continue
            series = str(item.get("series") or "").strip()
            if not series:
                continue
            for tag in _split_tags(item.get("tags")):
                pair = (series, tag)
                if pair in seen_pairs:
                    continue
                seen_pairs.add(pair)
                pairs.append(pair)
        logger.info("Polymarket catalog exposes {} series/tag pairs", len(pairs))
        return pairs

    def _fetch_events(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        logger.info("Polymarket GET /events params={}", params)
        return _as_event_list(get_json(self.client, "/events", params=params, venue=self.name))

    @staticmethod
    def _unseen(events: Sequence[dict[str, Any]], seen: set[str]) -> list[dict[str, Any]]:
        batch: list[dict[str, Any]] = []
        for event in events:
            event_id = str(event.get("id") or "").strip()
            if not event_id or event_id in seen:
                continue
            seen.add(event_id)
            batch.append(event)
        return batch

    def iter_event_batches(self, event_type: str) -> Iterator[list[dict[str, Any]]]:
        seen: set[str] = set()

        if event_type != SPORTS_EVENT_TYPE:
            try:
                events = self._fetch_events({"active": "true", "closed": "false"})
            except UpstreamVenueError as exc:
                logger.warning("Polymarket {} listing failed, nothing to ingest: {}", event_type, exc)
                return
            batch = self._unseen(events, seen)
            if batch:
                yield batch
            return

        for series_id, tag_id in self._series_tag_pairs():
            params = {
                "series_id": series_id,
                "tag_id": tag_id,
                "active": "true",
                "closed": "false",
                "order": "startTime",
                "ascending": "true",
            }
            try:
                events = self._fetch_events(params)
            except UpstreamVenueError as exc:
                logger.warning("Skipping Polymarket series {} tag {}: {}", series_id, tag_id, exc)
                continue
            batch = self._unseen(events, seen)
            if batch:
                yield batch

    # ------------------------------------------------------------------
    # Conversion

    def _odds_from_markets(
        self, platform_event_id: str, markets: Any, updated_at
    ) -> list[NormalizedOdds]:
        odds: list[NormalizedOdds] = []
        for market in markets if isinstance(markets, list) else []:
            if not isinstance(market, dict):
                continue
            outcomes = as_list(market.get("outcomes"))
            prices = as_list(market.get("outcomePrices"))
            market_name = str(market.get("groupItemTitle") or market.get("name") or "").strip()
            for index, outcome in enumerate(outcomes):
                if index >= len(prices):
                    logger.warning("Polymarket outcome {} has no price, skipping", outcome)
                    continue
                price = parse_price(prices[index])
                if price is None:
                    logger.warning("Polymarket price {!r} for {} is not numeric, skipping", prices[index], outcome)
                    continue
                option_name = truncate(str(outcome), OPTION_NAME_MAX_LEN, "option_name")
                if not option_name:
                    continue
                parts = [str(self.platform_id), platform_event_id]
                if market_name:
                    parts.append(market_name)
                parts.append(option_name)
                odds.append(
                    NormalizedOdds(
                        platform_id=self.platform_id,
                        platform_event_id=platform_event_id,
                        unique_event_platform="_".join(parts)[:_UNIQUE_KEY_MAX_LEN],
                        option_name=option_name,
                        option_type=option_type_for(option_name),
                        price=price,
                        updated_at=updated_at,
                    )
                )
        return odds

    def _default_odds(self, platform_event_id: str, updated_at) -> NormalizedOdds:
        return NormalizedOdds(
            platform_id=self.platform_id,
            platform_event_id=platform_event_id,
            unique_event_platform=f"{self.platform_id}_{platform_event_id}",
            option_name="default",
            option_type=UNTYPED_OPTION,
            price=0.0,
            updated_at=updated_at,
        )

    def convert_to_db_model(self, raw_events: Sequence[dict[str, Any]], event_type: str) -> ConvertedBatch:
        converted = ConvertedBatch()
        for raw in raw_events:
            raw_id = str(raw.get("id") or "").strip()
            if not raw_id:
                logger.warning("Polymarket event without id skipped: {}", raw.get("title"))
                continue
            platform_event_id = truncate(raw_id, PLATFORM_EVENT_ID_MAX_LEN, "platform_event_id")
            now = utcnow()
            odds = self._odds_from_markets(platform_event_id, raw.get("markets"), now)
            options = {row.option_name: "available" for row in odds}
            if not odds:
                odds = [self._default_odds(platform_event_id, now)]

            converted.events.append(
                NormalizedEvent(
                    platform_id=self.platform_id,
                    platform_event_id=platform_event_id,
                    event_uuid=build_event_uuid(self.platform_id, platform_event_id),
                    title=truncate(raw.get("title"), TITLE_MAX_LEN, "title"),
                    type=event_type,
                    start_time=parse_time(raw.get("startDate") or raw.get("startTime"), field_name="startDate"),
                    end_time=parse_time(raw.get("endDate"), field_name="endDate"),
                    status=map_active_closed(bool(raw.get("active")), bool(raw.get("closed"))),
                    updated_at=now,
                    options=options,
                    result_source=truncate(raw.get("resolutionSource"), RESULT_SOURCE_MAX_LEN, "result_source")
                    or None,
                )
            )
            converted.odds.extend(odds)
        return converted

    # ------------------------------------------------------------------
    # Per-event lookups

    def fetch_event(self, platform_event_id: str) -> dict[str, Any]:
        events = _as_event_list(
            get_json(self.client, f"/events/{platform_event_id}", venue=self.name)
        )
        if not events:
            raise UpstreamVenueError(f"polymarket event {platform_event_id} not found")
        return events[0]

    def fetch_live_odds(self, platform_event_id: str) -> list[NormalizedOdds]:
        event = self.fetch_event(platform_event_id)
        return self._odds_from_markets(platform_event_id, event.get("markets"), utcnow())

    def fetch_event_result(self, platform_event_id: str) -> EventResult:
        event = self.fetch_event(platform_event_id)
        if not event.get("closed"):
            return EventResult()
        for market in event.get("markets") or []:
            if not isinstance(market, dict):
                continue
            outcomes = as_list(market.get("outcomes"))
            prices = as_list(market.get("outcomePrices"))
            for outcome, raw_price in zip(outcomes, prices):
                price = parse_price(raw_price)
                if price is not None and price >= RESOLVED_PRICE_THRESHOLD:
                    return EventResult(result=str(outcome), status=EventStatus.RESOLVED.value)
        return EventResult()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PolymarketAdapter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
