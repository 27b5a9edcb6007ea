from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from app.repositories import EventRepository
from ingestion.base import LiveOddsFetcher


class OddsSyncService:
    """Refresh stored prices for events that are still open."""

    def __init__(self, session: Session, adapters: Mapping[int, object]) -> None:
        self._session = session
        self._adapters = adapters
        self._event_repo = EventRepository(session)

    def run(self, *, limit: int = 500, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        refreshed = 0
        for event in self._event_repo.list_open_events(now, limit=limit):
            fetcher = self._adapters.get(event.platform_id)
            if not isinstance(fetcher, LiveOddsFetcher):
                continue
            try:
                odds = fetcher.fetch_live_odds(event.platform_event_id)
            except Exception as exc:
                logger.warning("Live odds fetch failed for event {}: {}", event.event_uuid, exc)
                continue
            if not odds:
                continue
            self._event_repo.upsert_odds_for_event(event, odds)
            refreshed += 1

        logger.info("Refreshed odds for {} open events", refreshed)
        return refreshed


__all__ = ["OddsSyncService"]
