from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from app.repositories import EventRepository, OrderRepository
from ingestion.base import ResultFetcher


class ResultSyncService:
    """Record venue outcomes for events past their end time and move their orders on."""

    def __init__(self, session: Session, adapters: Mapping[int, object]) -> None:
        self._session = session
        self._adapters = adapters
        self._event_repo = EventRepository(session)
        self._order_repo = OrderRepository(session)

    def run(self, *, limit: int = 500, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        updated = 0
        for event in self._event_repo.list_ended_active_events(now, limit=limit):
            fetcher = self._adapters.get(event.platform_id)
            if not isinstance(fetcher, ResultFetcher):
                continue
            try:
                outcome = fetcher.fetch_event_result(event.platform_event_id)
            except Exception as exc:
                logger.warning("Result fetch failed for event {}: {}", event.event_uuid, exc)
                continue
            if outcome.is_empty:
                continue

            self._event_repo.update_event_result(event.id, outcome.result, outcome.status)
            if outcome.result:
                moved = self._order_repo.mark_event_orders(event.id, outcome.result)
                if moved:
                    logger.info("Event {} resolved {}; moved {} orders", event.event_uuid, outcome.result, moved)
            updated += 1

        if updated:
            logger.info("Updated results for {} events", updated)
        return updated


__all__ = ["ResultSyncService"]
