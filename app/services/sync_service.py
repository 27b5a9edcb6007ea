"""Stream a venue's catalog into the store, then aggregate and refresh results."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import PlatformConfig, Settings, settings as default_settings
from app.domain import NormalizedOdds
from app.errors import InvalidInputError, NotFoundError
from app.repositories import EventRepository
from ingestion.base import PlatformAdapter
from ingestion.registry import build_adapter
from ingestion.service import session_scope

from .aggregation import AggregationService
from .result_sync import ResultSyncService


SessionScope = Callable[[], AbstractContextManager[Session]]
AdapterFactory = Callable[[str, PlatformConfig], PlatformAdapter]


@dataclass(slots=True)
class SyncSummary:
    platform: str
    event_type: str
    batches: int = 0
    events: int = 0
    odds: int = 0


def dedup_odds(odds: Iterable[NormalizedOdds]) -> list[NormalizedOdds]:
    """Collapse rows sharing a unique key, keeping the most recently updated one."""

    latest: dict[str, NormalizedOdds] = {}
    for row in odds:
        if not row.unique_event_platform:
            owner = row.event_id if row.event_id is not None else row.platform_event_id
            row.unique_event_platform = f"{owner}_{row.platform_id}_{row.option_name}_{time.time_ns()}"
        current = latest.get(row.unique_event_platform)
        if current is None or row.updated_at >= current.updated_at:
            latest[row.unique_event_platform] = row
    return list(latest.values())


class SyncService:
    def __init__(
        self,
        *,
        session_factory: SessionScope = session_scope,
        adapter_factory: AdapterFactory = build_adapter,
        config: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._adapter_factory = adapter_factory
        self._settings = config or default_settings

    def _check_platform(self, platform_name: str) -> None:
        with self._session_factory() as session:
            platform = EventRepository(session).get_platform_by_name(platform_name)
            if platform is None:
                raise NotFoundError(f"platform {platform_name} not found")
            if not platform.is_enabled:
                raise InvalidInputError(f"platform {platform_name} is disabled")

    def sync_platform(self, platform_name: str, event_type: str = "sports") -> SyncSummary:
        name = (platform_name or "").strip().lower()
        if not name:
            raise InvalidInputError("platform is required")
        self._check_platform(name)

        summary = SyncSummary(platform=name, event_type=event_type)
        adapter = self._adapter_factory(name, self._settings.platform(name))
        logger.info("Syncing {} events from {}", event_type, name)
        try:
            for raw_events in adapter.iter_event_batches(event_type):
                if not raw_events:
                    continue
                converted = adapter.convert_to_db_model(raw_events, event_type)
                odds = dedup_odds(converted.odds)
                with self._session_factory() as session:
                    event_ids = EventRepository(session).save_events(converted.events, odds)
                summary.batches += 1
                summary.events += len(event_ids)
                summary.odds += len(odds)
                logger.debug(
                    "Saved batch {} from {}: {} events, {} odds",
                    summary.batches,
                    name,
                    len(event_ids),
                    len(odds),
                )
            self._after_sync(adapter, event_type)
        finally:
            adapter.close()

        logger.info(
            "Synced {} from {}: {} batches, {} events, {} odds",
            event_type,
            name,
            summary.batches,
            summary.events,
            summary.odds,
        )
        return summary

    def _after_sync(self, adapter: PlatformAdapter, event_type: str) -> None:
        try:
            with self._session_factory() as session:
                AggregationService(session).aggregate(event_type)
        except Exception as exc:
            logger.warning("Aggregation after {} sync failed: {}", adapter.name, exc)

        try:
            with self._session_factory() as session:
                ResultSyncService(session, {adapter.platform_id: adapter}).run()
        except Exception as exc:
            logger.warning("Result sync after {} sync failed: {}", adapter.name, exc)


__all__ = ["SyncService", "SyncSummary", "dedup_odds"]
