"""Event, odds, and platform persistence."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import asc, select, update
from sqlalchemy.orm import Session

from app.domain import NormalizedEvent, NormalizedOdds
from app.models import Event, EventOdds, EventStatus, Platform

from .sql import chunked, dialect_insert


_EVENT_MUTABLE_COLUMNS = (
    "title",
    "start_time",
    "end_time",
    "status",
    "updated_at",
    "event_uuid",
    "options",
    "result",
    "result_source",
    "result_verified",
)
_ODDS_MUTABLE_COLUMNS = ("price", "option_name", "option_type", "updated_at")


def _odds_row(odds: NormalizedOdds, event_id: int) -> dict:
    return {
        "event_id": event_id,
        "unique_event_platform": odds.unique_event_platform,
        "platform_id": odds.platform_id,
        "option_name": odds.option_name,
        "option_type": odds.option_type,
        "price": odds.price,
        "liquidity": odds.liquidity,
        "volume": odds.volume,
        "created_at": odds.updated_at,
        "updated_at": odds.updated_at,
    }


class EventRepository:
    """Encapsulate event and odds upserts plus the queries the services run on them."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def save_events(
        self, events: Sequence[NormalizedEvent], odds: Sequence[NormalizedOdds]
    ) -> dict[tuple[int, str], int]:
        """Upsert a converted batch; returns event ids keyed by (platform_id, platform_event_id)."""

        if not events:
            return {}

        unique_events: dict[tuple[int, str], NormalizedEvent] = {}
        for event in events:
            if not event.event_uuid:
                event.event_uuid = f"{event.platform_id}_{event.platform_event_id}"
            unique_events[(event.platform_id, event.platform_event_id)] = event

        rows = [
            {
                "event_uuid": event.event_uuid,
                "title": event.title,
                "type": event.type,
                "platform_id": event.platform_id,
                "platform_event_id": event.platform_event_id,
                "start_time": event.start_time,
                "end_time": event.end_time,
                "options": event.options,
                "result": event.result,
                "result_source": event.result_source,
                "result_verified": event.result_verified,
                "status": event.status,
                "created_at": event.updated_at,
                "updated_at": event.updated_at,
            }
            for event in unique_events.values()
        ]
        for chunk in chunked(rows):
            stmt = dialect_insert(self._session, Event).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["platform_id", "platform_event_id"],
                set_={column: stmt.excluded[column] for column in _EVENT_MUTABLE_COLUMNS},
            )
            self._session.execute(stmt)

        event_ids = self.event_ids_for(unique_events.keys())
        self._upsert_odds(odds, event_ids)
        return event_ids

    def upsert_odds_for_event(self, event: Event, odds: Sequence[NormalizedOdds]) -> int:
        """Write live-fetched prices for one stored event."""

        for row in odds:
            if not row.unique_event_platform:
                row.unique_event_platform = f"{event.platform_id}_{event.platform_event_id}_{row.option_name}"
        return self._upsert_odds(
            odds, {(row.platform_id, row.platform_event_id): event.id for row in odds}
        )

    def _upsert_odds(
        self, odds: Sequence[NormalizedOdds], event_ids: dict[tuple[int, str], int]
    ) -> int:
        rows_by_key: dict[str, dict] = {}
        for row in odds:
            event_id = row.event_id or event_ids.get((row.platform_id, row.platform_event_id))
            if event_id is None:
                logger.warning(
                    "Dropping odds {} with no stored event for {}",
                    row.unique_event_platform,
                    row.platform_event_id,
                )
                continue
            if not row.option_name:
                continue
            rows_by_key[row.unique_event_platform] = _odds_row(row, event_id)

        rows = list(rows_by_key.values())
        for chunk in chunked(rows):
            stmt = dialect_insert(self._session, EventOdds).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["unique_event_platform"],
                set_={column: stmt.excluded[column] for column in _ODDS_MUTABLE_COLUMNS},
            )
            self._session.execute(stmt)
        return len(rows)

    def update_event_result(self, event_id: int, result: str, status: str) -> None:
        self._session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(
                result=result[:32] if result else None,
                status=status or EventStatus.RESOLVED.value,
                resolve_time=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
            )
        )

    # ------------------------------------------------------------------
    # Queries

    def event_ids_for(self, keys: Iterable[tuple[int, str]]) -> dict[tuple[int, str], int]:
        by_platform: dict[int, list[str]] = {}
        for platform_id, platform_event_id in keys:
            by_platform.setdefault(platform_id, []).append(platform_event_id)

        resolved: dict[tuple[int, str], int] = {}
        for platform_id, platform_event_ids in by_platform.items():
            for chunk in chunked(platform_event_ids):
                query = select(Event.platform_event_id, Event.id).where(
                    Event.platform_id == platform_id,
                    Event.platform_event_id.in_(list(chunk)),
                )
                for platform_event_id, event_id in self._session.execute(query):
                    resolved[(platform_id, platform_event_id)] = event_id
        return resolved

    def get_event(self, event_id: int) -> Event | None:
        return self._session.get(Event, event_id)

    def get_event_by_uuid(self, event_uuid: str) -> Event | None:
        return self._session.execute(
            select(Event).where(Event.event_uuid == event_uuid)
        ).scalar_one_or_none()

    def get_events(self, event_ids: Sequence[int]) -> dict[int, Event]:
        if not event_ids:
            return {}
        events = self._session.execute(select(Event).where(Event.id.in_(list(event_ids)))).scalars()
        return {event.id: event for event in events}

    def list_events_for_aggregation(self, event_type: str, limit: int = 5000) -> list[Event]:
        query = (
            select(Event)
            .where(Event.type == event_type)
            .order_by(asc(Event.start_time), asc(Event.id))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars())

    def list_ended_active_events(self, now: datetime, limit: int = 500) -> list[Event]:
        query = (
            select(Event)
            .where(Event.status == EventStatus.ACTIVE.value, Event.end_time < now)
            .order_by(asc(Event.end_time))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars())

    def list_open_events(self, now: datetime, limit: int = 500) -> list[Event]:
        query = (
            select(Event)
            .where(Event.status == EventStatus.ACTIVE.value, Event.end_time > now)
            .order_by(asc(Event.end_time))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars())

    def list_odds_for_events(self, event_ids: Sequence[int]) -> list[EventOdds]:
        if not event_ids:
            return []
        query = (
            select(EventOdds)
            .where(EventOdds.event_id.in_(list(event_ids)))
            .order_by(asc(EventOdds.event_id), asc(EventOdds.id))
        )
        return list(self._session.execute(query).scalars())

    def get_platform_by_name(self, name: str) -> Platform | None:
        return self._session.execute(
            select(Platform).where(Platform.name == name.lower())
        ).scalar_one_or_none()

    def platform_names(self) -> dict[int, str]:
        return dict(self._session.execute(select(Platform.id, Platform.name)).all())


__all__ = ["EventRepository"]
