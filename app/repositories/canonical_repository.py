"""Canonical events and their per-venue links."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import asc, func, select
from sqlalchemy.orm import Session

from app.models import CanonicalEvent, EventPlatformLink

from .sql import dialect_insert


class CanonicalRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_canonical(
        self,
        *,
        canonical_key: str,
        sport_type: str,
        title: str,
        home_team: str,
        away_team: str,
        match_time: datetime | None,
        status: str,
    ) -> int:
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(self._session, CanonicalEvent).values(
            canonical_key=canonical_key,
            sport_type=sport_type,
            title=title,
            home_team=home_team,
            away_team=away_team,
            match_time=match_time,
            status=status,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["canonical_key"],
            set_={
                "title": stmt.excluded.title,
                "home_team": stmt.excluded.home_team,
                "away_team": stmt.excluded.away_team,
                "match_time": stmt.excluded.match_time,
                "status": stmt.excluded.status,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self._session.execute(stmt)
        return self._session.execute(
            select(CanonicalEvent.id).where(CanonicalEvent.canonical_key == canonical_key)
        ).scalar_one()

    def ensure_link(self, canonical_event_id: int, platform_id: int, event_id: int) -> None:
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(self._session, EventPlatformLink).values(
            canonical_event_id=canonical_event_id,
            platform_id=platform_id,
            event_id=event_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["canonical_event_id", "platform_id"],
            set_={"event_id": stmt.excluded.event_id, "updated_at": stmt.excluded.updated_at},
        )
        self._session.execute(stmt)

    # ------------------------------------------------------------------
    # Queries

    def get_canonical(self, canonical_event_id: int) -> CanonicalEvent | None:
        return self._session.get(CanonicalEvent, canonical_event_id)

    def list_canonicals(
        self,
        *,
        sport_type: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CanonicalEvent], int]:
        filters = []
        if sport_type:
            filters.append(CanonicalEvent.sport_type == sport_type)
        if status:
            filters.append(CanonicalEvent.status == status)

        query = (
            select(CanonicalEvent)
            .where(*filters)
            .order_by(asc(CanonicalEvent.match_time), asc(CanonicalEvent.id))
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(CanonicalEvent.id)).where(*filters)

        canonicals = list(self._session.execute(query).scalars())
        total = self._session.execute(total_query).scalar_one()
        return canonicals, total

    def links_for_canonical(self, canonical_event_id: int) -> list[EventPlatformLink]:
        query = (
            select(EventPlatformLink)
            .where(EventPlatformLink.canonical_event_id == canonical_event_id)
            .order_by(asc(EventPlatformLink.id))
        )
        return list(self._session.execute(query).scalars())

    def links_for_canonicals(self, canonical_ids: Sequence[int]) -> dict[int, list[EventPlatformLink]]:
        if not canonical_ids:
            return {}
        query = (
            select(EventPlatformLink)
            .where(EventPlatformLink.canonical_event_id.in_(list(canonical_ids)))
            .order_by(asc(EventPlatformLink.id))
        )
        grouped: dict[int, list[EventPlatformLink]] = {}
        for link in self._session.execute(query).scalars():
            grouped.setdefault(link.canonical_event_id, []).append(link)
        return grouped

    def link_for_event(self, event_id: int) -> EventPlatformLink | None:
        query = (
            select(EventPlatformLink)
            .where(EventPlatformLink.event_id == event_id)
            .order_by(asc(EventPlatformLink.id))
            .limit(1)
        )
        return self._session.execute(query).scalar_one_or_none()


__all__ = ["CanonicalRepository"]
