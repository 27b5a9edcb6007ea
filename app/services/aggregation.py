"""Group per-venue events describing the same match into canonical events."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import Session

from app.core.times import as_utc
from app.models import Event, EventOdds
from app.repositories import CanonicalRepository, EventRepository


AGGREGATION_EVENT_LIMIT = 5000
SLOT_SECONDS = 30 * 60
TEAM_NAME_MAX_LEN = 128
DEFAULT_SPORT_TYPE = "sports"

_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    text = (title or "").lower().strip()
    text = _NON_ALNUM.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def time_slot(event: Event) -> int:
    start = as_utc(event.start_time)
    if start is None:
        return 0
    seconds = int(start.timestamp())
    return seconds - seconds % SLOT_SECONDS


def canonical_key(title: str, slot: int) -> str:
    digest = hashlib.sha256(f"{normalize_title(title)}|{slot}".encode("utf-8")).hexdigest()
    return digest[:32]


def extract_teams(events: Sequence[Event], odds_by_event: dict[int, list[EventOdds]]) -> tuple[str, str]:
    """Use the first event exposing exactly two named (non YES/NO) sides."""

    for event in events:
        rows = odds_by_event.get(event.id, [])
        if len(rows) != 2:
            continue
        names = sorted(row.option_name for row in rows)
        if {name.upper() for name in names} == {"YES", "NO"}:
            continue
        return names[0][:TEAM_NAME_MAX_LEN], names[1][:TEAM_NAME_MAX_LEN]
    return "", ""


@dataclass(slots=True)
class AggregationResult:
    groups: int = 0
    links: int = 0
    failed_groups: list[str] = field(default_factory=list)


class AggregationService:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._event_repo = EventRepository(session)
        self._canonical_repo = CanonicalRepository(session)

    def aggregate(self, event_type: str, *, limit: int = AGGREGATION_EVENT_LIMIT) -> AggregationResult:
        events = self._event_repo.list_events_for_aggregation(event_type, limit=limit)
        groups: dict[str, list[Event]] = {}
        for event in events:
            groups.setdefault(canonical_key(event.title, time_slot(event)), []).append(event)

        odds_by_event: dict[int, list[EventOdds]] = {}
        for row in self._event_repo.list_odds_for_events([event.id for event in events]):
            odds_by_event.setdefault(row.event_id, []).append(row)

        result = AggregationResult()
        for key, members in groups.items():
            try:
                with self._session.begin_nested():
                    result.links += self._write_group(key, members, event_type, odds_by_event)
            except Exception as exc:  # one bad group must not stop the rest
                logger.warning("Aggregation of canonical {} failed: {}", key, exc)
                result.failed_groups.append(key)
                continue
            result.groups += 1

        logger.info(
            "Aggregated {} {} events into {} canonicals ({} links, {} failed)",
            len(events),
            event_type,
            result.groups,
            result.links,
            len(result.failed_groups),
        )
        return result

    def _write_group(
        self,
        key: str,
        members: list[Event],
        event_type: str,
        odds_by_event: dict[int, list[EventOdds]],
    ) -> int:
        first = members[0]
        home, away = extract_teams(members, odds_by_event)
        canonical_id = self._canonical_repo.upsert_canonical(
            canonical_key=key,
            sport_type=event_type or DEFAULT_SPORT_TYPE,
            title=first.title,
            home_team=home,
            away_team=away,
            match_time=first.start_time,
            status=first.status,
        )
        for event in members:
            self._canonical_repo.ensure_link(canonical_id, event.platform_id, event.id)
            event.canonical_key = key
        return len(members)


__all__ = [
    "AggregationResult",
    "AggregationService",
    "canonical_key",
    "extract_teams",
    "normalize_title",
    "time_slot",
]
