"""Read model for comparing canonical matches across venues."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.orm import Session

from app.core.times import to_millis
from app.errors import NotFoundError
from app.models import CanonicalEvent, Event, EventOdds, EventPlatformLink, OptionType
from app.repositories import CanonicalRepository, EventRepository
from app.schemas import (
    MarketAnalytics,
    MarketDetail,
    MarketEvent,
    MarketList,
    MarketSummary,
    PlatformOption,
)


MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class MarketQuery:
    sport_type: str = "sports"
    status: str = "active"
    page: int = 1
    page_size: int = 20

    def __post_init__(self) -> None:
        self.page = max(self.page, 1)
        if self.page_size <= 0:
            self.page_size = 20
        self.page_size = min(self.page_size, MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def _best_row(rows: Sequence[EventOdds]) -> EventOdds | None:
    best: EventOdds | None = None
    for row in rows:
        if best is None or float(row.price) > float(best.price):
            best = row
    return best


def _max_price(rows: Sequence[EventOdds], option_type: OptionType) -> float:
    prices = [float(row.price) for row in rows if row.option_type == option_type.value]
    return max(prices, default=0.0)


class MarketService:
    """Read-only facade over canonical events used by the API."""

    def __init__(self, session: Session):
        self._session = session
        self._event_repo = EventRepository(session)
        self._canonical_repo = CanonicalRepository(session)

    def list_markets(self, query: MarketQuery) -> MarketList:
        canonicals, total = self._canonical_repo.list_canonicals(
            sport_type=query.sport_type or None,
            status=query.status or None,
            limit=query.page_size,
            offset=query.offset,
        )
        links_by_canonical = self._canonical_repo.links_for_canonicals([item.id for item in canonicals])
        event_ids = [link.event_id for links in links_by_canonical.values() for link in links]
        odds_by_event = self._odds_by_event(event_ids)
        events = self._event_repo.get_events(event_ids)
        names = self._event_repo.platform_names()

        items = [
            self._summarize(canonical, links_by_canonical.get(canonical.id, []), odds_by_event, events, names)
            for canonical in canonicals
        ]
        return MarketList(total=total, page=query.page, page_size=query.page_size, items=items)

    def get_market_detail(self, id_or_event_uuid: str) -> MarketDetail:
        canonical, links, event = self._resolve(id_or_event_uuid.strip())
        event_ids = [link.event_id for link in links] or [event.id]
        rows = self._event_repo.list_odds_for_events(event_ids)
        names = self._event_repo.platform_names()

        options = [
            PlatformOption(
                platform_id=row.platform_id,
                platform_name=names.get(row.platform_id, str(row.platform_id)),
                option_name=row.option_name,
                option_type=row.option_type,
                price=row.price,
            )
            for row in rows
        ]
        return MarketDetail(
            canonical_id=canonical.id if canonical else None,
            event=MarketEvent(
                event_uuid=event.event_uuid,
                title=event.title,
                type=event.type,
                status=event.status,
                start_time=to_millis(event.start_time),
                end_time=to_millis(event.end_time),
            ),
            platform_options=options,
            analytics=self._analytics(rows, names),
        )

    def _resolve(
        self, id_or_event_uuid: str
    ) -> tuple[CanonicalEvent | None, list[EventPlatformLink], Event]:
        if id_or_event_uuid.isdigit():
            canonical = self._canonical_repo.get_canonical(int(id_or_event_uuid))
            if canonical is None:
                raise NotFoundError(f"market {id_or_event_uuid} not found")
            links = self._canonical_repo.links_for_canonical(canonical.id)
            if not links:
                raise NotFoundError(f"market {id_or_event_uuid} has no linked events")
            event = self._event_repo.get_event(links[0].event_id)
            if event is None:
                raise NotFoundError(f"event {links[0].event_id} not found")
            return canonical, links, event

        event = self._event_repo.get_event_by_uuid(id_or_event_uuid)
        if event is None:
            raise NotFoundError(f"event {id_or_event_uuid} not found")
        link = self._canonical_repo.link_for_event(event.id)
        if link is None:
            return None, [], event
        canonical = self._canonical_repo.get_canonical(link.canonical_event_id)
        return canonical, self._canonical_repo.links_for_canonical(link.canonical_event_id), event

    def _odds_by_event(self, event_ids: Sequence[int]) -> dict[int, list[EventOdds]]:
        grouped: dict[int, list[EventOdds]] = {}
        for row in self._event_repo.list_odds_for_events(event_ids):
            grouped.setdefault(row.event_id, []).append(row)
        return grouped

    def _summarize(
        self,
        canonical: CanonicalEvent,
        links: list[EventPlatformLink],
        odds_by_event: dict[int, list[EventOdds]],
        events: dict[int, Event],
        names: dict[int, str],
    ) -> MarketSummary:
        rows = [row for link in links for row in odds_by_event.get(link.event_id, [])]
        best = _best_row(rows)
        first_event = events.get(links[0].event_id) if links else None
        return MarketSummary(
            id=canonical.id,
            title=canonical.title,
            sport_type=canonical.sport_type,
            home_team=canonical.home_team or "",
            away_team=canonical.away_team or "",
            match_time=to_millis(canonical.match_time),
            status=canonical.status,
            platform_count=len({link.platform_id for link in links}),
            best_price=float(best.price) if best else 0.0,
            best_platform_id=best.platform_id if best else None,
            best_platform=names.get(best.platform_id) if best else None,
            best_option=best.option_name if best else None,
            max_win_price=_max_price(rows, OptionType.WIN),
            max_draw_price=_max_price(rows, OptionType.DRAW),
            max_lose_price=_max_price(rows, OptionType.LOSE),
            event_uuid=first_event.event_uuid if first_event else None,
        )

    @staticmethod
    def _analytics(rows: Sequence[EventOdds], names: dict[int, str]) -> MarketAnalytics:
        if not rows:
            return MarketAnalytics()
        best = _best_row(rows)
        prices = [float(row.price) for row in rows]
        price_min, price_max = min(prices), max(prices)
        spread = (price_max - price_min) / price_max if price_max > 0 else 0.0
        return MarketAnalytics(
            best_price=float(best.price),
            best_platform_id=best.platform_id,
            best_platform=names.get(best.platform_id),
            best_option=best.option_name,
            platform_count=len({row.platform_id for row in rows}),
            option_count=len(rows),
            price_min=price_min,
            price_max=price_max,
            price_spread_pct=spread,
        )


__all__ = ["MarketQuery", "MarketService"]
