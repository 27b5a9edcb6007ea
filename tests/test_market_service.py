from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.errors import NotFoundError
from app.repositories import CanonicalRepository, EventRepository
from app.services.aggregation import AggregationService
from app.services.market_service import MarketQuery, MarketService
from conftest import make_event, make_odds


@pytest.fixture
def markets(session):
    repo = EventRepository(session)
    repo.save_events(
        [make_event(1, "100", "Lakers vs Celtics")],
        [make_odds(1, "100", "Lakers", 0.55), make_odds(1, "100", "Celtics", 0.45)],
    )
    repo.save_events(
        [make_event(2, "K1", "Lakers vs Celtics")],
        [make_odds(2, "K1", "YES", 0.62), make_odds(2, "K1", "NO", 0.40, option_type="lose")],
    )
    repo.save_events(
        [make_event(1, "200", "Heat vs Knicks", start_time=datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc))],
        [make_odds(1, "200", "Heat", 0.30), make_odds(1, "200", "Draw", 0.10, option_type="draw")],
    )
    AggregationService(session).aggregate("sports")
    session.commit()
    return session


def test_market_query_clamps_paging():
    assert (MarketQuery(page=0, page_size=0).page, MarketQuery(page=0, page_size=0).page_size) == (1, 20)
    assert MarketQuery(page_size=1000).page_size == 100
    assert MarketQuery(page=3, page_size=10).offset == 20


def test_list_markets_summarizes_each_canonical(markets):
    result = MarketService(markets).list_markets(MarketQuery())

    assert result.total == 2
    first, second = result.items
    assert first.title == "Lakers vs Celtics"
    assert first.platform_count == 2
    assert (first.best_price, first.best_platform, first.best_option) == (0.62, "kalshi", "YES")
    assert (first.max_win_price, first.max_lose_price, first.max_draw_price) == (0.62, 0.40, 0.0)
    assert first.match_time == int(datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc).timestamp() * 1000)
    assert first.event_uuid == "1_100"
    assert second.title == "Heat vs Knicks"
    assert second.max_draw_price == pytest.approx(0.10)


def test_list_markets_filters_and_pages(markets):
    service = MarketService(markets)

    assert service.list_markets(MarketQuery(sport_type="esports")).total == 0
    page = service.list_markets(MarketQuery(page=2, page_size=1))
    assert (page.total, [item.title for item in page.items]) == (2, ["Heat vs Knicks"])


def test_detail_by_canonical_id(markets):
    canonical_id = MarketService(markets).list_markets(MarketQuery()).items[0].id

    detail = MarketService(markets).get_market_detail(str(canonical_id))

    assert detail.canonical_id == canonical_id
    assert detail.event.event_uuid == "1_100"
    assert len(detail.platform_options) == 4
    assert {option.platform_name for option in detail.platform_options} == {"polymarket", "kalshi"}
    analytics = detail.analytics
    assert (analytics.best_price, analytics.best_platform, analytics.option_count) == (0.62, "kalshi", 4)
    assert analytics.price_spread_pct == pytest.approx((0.62 - 0.40) / 0.62)


def test_detail_by_event_uuid_uses_the_whole_canonical(markets):
    detail = MarketService(markets).get_market_detail("2_K1")

    assert detail.event.event_uuid == "2_K1"
    assert detail.analytics.platform_count == 2


def test_detail_for_unlinked_event(session):
    EventRepository(session).save_events([make_event(1, "300", "Solo match")], [make_odds(1, "300", "A", 0.5)])
    session.commit()

    detail = MarketService(session).get_market_detail("1_300")

    assert detail.canonical_id is None
    assert [option.option_name for option in detail.platform_options] == ["A"]


def test_detail_not_found(markets):
    service = MarketService(markets)

    with pytest.raises(NotFoundError):
        service.get_market_detail("999999")
    with pytest.raises(NotFoundError):
        service.get_market_detail("9_unknown")


def test_canonical_without_links_is_not_found(session):
    canonical_id = CanonicalRepository(session).upsert_canonical(
        canonical_key="k" * 32,
        sport_type="sports",
        title="Orphan",
        home_team="",
        away_team="",
        match_time=None,
        status="active",
    )
    session.commit()

    with pytest.raises(NotFoundError):
        MarketService(session).get_market_detail(str(canonical_id))
