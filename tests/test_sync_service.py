from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from app.domain import ConvertedBatch, EventResult
from app.errors import InvalidInputError, NotFoundError
from app.models import CanonicalEvent, Event, EventOdds, Platform
from app.services.sync_service import SyncService, dedup_odds
from conftest import make_event, make_odds


class FakeAdapter:
    name = "polymarket"
    platform_id = 1

    def __init__(self, batches):
        self.batches = batches
        self.closed = False

    def iter_event_batches(self, event_type):
        yield from self.batches

    def convert_to_db_model(self, raw_events, event_type):
        batch = ConvertedBatch()
        for raw in raw_events:
            batch.events.append(make_event(1, raw["id"], raw["title"], start_time=raw.get("start")))
            batch.odds.append(make_odds(1, raw["id"], "Lakers", 0.55))
            batch.odds.append(make_odds(1, raw["id"], "Celtics", 0.45, option_type="lose"))
        return batch

    def close(self):
        self.closed = True


class ResolvingAdapter(FakeAdapter):
    def fetch_event_result(self, platform_event_id):
        return EventResult(result="Lakers", status="resolved")


def _service(scope, adapter, settings):
    return SyncService(session_factory=scope, adapter_factory=lambda name, config: adapter, config=settings)


def test_dedup_odds_keeps_latest_row():
    older = datetime(2026, 3, 1, tzinfo=timezone.utc)
    newer = older + timedelta(minutes=5)
    rows = [
        make_odds(1, "100", "Lakers", 0.50, updated_at=older),
        make_odds(1, "100", "Lakers", 0.56, updated_at=newer),
        make_odds(1, "100", "Celtics", 0.45, updated_at=older),
    ]

    result = dedup_odds(rows)

    assert sorted((row.option_name, row.price) for row in result) == [("Celtics", 0.45), ("Lakers", 0.56)]


def test_dedup_odds_fills_missing_keys():
    rows = [make_odds(1, "100", "Lakers", 0.5, key=""), make_odds(1, "100", "Lakers", 0.6, key="")]

    result = dedup_odds(rows)

    assert result
    assert all(row.unique_event_platform.startswith("100_1_Lakers_") for row in result)


def test_sync_platform_saves_each_batch_and_aggregates(scope, test_settings):
    adapter = FakeAdapter([[{"id": "100", "title": "Lakers vs Celtics"}], [], [{"id": "101", "title": "Heat vs Knicks"}]])

    summary = _service(scope, adapter, test_settings).sync_platform("Polymarket")

    assert (summary.platform, summary.batches, summary.events, summary.odds) == ("polymarket", 2, 2, 4)
    assert adapter.closed
    with scope() as session:
        assert session.execute(select(func.count(Event.id))).scalar_one() == 2
        assert session.execute(select(func.count(EventOdds.id))).scalar_one() == 4
        assert session.execute(select(func.count(CanonicalEvent.id))).scalar_one() == 2


def test_sync_platform_records_results_for_ended_events(scope, test_settings):
    start = datetime.now(timezone.utc) - timedelta(days=2)
    adapter = ResolvingAdapter([[{"id": "100", "title": "Lakers vs Celtics", "start": start}]])

    _service(scope, adapter, test_settings).sync_platform("polymarket")

    with scope() as session:
        event = session.execute(select(Event)).scalar_one()
        assert (event.result, event.status) == ("Lakers", "resolved")


def test_consumer_failure_keeps_earlier_batches(scope, test_settings):
    class BrokenAdapter(FakeAdapter):
        def convert_to_db_model(self, raw_events, event_type):
            if raw_events[0]["id"] == "bad":
                raise RuntimeError("malformed payload")
            return super().convert_to_db_model(raw_events, event_type)

    adapter = BrokenAdapter([[{"id": "100", "title": "Lakers vs Celtics"}], [{"id": "bad", "title": "?"}]])

    with pytest.raises(RuntimeError):
        _service(scope, adapter, test_settings).sync_platform("polymarket")

    assert adapter.closed
    with scope() as session:
        assert session.execute(select(func.count(Event.id))).scalar_one() == 1


def test_unknown_platform_is_not_found(scope, test_settings):
    with pytest.raises(NotFoundError):
        _service(scope, FakeAdapter([]), test_settings).sync_platform("augur")


def test_blank_platform_is_invalid(scope, test_settings):
    with pytest.raises(InvalidInputError):
        _service(scope, FakeAdapter([]), test_settings).sync_platform("  ")


def test_disabled_platform_is_rejected(scope, test_settings):
    with scope() as session:
        session.execute(update(Platform).where(Platform.name == "kalshi").values(is_enabled=False))

    adapter = FakeAdapter([])
    with pytest.raises(InvalidInputError):
        _service(scope, adapter, test_settings).sync_platform("kalshi")
    assert not adapter.closed
