from __future__ import annotations

import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.config import Settings
from app.db import Base, seed_platforms
from app.domain import NormalizedEvent, NormalizedOdds
from ingestion.normalize import option_type_for


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_dsn=f"sqlite:///{tmp_path/'forecastsync.db'}",
        log={"file_path": str(tmp_path / "logs" / "forecastsync.log"), "also_stdout": False},
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)
    with factory() as session:
        seed_platforms(session)
        session.commit()
    return factory


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scope(session_factory):
    """``session_scope`` equivalent bound to the in-memory engine."""

    @contextmanager
    def _scope():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _scope


def make_event(
    platform_id: int,
    platform_event_id: str,
    title: str,
    *,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    event_type: str = "sports",
    status: str = "active",
) -> NormalizedEvent:
    start = start_time or datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)
    return NormalizedEvent(
        platform_id=platform_id,
        platform_event_id=platform_event_id,
        event_uuid=f"{platform_id}_{platform_event_id}",
        title=title,
        type=event_type,
        start_time=start,
        end_time=end_time or start + timedelta(hours=3),
        status=status,
        updated_at=datetime.now(timezone.utc),
    )


def make_odds(
    platform_id: int,
    platform_event_id: str,
    option_name: str,
    price: float,
    *,
    option_type: str | None = None,
    key: str | None = None,
    updated_at: datetime | None = None,
) -> NormalizedOdds:
    return NormalizedOdds(
        platform_id=platform_id,
        platform_event_id=platform_event_id,
        unique_event_platform=key if key is not None else f"{platform_id}_{platform_event_id}_{option_name}",
        option_name=option_name,
        option_type=option_type if option_type is not None else option_type_for(option_name),
        price=price,
        updated_at=updated_at or datetime.now(timezone.utc),
    )
