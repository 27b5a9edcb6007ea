from collections.abc import Generator
from pathlib import Path

from loguru import logger
from sqlalchemy import create_engine, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return

    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return

    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def _create_engine(url: str):
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    parsed = make_url(url)
    backend = parsed.get_backend_name()

    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        _ensure_sqlite_path(url)
    else:
        pool = settings.database
        engine_kwargs["pool_size"] = max(pool.max_idle_conns, 1)
        engine_kwargs["max_overflow"] = max(pool.max_open_conns - pool.max_idle_conns, 0)
        engine_kwargs["pool_recycle"] = pool.conn_max_lifetime or -1

        if backend.startswith("postgresql"):
            connect_args.setdefault("keepalives", 1)
            connect_args.setdefault("keepalives_idle", 120)
            connect_args.setdefault("keepalives_interval", 30)
            connect_args.setdefault("keepalives_count", 5)

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    return create_engine(url, **engine_kwargs)


def _create_session_factory(engine) -> sessionmaker[Session]:
    # Autoflush lets repeated upserts inside one ingest transaction see rows
    # added earlier in the same batch.
    return sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)


def _build_db_components(url: str):
    engine = _create_engine(url)
    session_factory = _create_session_factory(engine)
    return engine, session_factory


engine, SessionLocal = _build_db_components(settings.resolved_database_url)
Base = declarative_base()


def seed_platforms(session: Session) -> None:
    """Insert the venues the router knows by numeric id."""

    from .models import Platform, PlatformType, SEEDED_PLATFORMS

    existing = set(session.execute(select(Platform.name)).scalars().all())
    for platform_id, name, platform_type in SEEDED_PLATFORMS:
        if name in existing:
            continue
        config = settings.platform(name)
        session.add(
            Platform(
                id=platform_id,
                name=name,
                type=PlatformType(platform_type).value,
                api_url=config.base_url or None,
            )
        )
        logger.info("Seeded platform {} (id={})", name, platform_id)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_transactional_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_platforms(session)
        session.commit()
