from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.db import SessionLocal


@contextmanager
def session_scope() -> Session:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
