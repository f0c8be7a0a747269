from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from receipt_processor.core.config import settings

SessionFactory = Callable[[], Session]

_url = make_url(settings.database_url)
_connect_args: dict = {}
if _url.drivername.startswith("sqlite"):
    _connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def diagnose_database() -> dict[str, Any]:
    """Run a trivial query; never raises."""
    result: dict[str, Any] = {"ok": True, "driver": _url.drivername}
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except Exception as e:  # noqa: BLE001
        result["ok"] = False
        result["error_type"] = type(e).__name__
        result["error"] = str(e)
    return result
