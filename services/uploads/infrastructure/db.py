from __future__ import annotations

import threading
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


def _is_memory_sqlite(dsn: str) -> bool:
    url = make_url(dsn)
    return url.get_backend_name() == "sqlite" and url.database in (
        None,
        "",
        ":memory:",
    )


def _engine_options(dsn: str):
    if _is_memory_sqlite(dsn):
        # A single shared connection keeps in-memory databases alive.
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    if dsn.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
    }


class Base(DeclarativeBase):
    pass


class SerializedSessionFactory:
    """Hands out one ORM session at a time over a single shared connection."""

    def __init__(self, factory: sessionmaker) -> None:
        self._factory = factory
        self._lock = threading.Lock()

    @contextmanager
    def __call__(self):
        with self._lock:
            with self._factory() as db:
                yield db


def create_session_factory(dsn: str):
    engine = create_engine(dsn, **_engine_options(dsn))
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    if _is_memory_sqlite(dsn):
        return SerializedSessionFactory(factory)
    return factory
