"""
Engine and session factory shared by the API, the SLA monitor thread and the
outbox worker.

Pool sizing comes from DB_POOL_* environment variables and only applies to
server databases; SQLite URLs (tests, local runs) get a thread-shareable
connection instead.
"""

from __future__ import annotations

import os
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings


POOL_DEFAULTS = {
    "pool_size": ("DB_POOL_SIZE", 5),
    "max_overflow": ("DB_MAX_OVERFLOW", 10),
    "pool_recycle": ("DB_POOL_RECYCLE_SEC", 1800),
    "pool_timeout": ("DB_POOL_TIMEOUT_SEC", 30),
}


def _pool_setting(env_name: str, fallback: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _engine_options(url: str) -> dict:
    options: dict = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # The SLA monitor thread shares the file with request handlers.
        options["connect_args"] = {"check_same_thread": False}
    else:
        for option, (env_name, fallback) in POOL_DEFAULTS.items():
            options[option] = _pool_setting(env_name, fallback)
    return options


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
