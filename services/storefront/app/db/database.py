from __future__ import annotations

import os

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None
_SESSIONMAKER: sessionmaker | None = None


def _default_db_url() -> str:
    # Local file for dev. Deployments set DATABASE_URL.
    return "sqlite+pysqlite:///.local/storefront.db"


def get_engine() -> Engine:
    """Engine for the current DATABASE_URL, rebuilt when the URL changes."""

    global _ENGINE, _ENGINE_URL, _SESSIONMAKER

    url = os.getenv("DATABASE_URL", _default_db_url())

    if _ENGINE is not None and _ENGINE_URL == url:
        return _ENGINE

    if url.startswith("sqlite") and ":///" in url and ":memory:" not in url:
        db_path = url.split(":///", 1)[1]
        if db_path:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _ENGINE = create_engine(url, future=True, connect_args=connect_args)
    _ENGINE_URL = url
    _SESSIONMAKER = sessionmaker(bind=_ENGINE, class_=Session, autocommit=False, autoflush=False)
    return _ENGINE


def db_session() -> Session:
    get_engine()
    assert _SESSIONMAKER is not None
    return _SESSIONMAKER()
