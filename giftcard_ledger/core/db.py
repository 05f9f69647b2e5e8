from __future__ import annotations

from collections.abc import Generator
from typing import Any, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure tables register with metadata
from .config import get_settings


_engine: Optional[Engine] = None


def create_engine_for_url(database_url: str, *, echo: bool = False) -> Engine:
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(get_settings().database_url)
    return _engine


def set_engine(new_engine: Optional[Engine]) -> None:
    """Swap the process-wide engine; ``None`` rebuilds it from settings on next use."""
    global _engine
    _engine = new_engine


def init_db(engine: Optional[Engine] = None) -> None:
    SQLModel.metadata.create_all(engine or get_engine())


def open_session(engine: Optional[Engine] = None) -> Session:
    # expire_on_commit=False keeps loaded rows readable after the store commits
    return Session(engine or get_engine(), expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    with open_session() as session:
        yield session
