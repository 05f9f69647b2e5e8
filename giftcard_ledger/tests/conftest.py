from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import SQLModel

from ..core.config import Settings
from ..core.db import create_engine_for_url, init_db, open_session
from ..services import InstrumentRepository, InstrumentService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite:///{tmp_path / 'giftcards.db'}")


@pytest.fixture
def engine(settings):
    engine = create_engine_for_url(settings.database_url)
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with open_session(engine) as session:
        yield session


@pytest.fixture
def repository(session, settings) -> InstrumentRepository:
    return InstrumentRepository(session, settings)


@pytest.fixture
def service(repository, settings, clock) -> InstrumentService:
    return InstrumentService(repository, settings, clock)
