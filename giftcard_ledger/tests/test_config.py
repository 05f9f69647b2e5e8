import logging

from ..core.config import Settings, configure_logging
from ..core.db import get_engine, get_session, set_engine
from ..services import InstrumentRepository


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("GIFTCARD_CODE_LENGTH", "8")
    monkeypatch.setenv("GIFTCARD_CODE_ALPHABET", "ABC123")
    monkeypatch.setenv("GIFTCARD_LOG_LEVEL", "DEBUG")

    settings = Settings()
    assert settings.code_length == 8
    assert settings.code_alphabet == "ABC123"
    assert settings.log_level == "DEBUG"


def test_defaults() -> None:
    settings = Settings()
    assert settings.code_length == 12
    assert settings.code_max_attempts == 10
    assert settings.conflict_max_retries == 3
    assert settings.database_url.startswith("sqlite")


def test_reserved_codes_follow_settings(session) -> None:
    settings = Settings(code_length=6, code_alphabet="XYZ")
    code = InstrumentRepository(session, settings).reserve_unique_code()
    assert len(code) == 6
    assert set(code) <= set("XYZ")


def test_configure_logging_applies_level(monkeypatch) -> None:
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    configure_logging(Settings(log_level="WARNING"))
    assert captured == {"level": "WARNING"}


def test_get_session_binds_to_current_engine(engine) -> None:
    set_engine(engine)
    try:
        sessions = get_session()
        session = next(sessions)
        assert session.get_bind() is engine
        assert get_engine() is engine
        sessions.close()
    finally:
        set_engine(None)
