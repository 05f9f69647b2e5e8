import pytest

from ..core.config import get_settings
from ..core.db import open_session
from ..core.errors import (
    ConcurrentModificationError,
    InvalidStateTransitionError,
)
from ..models import InstrumentCreate, InstrumentState
from ..services import InstrumentRepository, InstrumentService, retry_on_conflict


@pytest.fixture
def active_card(service):
    card = service.create_instrument(InstrumentCreate(amount=1000, issuer_id="issuer-1"))
    return service.activate_instrument(card.id)


def test_racing_full_redemptions_commit_once(engine, settings, clock, active_card) -> None:
    with open_session(engine) as first_session, open_session(engine) as second_session:
        first = InstrumentRepository(first_session, settings)
        second = InstrumentRepository(second_session, settings)

        mine = first.load_for_mutation(active_card.id)
        theirs = second.load_for_mutation(active_card.id)

        winner = mine.redeem(1000, clock())
        first.append_transaction(winner.entry)
        first.save(winner.instrument)

        loser = theirs.redeem(1000, clock())
        second.append_transaction(loser.entry)
        with pytest.raises(ConcurrentModificationError):
            second.save(loser.instrument)

    with open_session(engine) as check:
        repository = InstrumentRepository(check, settings)
        stored = repository.get(active_card.id)
        ledger = repository.load_ledger(active_card.id)

    assert stored.state is InstrumentState.REDEEMED
    assert stored.current_balance == 0
    assert [entry.signed_amount for entry in ledger] == [-1000]


def test_retry_reruns_the_whole_cycle(engine, settings, clock, active_card) -> None:
    calls = []

    def redeem_everything():
        calls.append(len(calls) + 1)
        with open_session(engine) as session:
            repository = InstrumentRepository(session, settings)
            if len(calls) == 1:
                stale = repository.load_for_mutation(active_card.id)
                with open_session(engine) as other:
                    InstrumentService(
                        InstrumentRepository(other, settings), settings, clock
                    ).redeem_instrument(active_card.id, 1000)
                transition = stale.redeem(1000, clock())
                repository.append_transaction(transition.entry)
                return repository.save(transition.instrument)
            service = InstrumentService(repository, settings, clock)
            return service.redeem_instrument(active_card.id, 1000)

    with pytest.raises(InvalidStateTransitionError):
        retry_on_conflict(redeem_everything, attempts=3)
    assert calls == [1, 2]


def test_retry_returns_first_success() -> None:
    outcomes = iter([ConcurrentModificationError("busy"), ConcurrentModificationError("busy"), "done"])

    def operation():
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert retry_on_conflict(operation, attempts=2) == "done"


def test_retry_gives_up_after_budget() -> None:
    calls = []

    def operation():
        calls.append(1)
        raise ConcurrentModificationError("still busy")

    with pytest.raises(ConcurrentModificationError):
        retry_on_conflict(operation, attempts=2)
    assert len(calls) == 3


def test_retry_uses_configured_budget(monkeypatch) -> None:
    monkeypatch.setenv("GIFTCARD_CONFLICT_MAX_RETRIES", "1")
    get_settings.cache_clear()
    calls = []

    def operation():
        calls.append(1)
        raise ConcurrentModificationError("busy")

    try:
        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(operation)
    finally:
        get_settings.cache_clear()
    assert len(calls) == 2


def test_retry_uses_injected_settings(settings) -> None:
    custom = settings.model_copy(update={"conflict_max_retries": 4})
    calls = []

    def operation():
        calls.append(1)
        raise ConcurrentModificationError("busy")

    with pytest.raises(ConcurrentModificationError):
        retry_on_conflict(operation, settings=custom)
    assert len(calls) == 5
