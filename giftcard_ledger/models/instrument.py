"""Gift card entity and its lifecycle state machine.

A :class:`StoredValueInstrument` is an immutable snapshot. Each operation
checks its preconditions and returns a :class:`Transition` holding the next
snapshot plus the ledger entry it produced, if any. Amounts are integer
minor units.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from ..core.errors import (
    InstrumentExpiredError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LedgerIntegrityError,
)
from .ledger import LedgerEntry, usage_percentage


class InstrumentState(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


EDITABLE_STATES = frozenset({InstrumentState.INACTIVE, InstrumentState.ACTIVE})
CLOSED_STATES = frozenset({InstrumentState.REDEEMED, InstrumentState.CANCELLED})

_SECONDS_PER_DAY = 24 * 60 * 60


def require_amount(value: object, *, allow_zero: bool) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError("Amounts must be integer minor units")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmountError(
            "Amount must not be negative" if allow_zero else "Amount must be greater than 0"
        )
    return value


@dataclass(frozen=True)
class Transition:
    instrument: "StoredValueInstrument"
    entry: Optional[LedgerEntry] = None


@dataclass(frozen=True)
class StoredValueInstrument:
    code: str
    issued_amount: int
    initial_amount: int
    current_balance: int
    state: InstrumentState
    created_at: datetime
    issuer_id: str
    expires_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    notes: Optional[str] = None
    owner_scope_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    last_transaction_at: Optional[datetime] = None
    id: Optional[UUID] = None
    version: int = 0

    @classmethod
    def create(
        cls,
        code: str,
        amount: int,
        owner_scope_id: Optional[str],
        issuer_id: str,
        assigned_user_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        *,
        now: datetime,
        instrument_id: Optional[UUID] = None,
    ) -> "StoredValueInstrument":
        amount = require_amount(amount, allow_zero=False)
        return cls(
            id=instrument_id,
            code=code,
            issued_amount=amount,
            initial_amount=amount,
            current_balance=amount,
            state=InstrumentState.INACTIVE,
            created_at=now,
            expires_at=expires_at,
            notes=notes,
            owner_scope_id=owner_scope_id,
            issuer_id=issuer_id,
            assigned_user_id=assigned_user_id,
        )

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------
    @property
    def available_balance(self) -> int:
        return self.current_balance

    @property
    def can_edit(self) -> bool:
        return self.state in EDITABLE_STATES

    @property
    def can_cancel(self) -> bool:
        return self.state not in CLOSED_STATES

    @property
    def usage_percentage(self) -> Decimal:
        return usage_percentage(self.initial_amount, self.current_balance)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def can_redeem(self, now: datetime) -> bool:
        return (
            self.state is InstrumentState.ACTIVE
            and not self.is_expired(now)
            and self.current_balance > 0
        )

    def days_remaining(self, now: datetime) -> Optional[int]:
        if self.expires_at is None:
            return None
        return math.ceil((self.expires_at - now).total_seconds() / _SECONDS_PER_DAY)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def activate(self, now: datetime) -> Transition:
        if self.state is not InstrumentState.INACTIVE:
            raise InvalidStateTransitionError(
                f"Only INACTIVE gift cards can be activated (state is {self.state.value})"
            )
        if self.is_expired(now):
            raise InstrumentExpiredError("Cannot activate an expired gift card")
        return Transition(
            replace(self, state=InstrumentState.ACTIVE, activated_at=now)
        )

    def redeem(
        self,
        amount: int,
        now: datetime,
        order_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transition:
        amount = require_amount(amount, allow_zero=False)
        if not self.can_redeem(now):
            if self.state is not InstrumentState.ACTIVE:
                raise InvalidStateTransitionError(
                    f"Only ACTIVE gift cards can be redeemed (state is {self.state.value})"
                )
            # the clock wins over a state that has not been refreshed yet
            if self.is_expired(now):
                raise InstrumentExpiredError("Cannot redeem an expired gift card")
        if amount > self.available_balance:
            raise InvalidAmountError("Redemption amount exceeds the available balance")

        stamp = self._entry_time(now)
        entry = LedgerEntry.redemption(
            self._require_id(), amount, stamp, order_id=order_id, notes=notes
        )
        balance = self.current_balance - amount
        changes = {"current_balance": balance, "last_transaction_at": stamp}
        if balance == 0:
            changes.update(state=InstrumentState.REDEEMED, redeemed_at=now)
        return Transition(replace(self, **changes), entry)

    def adjust_balance(self, new_amount: int, reason: str, now: datetime) -> Transition:
        new_amount = require_amount(new_amount, allow_zero=True)
        if not self.can_edit:
            raise InvalidStateTransitionError(
                f"Only ACTIVE or INACTIVE gift cards can be adjusted (state is {self.state.value})"
            )

        stamp = self._entry_time(now)
        delta = new_amount - self.current_balance
        entry = LedgerEntry.adjustment(self._require_id(), delta, reason, stamp)
        return Transition(
            replace(
                self,
                current_balance=new_amount,
                initial_amount=new_amount,
                notes=reason,
                last_transaction_at=stamp,
            ),
            entry,
        )

    def cancel(self, reason: str, now: datetime) -> Transition:
        if not self.can_cancel:
            if self.state is InstrumentState.REDEEMED:
                raise InvalidStateTransitionError("Cannot cancel a fully redeemed gift card")
            raise InvalidStateTransitionError("Gift card is already cancelled")

        stamp = self._entry_time(now)
        entry = LedgerEntry.cancellation(self._require_id(), reason, stamp)
        return Transition(
            replace(
                self,
                state=InstrumentState.CANCELLED,
                notes=reason,
                last_transaction_at=stamp,
            ),
            entry,
        )

    def reactivate(self, now: datetime) -> Transition:
        if self.state is not InstrumentState.CANCELLED:
            raise InvalidStateTransitionError(
                f"Only CANCELLED gift cards can be reactivated (state is {self.state.value})"
            )
        stamp = self._entry_time(now)
        entry = LedgerEntry.activation(self._require_id(), stamp)
        return Transition(
            replace(self, state=InstrumentState.ACTIVE, last_transaction_at=stamp),
            entry,
        )

    def refresh_expiry_state(self, now: datetime) -> Transition:
        """Materialise EXPIRED once the expiry date has passed.

        Closed and already expired cards are returned unchanged.
        """
        if (
            self.is_expired(now)
            and self.state not in CLOSED_STATES
            and self.state is not InstrumentState.EXPIRED
        ):
            return Transition(replace(self, state=InstrumentState.EXPIRED))
        return Transition(self)

    def _entry_time(self, now: datetime) -> datetime:
        if self.last_transaction_at is not None and now < self.last_transaction_at:
            return self.last_transaction_at
        return now

    def _require_id(self) -> UUID:
        if self.id is None:
            raise LedgerIntegrityError("Gift card must be stored before it can transact")
        return self.id
