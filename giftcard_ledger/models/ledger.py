"""Append-only transaction history of a single gift card.

Entries are immutable once created. The card snapshot only carries the
running balance; the full history is read separately through
:class:`TransactionLedger`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Iterator, Optional
from uuid import UUID

from ..core.errors import LedgerIntegrityError


class TransactionKind(str, Enum):
    ACTIVATION = "ACTIVATION"
    REDEMPTION = "REDEMPTION"
    ADJUSTMENT = "ADJUSTMENT"
    CANCELLATION = "CANCELLATION"


_KIND_LABELS = {
    TransactionKind.ACTIVATION: "Activation",
    TransactionKind.REDEMPTION: "Redemption",
    TransactionKind.CANCELLATION: "Cancellation",
}

_PERCENT = Decimal("0.01")


@dataclass(frozen=True)
class LedgerEntry:
    instrument_id: UUID
    kind: TransactionKind
    signed_amount: int
    created_at: datetime
    notes: Optional[str] = None
    related_order_id: Optional[str] = None
    # assigned by the store when the entry is appended
    id: Optional[UUID] = None
    sequence: Optional[int] = None

    @property
    def is_increase(self) -> bool:
        return self.signed_amount > 0

    @property
    def is_decrease(self) -> bool:
        return self.signed_amount < 0

    @property
    def magnitude(self) -> int:
        return abs(self.signed_amount)

    @property
    def label(self) -> str:
        if self.kind is TransactionKind.ADJUSTMENT:
            return "Adjustment (increase)" if self.is_increase else "Adjustment (decrease)"
        return _KIND_LABELS[self.kind]

    @classmethod
    def activation(cls, instrument_id: UUID, now: datetime) -> "LedgerEntry":
        return cls(
            instrument_id=instrument_id,
            kind=TransactionKind.ACTIVATION,
            signed_amount=0,
            created_at=now,
            notes="Gift card reactivated",
        )

    @classmethod
    def redemption(
        cls,
        instrument_id: UUID,
        amount: int,
        now: datetime,
        order_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> "LedgerEntry":
        return cls(
            instrument_id=instrument_id,
            kind=TransactionKind.REDEMPTION,
            signed_amount=-amount,
            created_at=now,
            notes=notes or "Gift card redemption",
            related_order_id=order_id,
        )

    @classmethod
    def adjustment(
        cls, instrument_id: UUID, delta: int, reason: str, now: datetime
    ) -> "LedgerEntry":
        direction = "increase" if delta >= 0 else "decrease"
        return cls(
            instrument_id=instrument_id,
            kind=TransactionKind.ADJUSTMENT,
            signed_amount=delta,
            created_at=now,
            notes=f"Balance adjustment: {direction} - {reason}",
        )

    @classmethod
    def cancellation(
        cls, instrument_id: UUID, reason: str, now: datetime
    ) -> "LedgerEntry":
        return cls(
            instrument_id=instrument_id,
            kind=TransactionKind.CANCELLATION,
            signed_amount=0,
            created_at=now,
            notes=f"Card cancelled: {reason}",
        )


def usage_percentage(initial_amount: int, current_balance: int) -> Decimal:
    """Share of ``initial_amount`` already consumed, as a percentage.

    A zero initial amount reports ``0`` rather than dividing by zero.
    """
    if initial_amount <= 0:
        return Decimal("0.00")
    used = Decimal(initial_amount - current_balance) * 100 / Decimal(initial_amount)
    return used.quantize(_PERCENT, rounding=ROUND_HALF_UP)


class TransactionLedger:
    def __init__(
        self, instrument_id: UUID, entries: Iterable[LedgerEntry] = ()
    ) -> None:
        self.instrument_id = instrument_id
        self._entries: list[LedgerEntry] = []
        ordered = sorted(
            entries, key=lambda e: (e.created_at, e.sequence or 0)
        )
        for entry in ordered:
            self.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> tuple[LedgerEntry, ...]:
        return tuple(self._entries)

    @property
    def latest(self) -> Optional[LedgerEntry]:
        return self._entries[-1] if self._entries else None

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.instrument_id != self.instrument_id:
            raise LedgerIntegrityError(
                f"Entry for {entry.instrument_id} cannot join ledger of {self.instrument_id}"
            )
        latest = self.latest
        if latest is not None and entry.created_at < latest.created_at:
            raise LedgerIntegrityError("Ledger entries must not go back in time")
        self._entries.append(entry)
        return entry

    def history(self) -> list[LedgerEntry]:
        """Entries ordered most-recent-first."""
        return list(reversed(self._entries))

    @property
    def total_redeemed(self) -> int:
        return sum(
            e.magnitude for e in self._entries if e.kind is TransactionKind.REDEMPTION
        )

    @property
    def net_change(self) -> int:
        return sum(e.signed_amount for e in self._entries)

    def replay_balance(self, opening_amount: int) -> int:
        return opening_amount + self.net_change

    def usage_percentage(self, initial_amount: int, current_balance: int) -> Decimal:
        return usage_percentage(initial_amount, current_balance)
