from __future__ import annotations

import secrets
from dataclasses import replace
from typing import Optional, Protocol
from uuid import UUID, uuid4

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from ..core.clock import ensure_utc
from ..core.config import Settings, get_settings
from ..core.errors import (
    CodeGenerationError,
    ConcurrentModificationError,
    DuplicateInstrumentCodeError,
    InstrumentNotFoundError,
)
from ..models import (
    GiftCardModel,
    GiftCardTransactionModel,
    InstrumentFilters,
    InstrumentState,
    LedgerEntry,
    StoredValueInstrument,
    TransactionKind,
    TransactionLedger,
)


class InstrumentStore(Protocol):
    """Persistence contract the service layer relies on.

    ``load_for_mutation`` followed by ``append_transaction`` and ``save`` forms
    one atomic unit: ``save`` commits the staged entries together with the
    card, or rejects the whole unit with ``ConcurrentModificationError`` when
    the card changed since it was loaded.
    """

    def add(self, instrument: StoredValueInstrument) -> StoredValueInstrument: ...

    def get(self, instrument_id: UUID) -> Optional[StoredValueInstrument]: ...

    def load_for_mutation(self, instrument_id: UUID) -> StoredValueInstrument: ...

    def save(self, instrument: StoredValueInstrument) -> StoredValueInstrument: ...

    def append_transaction(self, entry: LedgerEntry) -> LedgerEntry: ...

    def rollback(self) -> None: ...

    def find_by_code(self, code: str) -> Optional[StoredValueInstrument]: ...

    def reserve_unique_code(self) -> str: ...

    def list_transactions(
        self,
        instrument_id: UUID,
        limit: int,
        before_sequence: Optional[int] = None,
    ) -> list[LedgerEntry]: ...

    def count_transactions(self, instrument_id: UUID) -> int: ...

    def load_ledger(self, instrument_id: UUID) -> TransactionLedger: ...

    def list_instruments(
        self, filters: InstrumentFilters, page: int, limit: int
    ) -> list[StoredValueInstrument]: ...

    def count_instruments(self, filters: InstrumentFilters) -> int: ...


class InstrumentRepository:
    """SQLModel-backed :class:`InstrumentStore` bound to one session."""

    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._next_sequence: dict[UUID, int] = {}

    # Mapping ------------------------------------------------------------
    def _to_domain(self, row: GiftCardModel) -> StoredValueInstrument:
        return StoredValueInstrument(
            id=row.id,
            code=row.code,
            issued_amount=row.issued_amount,
            initial_amount=row.initial_amount,
            current_balance=row.current_balance,
            state=InstrumentState(row.state),
            created_at=ensure_utc(row.created_at),
            expires_at=ensure_utc(row.expires_at),
            activated_at=ensure_utc(row.activated_at),
            redeemed_at=ensure_utc(row.redeemed_at),
            last_transaction_at=ensure_utc(row.last_transaction_at),
            notes=row.notes,
            owner_scope_id=row.owner_scope_id,
            issuer_id=row.issuer_id,
            assigned_user_id=row.assigned_user_id,
            version=row.version,
        )

    def _entry_to_domain(self, row: GiftCardTransactionModel) -> LedgerEntry:
        return LedgerEntry(
            id=row.id,
            instrument_id=row.giftcard_id,
            sequence=row.sequence,
            kind=TransactionKind(row.kind),
            signed_amount=row.signed_amount,
            related_order_id=row.related_order_id,
            notes=row.notes,
            created_at=ensure_utc(row.created_at),
        )

    def _mutable_fields(self, instrument: StoredValueInstrument) -> dict:
        return {
            "initial_amount": instrument.initial_amount,
            "current_balance": instrument.current_balance,
            "state": instrument.state.value,
            "activated_at": instrument.activated_at,
            "redeemed_at": instrument.redeemed_at,
            "last_transaction_at": instrument.last_transaction_at,
            "notes": instrument.notes,
        }

    def _fetch_row(self, instrument_id: UUID) -> Optional[GiftCardModel]:
        stmt = (
            select(GiftCardModel)
            .where(GiftCardModel.id == instrument_id)
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    # Instrument operations ----------------------------------------------
    def add(self, instrument: StoredValueInstrument) -> StoredValueInstrument:
        row = GiftCardModel(
            id=instrument.id or uuid4(),
            code=instrument.code,
            issued_amount=instrument.issued_amount,
            created_at=instrument.created_at,
            expires_at=instrument.expires_at,
            owner_scope_id=instrument.owner_scope_id,
            issuer_id=instrument.issuer_id,
            assigned_user_id=instrument.assigned_user_id,
            version=1,
            **self._mutable_fields(instrument),
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if self.find_by_code(instrument.code) is not None:
                raise DuplicateInstrumentCodeError(
                    f"Gift card code {instrument.code} is already in use"
                ) from exc
            raise
        return self._to_domain(row)

    def get(self, instrument_id: UUID) -> Optional[StoredValueInstrument]:
        row = self._fetch_row(instrument_id)
        return self._to_domain(row) if row is not None else None

    def load_for_mutation(self, instrument_id: UUID) -> StoredValueInstrument:
        self.rollback()
        instrument = self.get(instrument_id)
        if instrument is None:
            raise InstrumentNotFoundError(f"Gift card {instrument_id} not found")
        return instrument

    def find_by_code(self, code: str) -> Optional[StoredValueInstrument]:
        stmt = (
            select(GiftCardModel)
            .where(GiftCardModel.code == code)
            .execution_options(populate_existing=True)
        )
        row = self.session.exec(stmt).first()
        return self._to_domain(row) if row is not None else None

    def _code_exists(self, code: str) -> bool:
        stmt = select(GiftCardModel.id).where(GiftCardModel.code == code)
        return self.session.exec(stmt).first() is not None

    def reserve_unique_code(self) -> str:
        """Generate a code no stored card uses yet.

        The unique index on ``giftcard.code`` still decides races between
        concurrent issuers; ``add`` reports those as duplicates.
        """
        alphabet = self.settings.code_alphabet
        for _ in range(self.settings.code_max_attempts):
            code = "".join(
                secrets.choice(alphabet) for _ in range(self.settings.code_length)
            )
            if not self._code_exists(code):
                return code
        raise CodeGenerationError(
            f"No free gift card code after {self.settings.code_max_attempts} attempts"
        )

    # Unit of work -------------------------------------------------------
    def _allocate_sequence(self, instrument_id: UUID) -> int:
        if instrument_id not in self._next_sequence:
            stmt = select(func.max(GiftCardTransactionModel.sequence)).where(
                GiftCardTransactionModel.giftcard_id == instrument_id
            )
            current = self.session.exec(stmt).one()
            self._next_sequence[instrument_id] = (current or 0) + 1
        sequence = self._next_sequence[instrument_id]
        self._next_sequence[instrument_id] = sequence + 1
        return sequence

    def append_transaction(self, entry: LedgerEntry) -> LedgerEntry:
        staged = replace(
            entry,
            id=entry.id or uuid4(),
            sequence=self._allocate_sequence(entry.instrument_id),
        )
        self.session.add(
            GiftCardTransactionModel(
                id=staged.id,
                giftcard_id=staged.instrument_id,
                sequence=staged.sequence,
                kind=staged.kind.value,
                signed_amount=staged.signed_amount,
                related_order_id=staged.related_order_id,
                notes=staged.notes,
                created_at=staged.created_at,
            )
        )
        return staged

    def save(self, instrument: StoredValueInstrument) -> StoredValueInstrument:
        stmt = (
            update(GiftCardModel)
            .where(GiftCardModel.id == instrument.id)
            .where(GiftCardModel.version == instrument.version)
            .values(version=instrument.version + 1, **self._mutable_fields(instrument))
        )
        try:
            result = self.session.connection().execute(stmt)
            if result.rowcount != 1:
                raise ConcurrentModificationError(
                    f"Gift card {instrument.id} was modified concurrently"
                )
            self.session.commit()
        except IntegrityError as exc:
            self.rollback()
            raise ConcurrentModificationError(
                f"Gift card {instrument.id} was modified concurrently"
            ) from exc
        except ConcurrentModificationError:
            self.rollback()
            raise
        # the conditional UPDATE bypassed the identity map
        self.session.expire_all()
        self._next_sequence.clear()
        return replace(instrument, version=instrument.version + 1)

    def rollback(self) -> None:
        self.session.rollback()
        self._next_sequence.clear()

    # Read path ----------------------------------------------------------
    def list_transactions(
        self,
        instrument_id: UUID,
        limit: int,
        before_sequence: Optional[int] = None,
    ) -> list[LedgerEntry]:
        stmt = select(GiftCardTransactionModel).where(
            GiftCardTransactionModel.giftcard_id == instrument_id
        )
        if before_sequence is not None:
            stmt = stmt.where(GiftCardTransactionModel.sequence < before_sequence)
        stmt = stmt.order_by(col(GiftCardTransactionModel.sequence).desc()).limit(limit)
        return [self._entry_to_domain(row) for row in self.session.exec(stmt)]

    def count_transactions(self, instrument_id: UUID) -> int:
        stmt = select(func.count()).select_from(GiftCardTransactionModel).where(
            GiftCardTransactionModel.giftcard_id == instrument_id
        )
        return self.session.exec(stmt).one()

    def load_ledger(self, instrument_id: UUID) -> TransactionLedger:
        stmt = (
            select(GiftCardTransactionModel)
            .where(GiftCardTransactionModel.giftcard_id == instrument_id)
            .order_by(col(GiftCardTransactionModel.sequence))
        )
        entries = [self._entry_to_domain(row) for row in self.session.exec(stmt)]
        return TransactionLedger(instrument_id, entries)

    # Listing ------------------------------------------------------------
    def _apply_filters(self, stmt, filters: InstrumentFilters):
        if filters.owner_scope_id:
            stmt = stmt.where(GiftCardModel.owner_scope_id == filters.owner_scope_id)
        if filters.state:
            stmt = stmt.where(GiftCardModel.state == filters.state.value)
        if filters.code:
            stmt = stmt.where(col(GiftCardModel.code).ilike(f"%{filters.code}%"))
        if filters.created_from:
            stmt = stmt.where(col(GiftCardModel.created_at) >= ensure_utc(filters.created_from))
        if filters.created_to:
            stmt = stmt.where(col(GiftCardModel.created_at) <= ensure_utc(filters.created_to))
        if filters.expires_from:
            stmt = stmt.where(col(GiftCardModel.expires_at) >= ensure_utc(filters.expires_from))
        if filters.expires_to:
            stmt = stmt.where(col(GiftCardModel.expires_at) <= ensure_utc(filters.expires_to))
        if filters.issuer_id:
            stmt = stmt.where(GiftCardModel.issuer_id == filters.issuer_id)
        if filters.assigned_user_id:
            stmt = stmt.where(GiftCardModel.assigned_user_id == filters.assigned_user_id)
        return stmt

    def list_instruments(
        self, filters: InstrumentFilters, page: int, limit: int
    ) -> list[StoredValueInstrument]:
        stmt = self._apply_filters(select(GiftCardModel), filters)
        stmt = (
            stmt.order_by(col(GiftCardModel.created_at).desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [self._to_domain(row) for row in self.session.exec(stmt)]

    def count_instruments(self, filters: InstrumentFilters) -> int:
        stmt = self._apply_filters(select(func.count()).select_from(GiftCardModel), filters)
        return self.session.exec(stmt).one()
