from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple
from uuid import UUID

from ..core.clock import Clock, ensure_utc, utc_now
from ..core.config import Settings, get_settings
from ..core.errors import (
    CodeGenerationError,
    DuplicateInstrumentCodeError,
    InstrumentNotFoundError,
    InstrumentValidationError,
)
from ..models import (
    InstrumentCreate,
    InstrumentFilters,
    InstrumentPage,
    InstrumentResponse,
    InstrumentSummary,
    LedgerEntry,
    LedgerEntryResponse,
    StoredValueInstrument,
    TransactionPage,
    Transition,
    require_amount,
)
from .repository import InstrumentStore


logger = logging.getLogger(__name__)

TransitionFn = Callable[[StoredValueInstrument, datetime], Transition]


class InstrumentService:
    """Service-level contract around the gift card state machine.

    Each mutating call runs one load -> transition -> append -> save cycle
    against the store. A ``ConcurrentModificationError`` from ``save`` is
    surfaced as-is; retrying is up to the caller (see ``retry_on_conflict``).
    """

    def __init__(
        self,
        store: InstrumentStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    def _to_response(self, instrument: StoredValueInstrument) -> InstrumentResponse:
        return InstrumentResponse.model_validate(instrument)

    def _entry_to_response(self, entry: LedgerEntry) -> LedgerEntryResponse:
        return LedgerEntryResponse.model_validate(entry)

    def _get(self, instrument_id: UUID) -> StoredValueInstrument:
        instrument = self.store.get(instrument_id)
        if instrument is None:
            raise InstrumentNotFoundError(f"Gift card {instrument_id} not found")
        return instrument

    def _mutate(
        self, instrument_id: UUID, event: str, apply: TransitionFn
    ) -> Tuple[StoredValueInstrument, Optional[LedgerEntry]]:
        instrument = self.store.load_for_mutation(instrument_id)
        try:
            transition = apply(instrument, self._now())
            entry = None
            if transition.entry is not None:
                entry = self.store.append_transaction(transition.entry)
            saved = self.store.save(transition.instrument)
        except Exception:
            self.store.rollback()
            raise

        extra = {
            "instrument_id": str(instrument_id),
            "state": saved.state.value,
            "balance": saved.current_balance,
        }
        if entry is not None:
            extra["signed_amount"] = entry.signed_amount
        logger.info(event, extra=extra)
        return saved, entry

    def _validate_creation(self, payload: InstrumentCreate, now: datetime) -> Optional[datetime]:
        errors = []
        if payload.amount <= 0:
            errors.append("Initial amount must be greater than 0")
        if not payload.issuer_id.strip():
            errors.append("Issuer is required")
        expires_at = ensure_utc(payload.expires_at)
        if expires_at is not None and expires_at <= now:
            errors.append("Expiry date must be in the future")
        if errors:
            raise InstrumentValidationError("; ".join(errors))
        return expires_at

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_instrument(self, payload: InstrumentCreate) -> InstrumentResponse:
        now = self._now()
        expires_at = self._validate_creation(payload, now)

        for _ in range(self.settings.code_max_attempts):
            code = self.store.reserve_unique_code()
            instrument = StoredValueInstrument.create(
                code,
                payload.amount,
                payload.owner_scope_id,
                payload.issuer_id,
                payload.assigned_user_id,
                expires_at,
                payload.notes,
                now=now,
            )
            try:
                stored = self.store.add(instrument)
            except DuplicateInstrumentCodeError:
                logger.warning("giftcard.code.collision", extra={"code": code})
                continue
            logger.info(
                "giftcard.created",
                extra={
                    "instrument_id": str(stored.id),
                    "amount": stored.initial_amount,
                    "issuer_id": stored.issuer_id,
                },
            )
            return self._to_response(stored)

        raise CodeGenerationError("Could not issue a gift card with a unique code")

    def activate_instrument(self, instrument_id: UUID) -> InstrumentResponse:
        saved, _ = self._mutate(
            instrument_id,
            "giftcard.activated",
            lambda card, now: card.activate(now),
        )
        return self._to_response(saved)

    def redeem_instrument(
        self,
        instrument_id: UUID,
        amount: int,
        order_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> InstrumentResponse:
        require_amount(amount, allow_zero=False)
        saved, _ = self._mutate(
            instrument_id,
            "giftcard.redeemed",
            lambda card, now: card.redeem(amount, now, order_id=order_id, notes=notes),
        )
        return self._to_response(saved)

    def adjust_instrument_balance(
        self, instrument_id: UUID, new_amount: int, reason: str
    ) -> InstrumentResponse:
        require_amount(new_amount, allow_zero=True)
        saved, _ = self._mutate(
            instrument_id,
            "giftcard.adjusted",
            lambda card, now: card.adjust_balance(new_amount, reason, now),
        )
        return self._to_response(saved)

    def cancel_instrument(self, instrument_id: UUID, reason: str) -> InstrumentResponse:
        saved, _ = self._mutate(
            instrument_id,
            "giftcard.cancelled",
            lambda card, now: card.cancel(reason, now),
        )
        return self._to_response(saved)

    def reactivate_instrument(self, instrument_id: UUID) -> InstrumentResponse:
        saved, _ = self._mutate(
            instrument_id,
            "giftcard.reactivated",
            lambda card, now: card.reactivate(now),
        )
        return self._to_response(saved)

    def refresh_instrument_expiry(self, instrument_id: UUID) -> InstrumentResponse:
        instrument = self.store.load_for_mutation(instrument_id)
        transition = instrument.refresh_expiry_state(self._now())
        if transition.instrument.state is instrument.state:
            self.store.rollback()
            return self._to_response(instrument)

        try:
            saved = self.store.save(transition.instrument)
        except Exception:
            self.store.rollback()
            raise
        logger.info(
            "giftcard.expired",
            extra={"instrument_id": str(instrument_id), "balance": saved.current_balance},
        )
        return self._to_response(saved)

    def get_instrument(self, instrument_id: UUID) -> InstrumentResponse:
        return self._to_response(self._get(instrument_id))

    def get_instrument_by_code(self, code: str) -> InstrumentResponse:
        instrument = self.store.find_by_code(code)
        if instrument is None:
            raise InstrumentNotFoundError(f"Gift card with code {code} not found")
        return self._to_response(instrument)

    def list_transactions(
        self,
        instrument_id: UUID,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> TransactionPage:
        self._get(instrument_id)
        if limit is None:
            limit = self.settings.statement_page_size
        if limit < 1:
            raise InstrumentValidationError("Limit must be at least 1")

        before_sequence = None
        if cursor:
            try:
                before_sequence = int(cursor)
            except ValueError as exc:
                raise InstrumentValidationError("Invalid cursor") from exc
            if before_sequence < 1:
                raise InstrumentValidationError("Invalid cursor")

        entries = self.store.list_transactions(
            instrument_id, limit + 1, before_sequence=before_sequence
        )
        page = entries[:limit]
        next_cursor = None
        if len(entries) > limit:
            next_cursor = str(page[-1].sequence)

        return TransactionPage(
            items=[self._entry_to_response(entry) for entry in page],
            next_cursor=next_cursor,
        )

    def get_instrument_summary(self, instrument_id: UUID) -> InstrumentSummary:
        instrument = self._get(instrument_id)
        ledger = self.store.load_ledger(instrument_id)
        now = self._now()
        return InstrumentSummary(
            instrument=self._to_response(instrument),
            total_redeemed=ledger.total_redeemed,
            usage_percentage=ledger.usage_percentage(
                instrument.initial_amount, instrument.current_balance
            ),
            transaction_count=self.store.count_transactions(instrument_id),
            days_remaining=instrument.days_remaining(now),
            can_redeem=instrument.can_redeem(now),
        )

    def list_instruments(
        self,
        filters: Optional[InstrumentFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> InstrumentPage:
        if page < 1 or limit < 1:
            raise InstrumentValidationError("Page and limit must be at least 1")
        filters = filters or InstrumentFilters()
        items = self.store.list_instruments(filters, page, limit)
        total = self.store.count_instruments(filters)
        return InstrumentPage(
            items=[self._to_response(item) for item in items],
            total=total,
            page=page,
            limit=limit,
        )
