from __future__ import annotations


class GiftCardError(Exception):
    """Base class for every error surfaced by the gift card ledger."""

    code = "giftcard_error"
    status_code = 400


class InstrumentValidationError(GiftCardError, ValueError):
    """Raised when input is rejected before any stored state is read."""

    code = "validation_error"
    status_code = 400


class InvalidAmountError(InstrumentValidationError):
    """Raised when an amount is non-positive or exceeds the available balance."""

    code = "invalid_amount"


class InvalidStateTransitionError(GiftCardError):
    """Raised when an operation is not allowed from the card's current state."""

    code = "invalid_state_transition"
    status_code = 409


class InstrumentExpiredError(GiftCardError):
    """Raised when the card's expiry date has passed."""

    code = "instrument_expired"
    status_code = 410


class InstrumentNotFoundError(GiftCardError):
    """Raised when an id or code is missing from the store."""

    code = "instrument_not_found"
    status_code = 404


class ConcurrentModificationError(GiftCardError):
    """Raised when the card changed between load and save."""

    code = "concurrent_modification"
    status_code = 503


class DuplicateInstrumentCodeError(GiftCardError):
    """Raised when an insert collides with an existing redemption code."""

    code = "duplicate_code"
    status_code = 409


class CodeGenerationError(GiftCardError):
    """Raised when no free redemption code was found within the attempt budget."""

    code = "code_generation_failed"
    status_code = 503


class LedgerIntegrityError(GiftCardError):
    """Raised when an entry would break the ordering or ownership of a ledger."""

    code = "ledger_integrity"
    status_code = 500
