from .db import GiftCard as GiftCardModel
from .db import GiftCardTransaction as GiftCardTransactionModel
from .instrument import InstrumentState, StoredValueInstrument, Transition, require_amount
from .ledger import LedgerEntry, TransactionKind, TransactionLedger, usage_percentage
from .schemas import (
    InstrumentCreate,
    InstrumentFilters,
    InstrumentPage,
    InstrumentResponse,
    InstrumentSummary,
    LedgerEntryResponse,
    TransactionPage,
)

__all__ = [
    "InstrumentCreate",
    "InstrumentFilters",
    "InstrumentPage",
    "InstrumentResponse",
    "InstrumentSummary",
    "LedgerEntryResponse",
    "TransactionPage",
    "InstrumentState",
    "StoredValueInstrument",
    "Transition",
    "require_amount",
    "LedgerEntry",
    "TransactionKind",
    "TransactionLedger",
    "usage_percentage",
    "GiftCardModel",
    "GiftCardTransactionModel",
]
