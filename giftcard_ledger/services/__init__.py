from .ledger import InstrumentService
from .repository import InstrumentRepository, InstrumentStore
from .retry import retry_on_conflict

__all__ = [
    "InstrumentRepository",
    "InstrumentService",
    "InstrumentStore",
    "retry_on_conflict",
]
