from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .instrument import InstrumentState
from .ledger import TransactionKind


class InstrumentCreate(BaseModel):
    amount: int = Field(..., ge=1, description="Face value in minor units (must be >= 1)")
    issuer_id: str = Field(..., min_length=1, description="Actor issuing the gift card")
    owner_scope_id: Optional[str] = Field(default=None, description="Issuing store or tenant")
    assigned_user_id: Optional[str] = Field(default=None, description="Intended redeemer")
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None


class InstrumentFilters(BaseModel):
    owner_scope_id: Optional[str] = None
    state: Optional[InstrumentState] = None
    code: Optional[str] = Field(default=None, description="Case-insensitive substring")
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    expires_from: Optional[datetime] = None
    expires_to: Optional[datetime] = None
    issuer_id: Optional[str] = None
    assigned_user_id: Optional[str] = None


class InstrumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    initial_amount: int = Field(..., ge=0, description="Balance baseline in minor units")
    current_balance: int = Field(..., ge=0, description="Redeemable balance in minor units")
    state: InstrumentState
    created_at: datetime
    expires_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    notes: Optional[str] = None
    owner_scope_id: Optional[str] = None
    issuer_id: str
    assigned_user_id: Optional[str] = None
    version: int


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    instrument_id: UUID
    sequence: int
    kind: TransactionKind
    signed_amount: int
    related_order_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class TransactionPage(BaseModel):
    items: list[LedgerEntryResponse]
    next_cursor: Optional[str] = None


class InstrumentSummary(BaseModel):
    instrument: InstrumentResponse
    total_redeemed: int
    usage_percentage: Decimal
    transaction_count: int
    days_remaining: Optional[int] = None
    can_redeem: bool


class InstrumentPage(BaseModel):
    items: list[InstrumentResponse]
    total: int
    page: int
    limit: int
