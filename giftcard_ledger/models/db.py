from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.clock import utc_now


def _timestamp(nullable: bool = True, index: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


class GiftCard(SQLModel, table=True):
    __tablename__ = "giftcard"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    code: str = Field(index=True, unique=True, max_length=64)
    issued_amount: int = Field(ge=0)
    initial_amount: int = Field(ge=0)
    current_balance: int = Field(ge=0)
    state: str = Field(index=True, max_length=16)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=_timestamp(nullable=False, index=True)
    )
    expires_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(index=True))
    activated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp())
    redeemed_at: Optional[datetime] = Field(default=None, sa_column=_timestamp())
    last_transaction_at: Optional[datetime] = Field(default=None, sa_column=_timestamp())
    notes: Optional[str] = None
    owner_scope_id: Optional[str] = Field(default=None, index=True)
    issuer_id: str = Field(index=True)
    assigned_user_id: Optional[str] = Field(default=None, index=True)
    version: int = Field(default=1)


class GiftCardTransaction(SQLModel, table=True):
    __tablename__ = "giftcard_transaction"
    __table_args__ = (
        UniqueConstraint("giftcard_id", "sequence", name="uq_giftcard_transaction_sequence"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    giftcard_id: UUID = Field(foreign_key="giftcard.id", index=True)
    sequence: int
    kind: str = Field(max_length=16)
    signed_amount: int
    related_order_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=_timestamp(nullable=False)
    )
