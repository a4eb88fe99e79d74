from datetime import datetime
from decimal import Decimal
from typing import Optional

from uuid import UUID

from pydantic import BaseModel


class TokenAdjustment(BaseModel):
    customer_id: UUID
    amount: int
    transaction_type: str = "manual"
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None


class ActionAward(BaseModel):
    customer_id: UUID
    action_type: str
    description: Optional[str] = None


class PurchaseAward(BaseModel):
    customer_id: UUID
    amount: Decimal
    description: Optional[str] = None
    reference_id: Optional[UUID] = None


class LedgerTransactionOut(BaseModel):
    id: UUID
    program_id: UUID
    customer_id: UUID
    tokens: int
    transaction_type: str
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    action_type: Optional[str] = None
    purchase_amount: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
