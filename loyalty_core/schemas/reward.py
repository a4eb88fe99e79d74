from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel


class RewardCreate(BaseModel):
    reward_name: str
    reward_description: Optional[str] = None
    tokens_required: int
    reward_type: str = "custom"
    discount_value: Optional[Decimal] = None
    stock_limit: Optional[int] = None
    valid_days: int = 30
    terms_conditions: Optional[str] = None
    is_active: bool = True


class RewardUpdate(BaseModel):
    reward_name: Optional[str] = None
    reward_description: Optional[str] = None
    tokens_required: Optional[int] = None
    reward_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    stock_limit: Optional[int] = None
    valid_days: Optional[int] = None
    terms_conditions: Optional[str] = None
    is_active: Optional[bool] = None


class RewardOut(BaseModel):
    id: UUID
    program_id: UUID
    reward_name: str
    reward_description: Optional[str] = None
    tokens_required: int
    reward_type: str
    discount_value: Optional[Decimal] = None
    stock_limit: Optional[int] = None
    stock_used: int
    valid_days: int
    terms_conditions: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RedeemRequest(BaseModel):
    customer_id: UUID
    notes: Optional[str] = None


class RedemptionOut(BaseModel):
    id: UUID
    program_id: UUID
    customer_id: UUID
    reward_id: UUID
    redemption_code: str
    tokens_used: int
    reward_snapshot: Dict[str, Any]
    status: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
