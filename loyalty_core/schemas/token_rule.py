from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel


class TokenRuleCreate(BaseModel):
    action_type: str
    action_name: str
    action_description: Optional[str] = None
    tokens_amount: int
    tokens_multiplier: Decimal = Decimal("1")
    max_per_period: Optional[int] = None
    period_type: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    is_active: bool = True


class TokenRuleUpdate(BaseModel):
    action_name: Optional[str] = None
    action_description: Optional[str] = None
    tokens_amount: Optional[int] = None
    tokens_multiplier: Optional[Decimal] = None
    max_per_period: Optional[int] = None
    period_type: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class TokenRuleOut(BaseModel):
    id: UUID
    program_id: UUID
    action_type: str
    action_name: str
    action_description: Optional[str] = None
    tokens_amount: int
    tokens_multiplier: Decimal
    max_per_period: Optional[int] = None
    period_type: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenRuleEvaluateRequest(BaseModel):
    action_type: str
    customer_id: Optional[UUID] = None
