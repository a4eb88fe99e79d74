from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from uuid import UUID

from pydantic import BaseModel, Field


class MembershipPlanCreate(BaseModel):
    plan_name: str
    plan_description: Optional[str] = None
    price_monthly: Decimal
    price_annual: Optional[Decimal] = None
    benefits: List[str] = Field(default_factory=list)
    discount_percent: Decimal = Decimal("0")
    priority_booking: bool = False
    tokens_multiplier: Decimal = Decimal("1")
    max_members: Optional[int] = None
    is_active: bool = True


class MembershipPlanUpdate(BaseModel):
    plan_name: Optional[str] = None
    plan_description: Optional[str] = None
    price_monthly: Optional[Decimal] = None
    price_annual: Optional[Decimal] = None
    benefits: Optional[List[str]] = None
    discount_percent: Optional[Decimal] = None
    priority_booking: Optional[bool] = None
    tokens_multiplier: Optional[Decimal] = None
    max_members: Optional[int] = None
    is_active: Optional[bool] = None


class MembershipPlanOut(BaseModel):
    id: UUID
    program_id: UUID
    plan_name: str
    plan_description: Optional[str] = None
    price_monthly: Decimal
    price_annual: Optional[Decimal] = None
    benefits: List[str] = Field(default_factory=list)
    discount_percent: Optional[Decimal] = None
    priority_booking: bool
    tokens_multiplier: Decimal
    max_members: Optional[int] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MembershipCreate(BaseModel):
    customer_id: UUID
    plan_id: UUID
    billing_cycle: str = "monthly"
    payment_method: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    auto_renew: bool = False
    payment_pending: bool = False


class MembershipCancel(BaseModel):
    reason: Optional[str] = None


class MembershipOut(BaseModel):
    id: UUID
    program_id: UUID
    customer_id: UUID
    plan_id: UUID
    status: str
    billing_cycle: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renew: bool
    renewed_count: int
    payment_method: Optional[str] = None
    payment_amount: Decimal
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
