from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from uuid import UUID

from pydantic import BaseModel


class ProgramUpsert(BaseModel):
    program_name: Optional[str] = None
    is_active: Optional[bool] = None

    tokens_enabled: Optional[bool] = None
    membership_enabled: Optional[bool] = None

    tokens_name: Optional[str] = None
    tokens_name_plural: Optional[str] = None
    tokens_per_currency: Optional[Decimal] = None
    tokens_currency_threshold: Optional[Decimal] = None
    tokens_expiry_days: Optional[int] = None

    reactivation_enabled: Optional[bool] = None
    reactivation_months: Optional[int] = None
    reactivation_offer_type: Optional[str] = None
    reactivation_offer_value: Optional[Decimal] = None

    membership_reminder_days: Optional[int] = None
    tier_thresholds: Optional[Dict[str, int]] = None


class ProgramOut(BaseModel):
    id: UUID
    tenant_id: UUID
    program_name: str
    is_active: bool

    tokens_enabled: bool
    membership_enabled: bool

    tokens_name: str
    tokens_name_plural: str
    tokens_per_currency: Decimal
    tokens_currency_threshold: Decimal
    tokens_expiry_days: int

    reactivation_enabled: bool
    reactivation_months: int
    reactivation_offer_type: Optional[str] = None
    reactivation_offer_value: Optional[Decimal] = None

    membership_reminder_days: int
    tier_thresholds: Optional[Dict[str, int]] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageTemplateUpsert(BaseModel):
    name: Optional[str] = None
    template_content: str
    is_active: bool = True


class MessageTemplateOut(BaseModel):
    id: UUID
    program_id: UUID
    message_type: str
    name: str
    template_content: str
    is_active: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
