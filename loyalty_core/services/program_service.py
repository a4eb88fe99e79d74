from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from loyalty_core.models.message_template import MessageTemplate
from loyalty_core.models.program import Program
from loyalty_core.models.tenant import Tenant
from loyalty_core.services import ledger_service, templates
from loyalty_core.services.errors import NotFound, ValidationError
from loyalty_core.services.tier_service import validate_thresholds


logger = logging.getLogger(__name__)

OFFER_TYPES = {"discount_percent", "discount_fixed"}
NULLABLE_SETTINGS = {"reactivation_offer_type", "reactivation_offer_value", "tier_thresholds"}


def validate_settings(data: dict) -> None:
    if data.get("tokens_per_currency") is not None and Decimal(str(data["tokens_per_currency"])) <= 0:
        raise ValidationError("tokens_per_currency must be greater than 0")
    if data.get("tokens_currency_threshold") is not None and Decimal(str(data["tokens_currency_threshold"])) < 0:
        raise ValidationError("tokens_currency_threshold cannot be negative")
    if data.get("tokens_expiry_days") is not None and int(data["tokens_expiry_days"]) < 0:
        raise ValidationError("tokens_expiry_days cannot be negative (0 = never expire)")
    if data.get("reactivation_months") is not None and int(data["reactivation_months"]) < 1:
        raise ValidationError("reactivation_months must be at least 1")
    if data.get("membership_reminder_days") is not None and int(data["membership_reminder_days"]) < 0:
        raise ValidationError("membership_reminder_days cannot be negative")
    if data.get("reactivation_offer_type") and data["reactivation_offer_type"] not in OFFER_TYPES:
        raise ValidationError("reactivation_offer_type must be discount_percent or discount_fixed")
    if data.get("reactivation_offer_value") is not None and Decimal(str(data["reactivation_offer_value"])) < 0:
        raise ValidationError("reactivation_offer_value cannot be negative")
    if data.get("tier_thresholds"):
        data["tier_thresholds"] = validate_thresholds(data["tier_thresholds"])


def get_tenant_program(db: Session, tenant_id) -> Program | None:
    return db.query(Program).filter(Program.tenant_id == tenant_id).first()


def upsert_program(db: Session, tenant_id, data: dict) -> Program:
    """Create the tenant's program on first call, patch it afterwards. One program per tenant."""
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise NotFound("Tenant not found")

    for key, value in data.items():
        if value is None and key not in NULLABLE_SETTINGS:
            raise ValidationError(f"{key} cannot be null")
    validate_settings(data)

    program = get_tenant_program(db, tenant_id)
    if program is None:
        program = Program(tenant_id=tenant_id, program_name=data.pop("program_name", None) or f"{tenant.name} Rewards")
        db.add(program)
        logger.info("loyalty program created", extra={"tenant_id": str(tenant_id)})

    for k, v in data.items():
        setattr(program, k, v)

    db.flush()
    if "tier_thresholds" in data:
        ledger_service.reclassify_tiers(db, program)
    return program


def upsert_template(db: Session, program: Program, message_type: str, content: str, *, name: str | None = None, is_active: bool = True) -> MessageTemplate:
    templates.validate_template(message_type, content)

    row = (
        db.query(MessageTemplate)
        .filter(MessageTemplate.program_id == program.id)
        .filter(MessageTemplate.message_type == message_type)
        .first()
    )
    if row is None:
        row = MessageTemplate(program_id=program.id, message_type=message_type)
        db.add(row)

    row.name = name or row.name or message_type
    row.template_content = content
    row.is_active = is_active
    db.flush()
    return row
