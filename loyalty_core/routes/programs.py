from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.models.message_template import MessageTemplate
from loyalty_core.routes.http_errors import program_or_404, to_http
from loyalty_core.schemas.program import MessageTemplateOut, MessageTemplateUpsert, ProgramOut, ProgramUpsert
from loyalty_core.services import program_service, templates
from loyalty_core.services.errors import LoyaltyError


router = APIRouter(prefix="/programs", tags=["programs"])


@router.get("/current", response_model=ProgramOut)
def get_current_program(
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_service.get_tenant_program(db, tenant_id)
    if not program:
        raise HTTPException(status_code=404, detail="Loyalty program not found")
    return program


@router.put("/current", response_model=ProgramOut)
def upsert_current_program(
    payload: ProgramUpsert,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    try:
        program = program_service.upsert_program(db, tenant_id, payload.model_dump(exclude_unset=True))
        db.commit()
    except LoyaltyError as e:
        db.rollback()
        raise to_http(e)

    db.refresh(program)
    return program


@router.get("/current/templates")
def list_templates(
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    stored = {
        t.message_type: t
        for t in db.query(MessageTemplate).filter(MessageTemplate.program_id == program.id).all()
    }

    return [
        {
            "message_type": message_type,
            "variables": list(variables),
            "template_content": stored[message_type].template_content if message_type in stored else None,
            "is_active": stored[message_type].is_active if message_type in stored else False,
            "default_content": templates.DEFAULT_TEMPLATES[message_type],
        }
        for message_type, variables in templates.TEMPLATE_VARIABLES.items()
    ]


@router.put("/current/templates/{message_type}", response_model=MessageTemplateOut)
def upsert_template(
    message_type: str,
    payload: MessageTemplateUpsert,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    try:
        row = program_service.upsert_template(
            db,
            program,
            message_type,
            payload.template_content,
            name=payload.name,
            is_active=payload.is_active,
        )
        db.commit()
    except LoyaltyError as e:
        db.rollback()
        raise to_http(e)

    db.refresh(row)
    return row
