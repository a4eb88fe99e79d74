from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.models.token_rule import TokenRule
from loyalty_core.routes.http_errors import program_or_404, to_http
from loyalty_core.schemas.token_rule import TokenRuleCreate, TokenRuleEvaluateRequest, TokenRuleOut, TokenRuleUpdate
from loyalty_core.services import token_rules_service
from loyalty_core.services.errors import LoyaltyError


router = APIRouter(prefix="/token-rules", tags=["token-rules"])


def _get_rule(db: Session, program_id, rule_id: UUID) -> TokenRule:
    rule = db.query(TokenRule).filter(TokenRule.id == rule_id, TokenRule.program_id == program_id).first()
    if not rule:
        raise HTTPException(status_code=404, detail="Token rule not found")
    return rule


@router.get("", response_model=list[TokenRuleOut])
def list_token_rules(
    action_type: str | None = None,
    active: bool | None = None,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)

    q = db.query(TokenRule).filter(TokenRule.program_id == program.id)
    if action_type:
        q = q.filter(TokenRule.action_type == action_type)
    if active is not None:
        q = q.filter(TokenRule.is_active.is_(active))
    return q.order_by(TokenRule.created_at.desc()).all()


@router.post("", response_model=TokenRuleOut)
def create_token_rule(
    payload: TokenRuleCreate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    try:
        token_rules_service.validate_rule(
            action_type=payload.action_type,
            tokens_amount=payload.tokens_amount,
            tokens_multiplier=payload.tokens_multiplier,
            max_per_period=payload.max_per_period,
            period_type=payload.period_type,
        )
    except LoyaltyError as e:
        raise to_http(e)

    rule = TokenRule(program_id=program.id, **payload.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/{rule_id}", response_model=TokenRuleOut)
def get_token_rule(
    rule_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    return _get_rule(db, program.id, rule_id)


@router.patch("/{rule_id}", response_model=TokenRuleOut)
def update_token_rule(
    rule_id: UUID,
    payload: TokenRuleUpdate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    rule = _get_rule(db, program.id, rule_id)

    data = payload.model_dump(exclude_unset=True)
    merged = {
        "tokens_amount": data.get("tokens_amount", rule.tokens_amount),
        "tokens_multiplier": data.get("tokens_multiplier", rule.tokens_multiplier),
        "max_per_period": data.get("max_per_period", rule.max_per_period),
        "period_type": data.get("period_type", rule.period_type),
    }
    try:
        token_rules_service.validate_rule(action_type=rule.action_type, **merged)
    except LoyaltyError as e:
        raise to_http(e)

    for k, v in data.items():
        setattr(rule, k, v)

    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}")
def delete_token_rule(
    rule_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    rule = _get_rule(db, program.id, rule_id)

    # earlier transactions keep their reference; the rule just stops awarding
    rule.is_active = False
    db.commit()
    return {"deleted": True}


@router.post("/evaluate")
def evaluate_token_rule(
    payload: TokenRuleEvaluateRequest,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    try:
        tokens = token_rules_service.evaluate(
            db,
            program,
            payload.action_type,
            {"customer_id": payload.customer_id} if payload.customer_id else {},
        )
    except LoyaltyError as e:
        raise to_http(e)
    return {"action_type": payload.action_type, "tokens": tokens}
