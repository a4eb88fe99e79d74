from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.models.membership_plan import MembershipPlan
from loyalty_core.routes.http_errors import program_or_404, to_http, unwrap
from loyalty_core.schemas.membership import (
    MembershipCancel,
    MembershipCreate,
    MembershipOut,
    MembershipPlanCreate,
    MembershipPlanOut,
    MembershipPlanUpdate,
)
from loyalty_core.services import membership_service, operations
from loyalty_core.services.errors import LoyaltyError


router = APIRouter(prefix="/memberships", tags=["memberships"])


def _get_plan(db: Session, program_id, plan_id: UUID) -> MembershipPlan:
    plan = db.query(MembershipPlan).filter(MembershipPlan.id == plan_id, MembershipPlan.program_id == program_id).first()
    if not plan:
        raise HTTPException(status_code=404, detail="Membership plan not found")
    return plan


# ─── Plans ────────────────────────────────────────────────────────
@router.get("/plans", response_model=list[MembershipPlanOut])
def list_plans(
    active: bool | None = None,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)

    q = db.query(MembershipPlan).filter(MembershipPlan.program_id == program.id)
    if active is not None:
        q = q.filter(MembershipPlan.is_active.is_(active))
    return q.order_by(MembershipPlan.price_monthly.asc()).all()


@router.post("/plans", response_model=MembershipPlanOut)
def create_plan(
    payload: MembershipPlanCreate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)

    plan = MembershipPlan(program_id=program.id, **payload.model_dump())
    try:
        membership_service.validate_plan(plan)
    except LoyaltyError as e:
        raise to_http(e)

    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@router.get("/plans/{plan_id}", response_model=MembershipPlanOut)
def get_plan(
    plan_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    return _get_plan(db, program.id, plan_id)


@router.patch("/plans/{plan_id}", response_model=MembershipPlanOut)
def update_plan(
    plan_id: UUID,
    payload: MembershipPlanUpdate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    plan = _get_plan(db, program.id, plan_id)

    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(plan, k, v)

    try:
        membership_service.validate_plan(plan)
    except LoyaltyError as e:
        db.rollback()
        raise to_http(e)

    db.commit()
    db.refresh(plan)
    return plan


# ─── Memberships ──────────────────────────────────────────────────
@router.get("", response_model=list[MembershipOut])
def list_memberships(
    status: str | None = None,
    customer_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    return membership_service.list_memberships(
        db,
        program,
        status=status,
        customer_id=customer_id,
        limit=limit,
        offset=offset,
    )


@router.post("")
def create_membership(
    payload: MembershipCreate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(
        operations.create_membership(
            db,
            tenant_id,
            payload.customer_id,
            payload.plan_id,
            billing_cycle=payload.billing_cycle,
            payment_method=payload.payment_method,
            payment_amount=payload.payment_amount,
            notes=payload.notes,
            auto_renew=payload.auto_renew,
            payment_pending=payload.payment_pending,
        )
    )


@router.post("/{membership_id}/activate")
def activate_membership(
    membership_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(operations.activate_membership(db, tenant_id, membership_id))


@router.post("/{membership_id}/cancel")
def cancel_membership(
    membership_id: UUID,
    payload: MembershipCancel | None = None,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    return unwrap(operations.cancel_membership(db, tenant_id, membership_id, reason=reason))
