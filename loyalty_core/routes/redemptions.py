from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.models.redemption import Redemption
from loyalty_core.routes.http_errors import program_or_404, unwrap
from loyalty_core.schemas.reward import RedemptionOut
from loyalty_core.services import operations


router = APIRouter(prefix="/redemptions", tags=["redemptions"])


@router.get("", response_model=list[RedemptionOut])
def list_redemptions(
    customer_id: UUID | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)

    q = db.query(Redemption).filter(Redemption.program_id == program.id)
    if customer_id:
        q = q.filter(Redemption.customer_id == customer_id)
    if status:
        q = q.filter(Redemption.status == status)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return q.order_by(Redemption.created_at.desc()).offset(offset).limit(limit).all()


@router.get("/code/{code}")
def get_redemption_by_code(
    code: str,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(operations.find_redemption(db, tenant_id, code))


@router.post("/{redemption_id}/use")
def use_redemption(
    redemption_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(operations.mark_redemption_used(db, tenant_id, redemption_id))
