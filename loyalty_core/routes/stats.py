from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.routes.http_errors import unwrap
from loyalty_core.services import operations


router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("")
def read_stats(
    period: str = "month",
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(operations.get_stats(db, tenant_id, period))
