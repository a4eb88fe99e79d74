from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.messaging import get_personalizer
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.routes.http_errors import program_or_404, unwrap
from loyalty_core.schemas.ledger import ActionAward, LedgerTransactionOut, PurchaseAward, TokenAdjustment
from loyalty_core.services import ledger_service, operations
from loyalty_core.services.personalization import PersonalizationClient


router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/{customer_id}")
def read_wallet(
    customer_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(operations.get_balance(db, tenant_id, customer_id))


@router.get("/{customer_id}/transactions", response_model=list[LedgerTransactionOut])
def read_wallet_transactions(
    customer_id: UUID,
    limit: int = 100,
    offset: int = 0,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    return ledger_service.list_transactions(db, program, customer_id, limit=limit, offset=offset)


@router.post("/credit")
def credit_wallet(
    payload: TokenAdjustment,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(
        operations.credit_tokens(
            db,
            tenant_id,
            payload.customer_id,
            payload.amount,
            transaction_type=payload.transaction_type,
            description=payload.description,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )
    )


@router.post("/debit")
def debit_wallet(
    payload: TokenAdjustment,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    return unwrap(
        operations.debit_tokens(
            db,
            tenant_id,
            payload.customer_id,
            payload.amount,
            transaction_type=payload.transaction_type,
            description=payload.description,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )
    )


@router.post("/actions")
def award_wallet_action(
    payload: ActionAward,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    personalizer: PersonalizationClient = Depends(get_personalizer),
):
    return unwrap(
        operations.award_action(
            db,
            tenant_id,
            payload.customer_id,
            payload.action_type,
            description=payload.description,
            personalizer=personalizer,
        )
    )


@router.post("/purchases")
def award_wallet_purchase(
    payload: PurchaseAward,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    personalizer: PersonalizationClient = Depends(get_personalizer),
):
    return unwrap(
        operations.award_purchase(
            db,
            tenant_id,
            payload.customer_id,
            payload.amount,
            description=payload.description,
            reference_id=payload.reference_id,
            personalizer=personalizer,
        )
    )
