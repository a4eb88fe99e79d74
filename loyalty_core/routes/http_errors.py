from fastapi import HTTPException
from sqlalchemy.orm import Session

from loyalty_core.models.program import Program
from loyalty_core.services.errors import ErrorKind, LoyaltyError, OperationResult
from loyalty_core.services.operations import get_program


STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.INSUFFICIENT_BALANCE: 400,
    ErrorKind.STOCK_EXHAUSTED: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_SEND: 409,
}


def to_http(exc: LoyaltyError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(exc.kind, 400),
        detail={"success": False, "error": exc.kind.value, "message": exc.message},
    )


def unwrap(result: OperationResult):
    if result.success:
        return result.data
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.error, 400),
        detail=result.as_dict(),
    )


def program_or_404(db: Session, tenant_id) -> Program:
    try:
        return get_program(db, tenant_id)
    except LoyaltyError as e:
        raise to_http(e)
