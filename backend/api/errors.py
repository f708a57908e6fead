"""
Mapping from domain exceptions to HTTP errors
"""

from fastapi import HTTPException, status
from core.exceptions import BudgetExceeded, InputError, NotFoundError, OptimizerException


def to_http_error(e: OptimizerException) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, BudgetExceeded):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": str(e), "budget_decision": e.decision},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
