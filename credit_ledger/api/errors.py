"""Mapping from domain exceptions to HTTP errors"""

import logging
from fastapi import HTTPException
from sqlalchemy.orm import Session

from credit_ledger.domain.exceptions import (
    ConcurrencyConflict,
    CreditLimitExceeded,
    DomainException,
    DuplicateInvoice,
    GatewayError,
    InsufficientBalance,
    NotFoundError,
    ValidationError,
)

STATUS_CODES = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (CreditLimitExceeded, 409),
    (InsufficientBalance, 409),
    (DuplicateInvoice, 409),
    (ConcurrencyConflict, 409),
    (GatewayError, 502),
)


def to_http_exception(error: Exception, db: Session, request_id: str) -> HTTPException:
    """Roll back the request's session, log, and translate the error into a response"""
    db.rollback()

    if isinstance(error, DomainException):
        for exc_type, status_code in STATUS_CODES:
            if isinstance(error, exc_type):
                break
        else:
            status_code = 500

        log = logging.error if status_code >= 500 else logging.warning
        log(f"{type(error).__name__}: {error}", extra={"request_id": request_id, "status_code": status_code})

        if isinstance(error, CreditLimitExceeded):
            return HTTPException(
                status_code=status_code,
                detail={
                    "message": str(error),
                    "requested_cents": error.requested_cents,
                    "available_cents": error.available_cents,
                },
            )
        if status_code == 502:
            return HTTPException(status_code=502, detail=f"Payment gateway error: {error}")
        return HTTPException(status_code=status_code, detail=str(error))

    logging.error(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
