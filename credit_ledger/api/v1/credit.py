"""Credit applications, credit lines and the late-penalty run"""

import uuid
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from credit_ledger.api.dependencies import get_request_id
from credit_ledger.api.errors import to_http_exception
from credit_ledger.api.v1.schemas import (
    CreditAmountRequest,
    CreditApplicationRequest,
    CreditApplicationResponse,
    CreditLineResponse,
    PenaltyRunRequest,
    PenaltyRunResponse,
    ReviewRequest,
    ReviewResponse,
    StartReviewRequest,
)
from credit_ledger.infrastructure.database.session import get_db
from credit_ledger.services.credit_lines import CreditLineManager

router = APIRouter()


@router.post("/credit/applications", response_model=CreditApplicationResponse, status_code=201)
def submit_application(body: CreditApplicationRequest, request: Request, db: Session = Depends(get_db)):
    """Submit a trade credit application; it starts out pending"""
    try:
        application = CreditLineManager(db).submit_application(
            customer_id=body.customer_id,
            requested_cents=body.requested_cents,
            net_terms=body.net_terms,
            business_info=body.business_info,
            bank_info=body.bank_info,
            trade_references=body.trade_references,
            signature=body.signature,
        )
        return CreditApplicationResponse.model_validate(application)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit/applications/{application_id}/start-review", response_model=CreditApplicationResponse)
def start_review(
    application_id: uuid.UUID,
    body: StartReviewRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        application = CreditLineManager(db).start_review(application_id, reviewed_by=body.reviewed_by)
        return CreditApplicationResponse.model_validate(application)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit/applications/{application_id}/review", response_model=ReviewResponse)
def review_application(
    application_id: uuid.UUID,
    body: ReviewRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Approve, reject or expire an application.

    Approval creates or updates the customer's credit line; credit already
    in use is preserved. Re-submitting the same decision is a no-op.
    """
    try:
        outcome = CreditLineManager(db).review_application(
            application_id,
            decision=body.decision,
            approved_cents=body.approved_cents,
            net_terms=body.net_terms,
            interest_rate=body.interest_rate,
            rejection_reason=body.rejection_reason,
            notes=body.notes,
            reviewed_by=body.reviewed_by,
        )
        return ReviewResponse(
            application=CreditApplicationResponse.model_validate(outcome.application),
            credit_line=CreditLineResponse.model_validate(outcome.credit_line) if outcome.credit_line else None,
        )
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/credit/lines/{customer_id}", response_model=CreditLineResponse)
def get_credit_line(customer_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        return CreditLineResponse.model_validate(CreditLineManager(db).get_credit_line(customer_id))
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit/lines/{customer_id}/usage", response_model=CreditLineResponse)
def record_credit_usage(
    customer_id: str,
    body: CreditAmountRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Draw on a credit line; 409 when the amount exceeds available credit"""
    try:
        line = CreditLineManager(db).record_credit_usage(customer_id, body.amount_cents)
        return CreditLineResponse.model_validate(line)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit/lines/{customer_id}/repayment", response_model=CreditLineResponse)
def record_credit_repayment(
    customer_id: str,
    body: CreditAmountRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        line = CreditLineManager(db).record_credit_repayment(customer_id, body.amount_cents)
        return CreditLineResponse.model_validate(line)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit/penalties/run", response_model=PenaltyRunResponse)
def run_penalties(body: PenaltyRunRequest, request: Request, db: Session = Depends(get_db)):
    """Flag overdue invoices and recompute late penalties; safe to re-run the same day"""
    try:
        summary = CreditLineManager(db).calculate_penalties(body.as_of)
        return PenaltyRunResponse(
            as_of=summary.as_of,
            marked_overdue=summary.marked_overdue,
            accrued=summary.accrued,
            skipped=summary.skipped,
            total_penalty_cents=summary.total_penalty_cents,
        )
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))
