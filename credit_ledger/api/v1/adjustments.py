"""Payment adjustments, credit memos, refunds and account transactions"""

import uuid
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from credit_ledger.api.dependencies import get_gateway_client, get_request_id
from credit_ledger.api.errors import to_http_exception
from credit_ledger.api.v1.schemas import (
    AccountTransactionResponse,
    AdjustmentRequest,
    AdjustmentResponse,
    ApplyCreditMemoRequest,
    CreditMemoResponse,
    IssueCreditMemoRequest,
    RefundRequest,
    RefundResponse,
)
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient
from credit_ledger.infrastructure.database.session import get_db
from credit_ledger.services.adjustments import PaymentAdjustmentLedger

router = APIRouter()


@router.post("/orders/{order_id}/adjustments", response_model=AdjustmentResponse, status_code=201)
def create_adjustment(
    order_id: uuid.UUID,
    body: AdjustmentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Record a post-settlement change to an order's amount and its account entry"""
    try:
        adjustment = PaymentAdjustmentLedger(db).create_adjustment(
            order_id,
            new_cents=body.new_cents,
            original_cents=body.original_cents,
            adjustment_type=body.adjustment_type,
            payment_method=body.payment_method,
            payment_status=body.payment_status,
            transaction_id=body.transaction_id,
            reason=body.reason,
            processed_by=body.processed_by,
        )
        return AdjustmentResponse.model_validate(adjustment)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/orders/{order_id}/adjustments", response_model=List[AdjustmentResponse])
def get_order_adjustments(order_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        adjustments = PaymentAdjustmentLedger(db).get_order_adjustments(order_id)
        return [AdjustmentResponse.model_validate(a) for a in adjustments]
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit-memos", response_model=CreditMemoResponse, status_code=201)
def issue_credit_memo(body: IssueCreditMemoRequest, request: Request, db: Session = Depends(get_db)):
    try:
        memo = PaymentAdjustmentLedger(db).issue_credit_memo(
            customer_id=body.customer_id,
            amount_cents=body.amount_cents,
            reason=body.reason,
            order_id=body.order_id,
            issued_by=body.issued_by,
            expires_at=body.expires_at,
        )
        return CreditMemoResponse.model_validate(memo)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/credit-memos/{memo_id}/apply", response_model=CreditMemoResponse)
def apply_credit_memo(
    memo_id: uuid.UUID,
    body: ApplyCreditMemoRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Spend part of a memo against an order; 409 when the balance is too low"""
    try:
        memo = PaymentAdjustmentLedger(db).apply_credit_memo(
            memo_id, body.order_id, body.amount_cents, applied_by=body.applied_by
        )
        return CreditMemoResponse.model_validate(memo)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/customers/{customer_id}/credit-memos", response_model=List[CreditMemoResponse])
def list_credit_memos(customer_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        return [CreditMemoResponse.model_validate(m) for m in PaymentAdjustmentLedger(db).list_credit_memos(customer_id)]
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/orders/{order_id}/refunds", response_model=RefundResponse, status_code=201)
def create_refund(
    order_id: uuid.UUID,
    body: RefundRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """
    Refund an order.

    A gateway failure is still recorded: the refund is stored as failed and
    returned in the 502 response body.
    """
    try:
        refund = PaymentAdjustmentLedger(db, gateway).create_refund(
            order_id,
            amount_cents=body.amount_cents,
            reason=body.reason,
            refund_method=body.refund_method,
            original_payment_id=body.original_payment_id,
            invoice_id=body.invoice_id,
            items_returned=body.items_returned,
            processed_by=body.processed_by,
        )
        response = RefundResponse.model_validate(refund)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))

    if refund.status == "failed":
        raise HTTPException(
            status_code=502,
            detail={"message": "Gateway refund failed", "refund": response.model_dump(mode="json")},
        )
    return response


@router.get("/customers/{customer_id}/account-transactions", response_model=List[AccountTransactionResponse])
def get_account_transactions(
    customer_id: str,
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    try:
        entries = PaymentAdjustmentLedger(db).get_account_transactions(customer_id, limit)
        return [AccountTransactionResponse.model_validate(t) for t in entries]
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))
