"""Invoices, invoice payments and accounts-receivable aging"""

import uuid
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from credit_ledger.api.dependencies import get_request_id
from credit_ledger.api.errors import to_http_exception
from credit_ledger.api.v1.schemas import (
    AgingResponse,
    CreateInvoiceRequest,
    InvoicePaymentRequest,
    InvoiceResponse,
)
from credit_ledger.domain.aging import bucketize
from credit_ledger.infrastructure.database.repositories import InvoiceRepository
from credit_ledger.infrastructure.database.session import get_db
from credit_ledger.services.invoices import InvoiceGenerator
from credit_ledger.utils.date_utils import utcnow

router = APIRouter()


@router.post("/invoices", response_model=InvoiceResponse)
def create_invoice(body: CreateInvoiceRequest, request: Request, db: Session = Depends(get_db)):
    """Invoice an order; returns the existing invoice when the order already has one"""
    try:
        invoice = InvoiceGenerator(db).create_invoice_for_order(body.order_id, body.settlement_date)
        return InvoiceResponse.model_validate(invoice)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        return InvoiceResponse.model_validate(InvoiceGenerator(db).get_invoice(invoice_id))
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/invoices/{invoice_id}/payments", response_model=InvoiceResponse)
def record_invoice_payment(
    invoice_id: uuid.UUID,
    body: InvoicePaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        invoice = InvoiceGenerator(db).record_payment(invoice_id, body.amount_cents, performed_by=body.performed_by)
        return InvoiceResponse.model_validate(invoice)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/ar/aging", response_model=AgingResponse)
def get_receivables_aging(
    request: Request,
    customer_id: Optional[str] = Query(None, description="Limit to one customer"),
    as_of: Optional[date] = Query(None, description="Aging date, defaults to today"),
    db: Session = Depends(get_db),
):
    """
    Outstanding invoice balances grouped by age.

    Returns:
        Buckets 0-30, 31-60, 61-90 and 90+ days plus their total, in cents
    """
    as_of = as_of or utcnow().date()
    try:
        buckets = bucketize(InvoiceRepository(db).list_outstanding(customer_id), as_of)
        return AgingResponse(
            as_of=as_of,
            customer_id=customer_id,
            b0_30=buckets.b0_30,
            b31_60=buckets.b31_60,
            b61_90=buckets.b61_90,
            b90_plus=buckets.b90_plus,
            total=buckets.total,
        )
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))
