"""Discount quotes, order settlement and order activity"""

import uuid
from typing import List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from credit_ledger.api.dependencies import get_gateway_client, get_request_id
from credit_ledger.api.errors import to_http_exception
from credit_ledger.api.v1.schemas import (
    ActivityResponse,
    CommitDiscountsResponse,
    DiscountLineSchema,
    DiscountQuoteRequest,
    DiscountQuoteResponse,
    InvoiceResponse,
    OrderResponse,
    SettlementRequestSchema,
    SettlementResponse,
)
from credit_ledger.domain.discounts import order_total
from credit_ledger.domain.models import SettlementRequest
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient
from credit_ledger.infrastructure.database.session import get_db
from credit_ledger.services.discounts import DiscountReconciler
from credit_ledger.services.settlement import OrderSettlementEngine

router = APIRouter()


@router.post("/discounts/quote", response_model=DiscountQuoteResponse)
def quote_discounts(body: DiscountQuoteRequest, request: Request, db: Session = Depends(get_db)):
    """Price a discount stack without touching any balance"""
    try:
        result = DiscountReconciler(db).compute_discounts(
            body.customer_id,
            body.subtotal_cents,
            [instrument.to_domain() for instrument in body.instruments],
            tax_cents=body.tax_cents,
            shipping_cents=body.shipping_cents,
        )
        return DiscountQuoteResponse(
            discount_cents=result.discount_cents,
            total_cents=order_total(body.subtotal_cents, body.tax_cents, body.shipping_cents, result.discount_cents),
            details=[DiscountLineSchema(**line.to_dict()) for line in result.details],
        )
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/orders", response_model=SettlementResponse, status_code=201)
def settle_order(
    body: SettlementRequestSchema,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """
    Settle an order.

    Flow:
    1. Compute the discount stack and the final total
    2. Zero total: paid order and invoice, no payment taken
    3. Card: charge the gateway, then persist a paid order and invoice
    4. Credit: draw on the credit line and persist the order together
    5. Manual: persist a pending order and invoice
    6. Commit discount sources, award reward points, log activity
    """
    request_id = get_request_id(request)
    settlement_request = SettlementRequest(
        customer_id=body.customer_id,
        items=body.items,
        subtotal_cents=body.subtotal_cents,
        payment_method=body.payment_method,
        tax_cents=body.tax_cents,
        shipping_cents=body.shipping_cents,
        instruments=[instrument.to_domain() for instrument in body.instruments],
        card=body.card.to_domain() if body.card else None,
        performed_by=body.performed_by,
    )

    try:
        result = OrderSettlementEngine(db, gateway).settle_order(settlement_request, request_id=request_id)
        return SettlementResponse(
            order=OrderResponse.model_validate(result.order),
            invoice=InvoiceResponse.model_validate(result.invoice) if result.invoice else None,
            settlement_path=result.path,
            discount_cents=result.discount.discount_cents,
            points_earned=result.points_earned,
            discounts_committed=result.discounts_committed,
        )
    except Exception as e:
        raise to_http_exception(e, db, request_id)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    try:
        return OrderResponse.model_validate(OrderSettlementEngine(db, gateway).get_order(order_id))
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.post("/orders/{order_id}/discounts/commit", response_model=CommitDiscountsResponse)
def commit_order_discounts(
    order_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """Retry committing an order's discounts after a partial failure"""
    try:
        applied = OrderSettlementEngine(db, gateway).retry_discount_commit(order_id)
        return CommitDiscountsResponse(order_id=order_id, applied=applied)
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))


@router.get("/orders/{order_id}/activity", response_model=List[ActivityResponse])
def get_order_activity(
    order_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    try:
        activities = OrderSettlementEngine(db, gateway).get_order_activities(order_id)
        return [ActivityResponse.model_validate(a) for a in activities]
    except Exception as e:
        raise to_http_exception(e, db, get_request_id(request))
