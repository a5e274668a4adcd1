"""Order settlement: price the cart, take payment or credit, persist, then commit discounts"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.discounts import order_total, points_earned
from credit_ledger.domain.exceptions import (
    CreditLimitExceeded,
    DomainException,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from credit_ledger.domain.models import DiscountLine, DiscountResult, SettlementRequest
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient
from credit_ledger.infrastructure.database.models import Invoice, Order, OrderActivity
from credit_ledger.infrastructure.database.repositories import (
    ActivityRepository,
    OrderRepository,
    ProfileRepository,
    RewardRepository,
)
from credit_ledger.infrastructure.database.session import unit_of_work
from credit_ledger.infrastructure.observability.logging import log_settlement
from credit_ledger.infrastructure.observability.metrics import (
    discount_commit_failures_counter,
    gateway_failures_counter,
    record_settlement,
)
from credit_ledger.services.activity import ActivityLogger, snapshot_order, to_jsonable
from credit_ledger.services.credit_lines import CreditLineManager
from credit_ledger.services.discounts import DiscountReconciler
from credit_ledger.services.invoices import InvoiceGenerator
from credit_ledger.services.numbering import allocate_number
from credit_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("card", "credit", "manual")


@dataclass
class SettlementResult:
    order: Order
    invoice: Optional[Invoice]
    discount: DiscountResult
    path: str  # card | credit | zero_total | manual
    points_earned: int = 0
    discounts_committed: bool = True


def _validate_request(request: SettlementRequest) -> None:
    if not request.customer_id:
        raise ValidationError("Customer is required")
    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of {PAYMENT_METHODS}")
    if not request.items:
        raise ValidationError("Order must contain at least one item")
    if request.subtotal_cents < 0 or request.tax_cents < 0 or request.shipping_cents < 0:
        raise ValidationError("Order amounts cannot be negative")


def _priced_cart(request: SettlementRequest, discount: DiscountResult, total_cents: int) -> Dict[str, Any]:
    return to_jsonable(
        {
            "customer_id": request.customer_id,
            "items": request.items,
            "subtotal_cents": request.subtotal_cents,
            "tax_cents": request.tax_cents,
            "shipping_cents": request.shipping_cents,
            "discount_cents": discount.discount_cents,
            "total_cents": total_cents,
            "payment_method": request.payment_method,
        }
    )


class OrderSettlementEngine:
    """
    Turns a priced cart into a durable order.

    Payment (card charge or credit usage) is taken before or together with
    the order insert, so a failed payment never leaves an order behind.
    Discount sources are drawn down only once the order is committed.
    """

    def __init__(self, db: Session, gateway: PaymentGatewayClient):
        self.db = db
        self.gateway = gateway
        self.orders = OrderRepository(db)
        self.profiles = ProfileRepository(db)
        self.rewards = RewardRepository(db)
        self.activity = ActivityLogger(db)
        self.credit = CreditLineManager(db, activity=self.activity)
        self.discounts = DiscountReconciler(db)
        self.invoices = InvoiceGenerator(db, activity=self.activity)

    def settle_order(self, request: SettlementRequest, request_id: Optional[str] = None) -> SettlementResult:
        """
        Settle an order.

        Raises:
            ValidationError: invalid request or discount instrument (nothing persisted)
            GatewayError: card charge failed (no order created)
            CreditLimitExceeded: credit order exceeds available credit (no order, no usage change)
        """
        start_time = time.time()
        _validate_request(request)

        discount = self.discounts.compute_discounts(
            request.customer_id,
            request.subtotal_cents,
            request.instruments,
            tax_cents=request.tax_cents,
            shipping_cents=request.shipping_cents,
        )
        total = order_total(request.subtotal_cents, request.tax_cents, request.shipping_cents, discount.discount_cents)
        path = "zero_total" if total == 0 else request.payment_method

        if path == "card" and request.card is None:
            raise ValidationError("Card details or a saved card are required for card payments")

        order_id = uuid.uuid4()
        transaction_id = None
        if path == "card":
            try:
                charge = self.gateway.charge_card(total, request.card, order_reference=str(order_id))
            except GatewayError as e:
                gateway_failures_counter.labels(operation="charge").inc()
                record_settlement(path, "failed")
                logger.error(
                    f"Card charge failed: {e}",
                    extra={"request_id": request_id, "customer_id": request.customer_id, "total_cents": total},
                )
                raise
            transaction_id = charge.transaction_id

        try:
            order, invoice = self._persist(request, order_id, path, discount, total, transaction_id)
        except CreditLimitExceeded:
            record_settlement(path, "rejected")
            raise
        except Exception:
            record_settlement(path, "failed")
            if transaction_id:
                # Money was taken but the order did not persist; needs manual reconciliation
                logger.error(
                    "Order persistence failed after successful card charge",
                    extra={
                        "request_id": request_id,
                        "customer_id": request.customer_id,
                        "transaction_id": transaction_id,
                        "total_cents": total,
                    },
                )
            raise

        committed = self._commit_discounts(order, discount, request.performed_by, request_id)
        points = self._award_points(order)

        with unit_of_work(self.db):
            self.activity.log_activity(
                order_id=order.id,
                activity_type="created",
                description=f"Order {order.order_number} created via {path} settlement",
                metadata={"path": path, "discounts_committed": committed, "points_earned": points},
                old_data=_priced_cart(request, discount, total),
                new_data=snapshot_order(order),
                performed_by=request.performed_by,
            )

        duration_ms = (time.time() - start_time) * 1000
        record_settlement(path, "settled", total)
        log_settlement(
            request_id,
            request.customer_id,
            str(order.id),
            path,
            total,
            discount.discount_cents,
            duration_ms,
        )

        return SettlementResult(
            order=order,
            invoice=invoice,
            discount=discount,
            path=path,
            points_earned=points,
            discounts_committed=committed,
        )

    def _persist(
        self,
        request: SettlementRequest,
        order_id: uuid.UUID,
        path: str,
        discount: DiscountResult,
        total: int,
        transaction_id: Optional[str],
    ):
        with unit_of_work(self.db):
            self.profiles.get_or_create(request.customer_id)

            if path == "credit":
                # Same unit: a failed insert below also rolls back the usage
                self.credit.record_credit_usage(request.customer_id, total)
                status, payment_status = "credit_approval_processing", "pending"
            elif path == "manual":
                status, payment_status = "new", "pending"
            else:
                status, payment_status = "new", "paid"

            order = self.orders.create(
                id=order_id,
                order_number=allocate_number(self.db, "order", settings.order_prefix),
                customer_id=request.customer_id,
                items=to_jsonable(request.items),
                subtotal_cents=request.subtotal_cents,
                tax_cents=request.tax_cents,
                shipping_cents=request.shipping_cents,
                discount_cents=discount.discount_cents,
                discount_details=[line.to_dict() for line in discount.details],
                total_cents=total,
                payment_method=request.payment_method,
                payment_status=payment_status,
                status=status,
                payment_transaction_id=transaction_id,
            )

            invoice = None
            if path != "credit":
                invoice = self.invoices.create_invoice(order, request.subtotal_cents, request.tax_cents)

        return order, invoice

    def _commit_discounts(
        self,
        order: Order,
        discount: DiscountResult,
        performed_by: Optional[str],
        request_id: Optional[str],
    ) -> bool:
        if not discount.details:
            return True
        try:
            self.discounts.commit_discounts(order.id, order.customer_id, discount.details, performed_by)
            return True
        except (DomainException, SQLAlchemyError) as e:
            discount_commit_failures_counter.inc()
            logger.error(
                f"Discount commit failed: {e}",
                extra={"request_id": request_id, "order_id": str(order.id), "customer_id": order.customer_id},
            )
            with unit_of_work(self.db):
                self.activity.log_activity(
                    order_id=order.id,
                    activity_type="discount_commit_failed",
                    description=f"Discounts could not be committed for order {order.order_number}: {e}",
                    metadata={"error": str(e), "details": [line.to_dict() for line in discount.details]},
                    performed_by=performed_by,
                )
            return False

    def _award_points(self, order: Order) -> int:
        if order.payment_method == "credit" or order.total_cents <= 0:
            return 0
        points = points_earned(order.total_cents, settings.points_per_dollar)
        if points <= 0:
            return 0

        with unit_of_work(self.db):
            self.profiles.award_points(order.customer_id, points)
            self.rewards.add_transaction(
                customer_id=order.customer_id,
                points=points,
                transaction_type="earn",
                description=f"Earned {points} points on order {order.order_number}",
                reference_type="order",
                reference_id=str(order.id),
            )
        return points

    def retry_discount_commit(self, order_id: uuid.UUID | str, performed_by: Optional[str] = None) -> List[str]:
        """Finish committing an order's stored discounts; already-applied instruments are skipped"""
        order = self.get_order(order_id)
        details = [DiscountLine.from_dict(d) for d in order.discount_details or []]
        applied = self.discounts.commit_discounts(order.id, order.customer_id, details, performed_by)
        if applied:
            with unit_of_work(self.db):
                self.activity.log_activity(
                    order_id=order.id,
                    activity_type="discounts_committed",
                    description=f"Discounts committed on retry for order {order.order_number}",
                    metadata={"instruments": applied, "retried_at": utcnow()},
                    performed_by=performed_by,
                )
        return applied

    def get_order(self, order_id: uuid.UUID | str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_order_activities(self, order_id: uuid.UUID | str) -> List[OrderActivity]:
        self.get_order(order_id)
        return ActivityRepository(self.db).list_by_order(order_id)
