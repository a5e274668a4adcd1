"""Invoice generation, numbering and payment recording"""

import logging
import uuid
from datetime import date
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.exceptions import ConcurrencyConflict, DuplicateInvoice, NotFoundError, ValidationError
from credit_ledger.infrastructure.database.models import Invoice, Order
from credit_ledger.infrastructure.database.repositories import (
    CreditLineRepository,
    InvoiceRepository,
    OrderRepository,
)
from credit_ledger.infrastructure.database.session import unit_of_work
from credit_ledger.infrastructure.observability.metrics import sequence_conflicts_counter
from credit_ledger.services.activity import ActivityLogger, snapshot_invoice
from credit_ledger.services.numbering import allocate_number
from credit_ledger.utils.date_utils import add_days, utcnow

logger = logging.getLogger(__name__)


class InvoiceGenerator:
    """Creates at most one invoice per order"""

    def __init__(self, db: Session, activity: Optional[ActivityLogger] = None):
        self.db = db
        self.invoices = InvoiceRepository(db)
        self.orders = OrderRepository(db)
        self.lines = CreditLineRepository(db)
        self.activity = activity or ActivityLogger(db)

    def next_invoice_number(self, year: Optional[int] = None) -> str:
        return allocate_number(self.db, "invoice", settings.invoice_prefix, year)

    def create_invoice(
        self,
        order: Order,
        pre_discount_subtotal_cents: int,
        tax_cents: int,
        settlement_date: Optional[date] = None,
    ) -> Invoice:
        """
        Return the order's invoice, creating it on first call.

        Due date is settlement date + the customer's net terms. A paid order
        yields a paid invoice with nothing due.

        Raises:
            DuplicateInvoice: an invoice exists for the order with a different total
        """
        with unit_of_work(self.db):
            existing = self._existing_for(order)
            if existing is not None:
                return existing

            settlement_date = settlement_date or utcnow().date()
            line = self.lines.get_by_customer(order.customer_id)
            net_terms = line.net_terms if line else settings.default_net_terms
            paid = order.payment_status == "paid"

            attempt = 0
            while True:
                attempt += 1
                invoice = Invoice(
                    invoice_number=self.next_invoice_number(settlement_date.year),
                    order_id=order.id,
                    customer_id=order.customer_id,
                    amount_cents=pre_discount_subtotal_cents,
                    tax_cents=tax_cents,
                    discount_cents=order.discount_cents,
                    total_cents=order.total_cents,
                    amount_paid_cents=order.total_cents if paid else 0,
                    balance_due_cents=0 if paid else order.total_cents,
                    due_date=add_days(settlement_date, net_terms),
                    status="paid" if paid else "pending",
                    payment_status=order.payment_status,
                    payment_method=order.payment_method,
                )
                try:
                    with self.db.begin_nested():
                        self.invoices.add(invoice)
                    break
                except IntegrityError:
                    # Either another writer invoiced this order, or the number collided
                    existing = self._existing_for(order)
                    if existing is not None:
                        return existing
                    sequence_conflicts_counter.labels(sequence="invoice").inc()
                    if attempt >= settings.max_allocation_attempts:
                        raise ConcurrencyConflict(f"Could not allocate an invoice number for order {order.id}")

            self.orders.mark_invoice_created(order.id)

        logger.info(
            "Invoice created",
            extra={
                "order_id": str(order.id),
                "invoice_number": invoice.invoice_number,
                "total_cents": invoice.total_cents,
                "due_date": invoice.due_date.isoformat(),
            },
        )
        return invoice

    def _existing_for(self, order: Order) -> Optional[Invoice]:
        existing = self.invoices.get_by_order(order.id)
        if existing is not None and existing.total_cents != order.total_cents:
            raise DuplicateInvoice(
                f"Order {order.order_number} already has invoice {existing.invoice_number} "
                f"for {existing.total_cents} cents, not {order.total_cents}"
            )
        return existing

    def create_invoice_for_order(self, order_id: uuid.UUID | str, settlement_date: Optional[date] = None) -> Invoice:
        """Invoice a stored order; the pre-discount amount is its subtotal"""
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return self.create_invoice(order, order.subtotal_cents, order.tax_cents, settlement_date)

    def get_invoice(self, invoice_id: uuid.UUID | str) -> Invoice:
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def record_payment(self, invoice_id: uuid.UUID | str, amount_cents: int, performed_by: Optional[str] = None) -> Invoice:
        """
        Apply a customer payment to an invoice.

        Payments go to principal before penalty; on credit orders the principal
        part also repays the customer's credit line.

        Raises:
            ValidationError: non-positive amount, or more than the balance due
        """
        if amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")

        with unit_of_work(self.db):
            invoice = self.get_invoice(invoice_id)
            if amount_cents > invoice.balance_due_cents:
                raise ValidationError(
                    f"Payment of {amount_cents} exceeds the {invoice.balance_due_cents} cents due "
                    f"on invoice {invoice.invoice_number}"
                )

            before = snapshot_invoice(invoice)
            principal_due = max(0, invoice.total_cents - invoice.amount_paid_cents)
            principal_paid = min(amount_cents, principal_due)
            invoice.amount_paid_cents += amount_cents
            invoice.balance_due_cents -= amount_cents
            if invoice.balance_due_cents == 0:
                invoice.status = "paid"
                invoice.payment_status = "paid"
            else:
                invoice.payment_status = "partial"

            if invoice.payment_method == "credit" and principal_paid > 0:
                self.lines.release(invoice.customer_id, principal_paid)

            self.db.flush()
            self.activity.log_activity(
                order_id=invoice.order_id,
                activity_type="payment_received",
                description=f"Payment of {amount_cents} cents received on invoice {invoice.invoice_number}",
                old_data=before,
                new_data=snapshot_invoice(invoice),
                performed_by=performed_by,
            )

        return invoice
