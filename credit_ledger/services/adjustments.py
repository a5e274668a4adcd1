"""Post-settlement adjustments, credit memos, refunds and the customer account ledger"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.adjustments import (
    ADJUSTMENT_TYPES,
    check_direction,
    classify_adjustment,
    describe_adjustment,
    entry_type_for,
    next_running_balance,
)
from credit_ledger.domain.exceptions import ConcurrencyConflict, GatewayError, NotFoundError, ValidationError
from credit_ledger.domain.models import AdjustmentClassification
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient
from credit_ledger.infrastructure.database.models import (
    AccountTransaction,
    CreditMemo,
    Order,
    PaymentAdjustment,
    Refund,
)
from credit_ledger.infrastructure.database.repositories import (
    AccountTransactionRepository,
    AdjustmentRepository,
    CreditMemoRepository,
    OrderRepository,
    to_uuid,
)
from credit_ledger.infrastructure.database.session import unit_of_work
from credit_ledger.infrastructure.observability.metrics import (
    adjustment_counter,
    gateway_failures_counter,
    sequence_conflicts_counter,
)
from credit_ledger.services.activity import ActivityLogger
from credit_ledger.services.discounts import DiscountReconciler
from credit_ledger.services.numbering import allocate_number
from credit_ledger.utils.date_utils import utcnow
from credit_ledger.utils.money import format_usd

logger = logging.getLogger(__name__)

REFUND_METHODS = ("original_payment", "credit_memo", "manual")


class PaymentAdjustmentLedger:
    """Records every money change made to an order after it was settled"""

    def __init__(self, db: Session, gateway: Optional[PaymentGatewayClient] = None):
        self.db = db
        self.gateway = gateway
        self.orders = OrderRepository(db)
        self.adjustments = AdjustmentRepository(db)
        self.memos = CreditMemoRepository(db)
        self.transactions = AccountTransactionRepository(db)
        self.activity = ActivityLogger(db)

    def classify_adjustment(self, original_cents: int, new_cents: int) -> AdjustmentClassification:
        return classify_adjustment(original_cents, new_cents)

    def _get_order(self, order_id: uuid.UUID | str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    # Adjustments

    def record_adjustment(
        self,
        order: Order,
        adjustment_type: str,
        original_cents: int,
        new_cents: int,
        difference_cents: int,
        payment_method: Optional[str] = None,
        payment_status: str = "pending",
        transaction_id: Optional[str] = None,
        credit_memo_id: Optional[uuid.UUID] = None,
        refund_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> PaymentAdjustment:
        """Insert a numbered adjustment and log it on the order's activity trail"""
        if adjustment_type not in ADJUSTMENT_TYPES:
            raise ValidationError(f"Unknown adjustment type: {adjustment_type}")

        with unit_of_work(self.db):
            number = allocate_number(self.db, "adjustment", settings.adjustment_prefix)
            description = describe_adjustment(adjustment_type, difference_cents, number, payment_method)
            adjustment = self.adjustments.create_adjustment(
                adjustment_number=number,
                order_id=order.id,
                customer_id=order.customer_id,
                adjustment_type=adjustment_type,
                original_cents=original_cents,
                new_cents=new_cents,
                difference_cents=difference_cents,
                payment_method=payment_method,
                payment_status=payment_status,
                payment_transaction_id=transaction_id,
                credit_memo_id=credit_memo_id,
                refund_id=refund_id,
                reason=reason,
                description=description,
                processed_by=processed_by,
                processed_at=utcnow() if payment_status == "completed" else None,
            )
            self.activity.log_activity(
                order_id=order.id,
                activity_type="payment_received" if adjustment_type == "additional_payment" else "updated",
                description=description,
                performed_by=processed_by,
                metadata={
                    "adjustment_number": number,
                    "adjustment_type": adjustment_type,
                    "original_cents": original_cents,
                    "new_cents": new_cents,
                    "difference_cents": difference_cents,
                    "payment_method": payment_method,
                    "payment_status": payment_status,
                    "transaction_id": transaction_id,
                    "reason": reason,
                },
            )

        adjustment_counter.labels(adjustment_type=adjustment_type).inc()
        return adjustment

    def create_adjustment(
        self,
        order_id: uuid.UUID | str,
        new_cents: int,
        original_cents: Optional[int] = None,
        adjustment_type: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_status: str = "pending",
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> PaymentAdjustment:
        """
        Record an adjustment and its account ledger entry in one unit of work.

        Without an explicit type the adjustment is classified from the
        original (default: the order total) and new amounts.
        """
        if new_cents < 0:
            raise ValidationError("New amount cannot be negative")

        with unit_of_work(self.db):
            order = self._get_order(order_id)
            original = order.total_cents if original_cents is None else original_cents
            classification = classify_adjustment(original, new_cents)

            if adjustment_type is None:
                if classification.adjustment_type == "no_change":
                    raise ValidationError("New amount equals the original amount; nothing to adjust")
                adjustment_type = classification.adjustment_type
            elif classification.difference_cents == 0:
                raise ValidationError("Adjustment difference must be non-zero")
            else:
                check_direction(adjustment_type, classification)

            adjustment = self.record_adjustment(
                order,
                adjustment_type,
                original,
                new_cents,
                classification.difference_cents,
                payment_method=payment_method,
                payment_status=payment_status,
                transaction_id=transaction_id,
                reason=reason,
                processed_by=processed_by,
            )
            self.append_account_transaction(
                customer_id=order.customer_id,
                transaction_type=entry_type_for(adjustment_type),
                amount_cents=classification.difference_cents,
                reference_type="adjustment",
                reference_id=str(adjustment.id),
                description=adjustment.description,
                created_by=processed_by,
                gateway_transaction_id=transaction_id,
            )

        return adjustment

    # Account ledger

    def append_account_transaction(
        self,
        customer_id: str,
        transaction_type: str,
        amount_cents: int,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
    ) -> AccountTransaction:
        """
        Append a debit or credit carrying the customer's new running balance.

        Debits increase what the customer owes. Losing the race for the next
        entry number is retried against the fresh latest entry.
        """
        if amount_cents <= 0:
            raise ValidationError("Account transaction amount must be positive")

        with unit_of_work(self.db):
            attempt = 0
            while True:
                attempt += 1
                latest = self.transactions.latest(customer_id)
                balance = latest.running_balance_cents if latest else 0
                entry_no = latest.entry_no + 1 if latest else 1
                try:
                    return self.transactions.append(
                        customer_id=customer_id,
                        entry_no=entry_no,
                        transaction_type=transaction_type,
                        reference_type=reference_type,
                        reference_id=reference_id,
                        description=description,
                        debit_cents=amount_cents if transaction_type == "debit" else 0,
                        credit_cents=amount_cents if transaction_type == "credit" else 0,
                        running_balance_cents=next_running_balance(balance, transaction_type, amount_cents),
                        transaction_date=utcnow().date(),
                        created_by=created_by,
                        gateway_transaction_id=gateway_transaction_id,
                    )
                except ConcurrencyConflict:
                    sequence_conflicts_counter.labels(sequence="account_transaction").inc()
                    if attempt >= settings.max_allocation_attempts:
                        raise
                    logger.warning(
                        "Retrying account transaction append",
                        extra={"customer_id": customer_id, "attempt": attempt},
                    )

    # Credit memos

    def issue_credit_memo(
        self,
        customer_id: str,
        amount_cents: int,
        reason: str,
        order_id: Optional[uuid.UUID | str] = None,
        refund_id: Optional[uuid.UUID] = None,
        issued_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> CreditMemo:
        if amount_cents <= 0:
            raise ValidationError("Credit memo amount must be positive")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to issue a credit memo")

        with unit_of_work(self.db):
            order = self._get_order(order_id) if order_id else None
            if order is not None and order.customer_id != customer_id:
                raise ValidationError("Order does not belong to this customer")

            memo = self.memos.create(
                memo_number=allocate_number(self.db, "credit_memo", settings.credit_memo_prefix),
                customer_id=customer_id,
                order_id=order.id if order else None,
                refund_id=refund_id,
                amount_cents=amount_cents,
                applied_cents=0,
                balance_cents=amount_cents,
                reason=reason.strip(),
                status="issued",
                issued_by=issued_by,
                expires_at=expires_at,
            )

            if order is not None:
                self.record_adjustment(
                    order,
                    "credit_memo_issued",
                    order.total_cents,
                    max(0, order.total_cents - amount_cents),
                    amount_cents,
                    payment_status="completed",
                    credit_memo_id=memo.id,
                    refund_id=refund_id,
                    reason=reason,
                    processed_by=issued_by,
                )

            self.append_account_transaction(
                customer_id=customer_id,
                transaction_type="credit",
                amount_cents=amount_cents,
                reference_type="credit_memo",
                reference_id=str(memo.id),
                description=f"Credit memo {memo.memo_number} issued - {reason.strip()}",
                created_by=issued_by,
            )

        logger.info(
            "Credit memo issued",
            extra={"customer_id": customer_id, "memo_number": memo.memo_number, "amount_cents": amount_cents},
        )
        return memo

    def apply_credit_memo(
        self,
        memo_id: uuid.UUID | str,
        order_id: uuid.UUID | str,
        amount_cents: int,
        applied_by: Optional[str] = None,
    ) -> CreditMemo:
        """
        Spend part of a memo against an order.

        Raises:
            InsufficientBalance: amount exceeds the memo's remaining balance
        """
        if amount_cents <= 0:
            raise ValidationError("Credit memo amount must be positive")

        with unit_of_work(self.db):
            order = self._get_order(order_id)
            memo = self.memos.get(memo_id)
            if memo is None:
                raise NotFoundError(f"Credit memo {memo_id} not found")
            if memo.customer_id != order.customer_id:
                raise ValidationError("Credit memo and order belong to different customers")

            memo = DiscountReconciler(self.db).apply_memo_balance(memo.id, order.id, amount_cents, applied_by)
            self.record_adjustment(
                order,
                "credit_memo_applied",
                order.total_cents,
                max(0, order.total_cents - amount_cents),
                amount_cents,
                payment_status="completed",
                credit_memo_id=memo.id,
                processed_by=applied_by,
            )

        return memo

    def list_credit_memos(self, customer_id: str) -> List[CreditMemo]:
        return self.memos.list_open(customer_id)

    # Refunds

    def create_refund(
        self,
        order_id: uuid.UUID | str,
        amount_cents: int,
        reason: str,
        refund_method: str,
        original_payment_id: Optional[str] = None,
        invoice_id: Optional[uuid.UUID | str] = None,
        items_returned: Optional[List[Dict[str, Any]]] = None,
        processed_by: Optional[str] = None,
    ) -> Refund:
        """
        Record a refund, sending it through the gateway for original-payment refunds.

        A gateway failure does not raise: the refund is stored with status
        `failed` and its failure reason, and returned to the caller.
        """
        if amount_cents <= 0:
            raise ValidationError("Refund amount must be positive")
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required")
        if refund_method not in REFUND_METHODS:
            raise ValidationError(f"Refund method must be one of {REFUND_METHODS}")

        order = self._get_order(order_id)
        refundable = order.total_cents - self.adjustments.refunded_cents(order.id)
        if amount_cents > refundable:
            raise ValidationError(
                f"Refund of {amount_cents} exceeds the {max(0, refundable)} cents still refundable "
                f"on an order total of {order.total_cents}"
            )
        payment_id = original_payment_id or order.payment_transaction_id

        status = "pending"
        gateway_refund_id = None
        failure_reason = None
        if refund_method == "original_payment":
            if not payment_id:
                raise ValidationError("Original payment refunds need the original transaction id")
            if self.gateway is None:
                raise ValidationError("No payment gateway configured for original payment refunds")
            try:
                result = self.gateway.refund(payment_id, amount_cents, reason)
                gateway_refund_id = result.refund_transaction_id
                status = "completed"
            except GatewayError as e:
                gateway_failures_counter.labels(operation="refund").inc()
                logger.error(
                    f"Gateway refund failed: {e}",
                    extra={"order_id": str(order.id), "amount_cents": amount_cents},
                )
                status = "failed"
                failure_reason = str(e)

        try:
            refund = self._persist_refund(
                order,
                amount_cents,
                refundable,
                reason,
                refund_method,
                payment_id,
                invoice_id,
                items_returned,
                processed_by,
                status,
                gateway_refund_id,
                failure_reason,
            )
        except Exception:
            if gateway_refund_id:
                # Money went back to the card but no refund row exists; needs manual reconciliation
                logger.error(
                    "Refund persistence failed after successful gateway refund",
                    extra={
                        "order_id": str(order.id),
                        "customer_id": order.customer_id,
                        "gateway_refund_id": gateway_refund_id,
                        "amount_cents": amount_cents,
                    },
                )
            raise

        return refund

    def _persist_refund(
        self,
        order: Order,
        amount_cents: int,
        refundable: int,
        reason: str,
        refund_method: str,
        payment_id: Optional[str],
        invoice_id: Optional[uuid.UUID | str],
        items_returned: Optional[List[Dict[str, Any]]],
        processed_by: Optional[str],
        status: str,
        gateway_refund_id: Optional[str],
        failure_reason: Optional[str],
    ) -> Refund:
        with unit_of_work(self.db):
            refund = self.adjustments.create_refund(
                refund_number=allocate_number(self.db, "refund", settings.refund_prefix),
                order_id=order.id,
                invoice_id=to_uuid(invoice_id, "invoice id") if invoice_id else None,
                customer_id=order.customer_id,
                original_payment_id=payment_id,
                amount_cents=amount_cents,
                reason=reason.strip(),
                items_returned=items_returned or [],
                refund_method=refund_method,
                status=status,
                gateway_refund_id=gateway_refund_id,
                failure_reason=failure_reason,
                processed_by=processed_by,
                processed_at=utcnow() if status == "completed" else None,
            )

            memo = None
            if refund_method == "credit_memo":
                memo = self.issue_credit_memo(
                    customer_id=order.customer_id,
                    amount_cents=amount_cents,
                    reason=f"Refund for order - {reason.strip()}",
                    refund_id=refund.id,
                    issued_by=processed_by,
                )
                refund.status = status = "completed"
                refund.processed_at = utcnow()

            self.activity.log_activity(
                order_id=order.id,
                activity_type="payment_received" if status == "completed" else "updated",
                description=(
                    f"Refund of {format_usd(amount_cents)} processed ({refund.refund_number})"
                    if status == "completed"
                    else f"Refund of {format_usd(amount_cents)} {status} ({refund.refund_number})"
                ),
                performed_by=processed_by,
                metadata={
                    "refund_number": refund.refund_number,
                    "refund_id": refund.id,
                    "amount_cents": amount_cents,
                    "refund_method": refund_method,
                    "status": status,
                    "gateway_refund_id": gateway_refund_id,
                    "failure_reason": failure_reason,
                    "reason": reason,
                },
            )

            if status == "completed":
                refund_type = "full_refund" if amount_cents >= refundable else "partial_refund"
                adjustment = self.record_adjustment(
                    order,
                    refund_type,
                    refundable,
                    refundable - amount_cents,
                    amount_cents,
                    payment_method=refund_method,
                    payment_status="completed",
                    transaction_id=gateway_refund_id,
                    credit_memo_id=memo.id if memo else None,
                    refund_id=refund.id,
                    reason=reason,
                    processed_by=processed_by,
                )
                # A memo refund was already credited to the account when the memo was issued
                if memo is None:
                    self.append_account_transaction(
                        customer_id=order.customer_id,
                        transaction_type="credit",
                        amount_cents=amount_cents,
                        reference_type="refund",
                        reference_id=str(refund.id),
                        description=adjustment.description,
                        created_by=processed_by,
                        gateway_transaction_id=gateway_refund_id,
                    )

        return refund

    # History

    def get_order_adjustments(self, order_id: uuid.UUID | str) -> List[PaymentAdjustment]:
        self._get_order(order_id)
        return self.adjustments.list_by_order(order_id)

    def get_account_transactions(self, customer_id: str, limit: int = 100) -> List[AccountTransaction]:
        return self.transactions.list_by_customer(customer_id, limit)
