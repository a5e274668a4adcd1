"""Order activity log: immutable audit records, written fire-and-forget"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from credit_ledger.infrastructure.database.models import Invoice, Order
from credit_ledger.infrastructure.database.repositories import ActivityRepository
from credit_ledger.infrastructure.observability.metrics import activity_log_failures_counter

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Make ids, dates and decimals safe for JSON columns"""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot_order(order: Order) -> Dict[str, Any]:
    return to_jsonable(
        {
            "id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
            "subtotal_cents": order.subtotal_cents,
            "tax_cents": order.tax_cents,
            "shipping_cents": order.shipping_cents,
            "discount_cents": order.discount_cents,
            "discount_details": order.discount_details,
            "total_cents": order.total_cents,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "status": order.status,
        }
    )


def snapshot_invoice(invoice: Invoice) -> Dict[str, Any]:
    return to_jsonable(
        {
            "invoice_number": invoice.invoice_number,
            "total_cents": invoice.total_cents,
            "penalty_cents": invoice.penalty_cents,
            "balance_due_cents": invoice.balance_due_cents,
            "status": invoice.status,
            "due_date": invoice.due_date,
        }
    )


class ActivityLogger:
    """Writes order activity rows inside a savepoint so a failed write never aborts the caller"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ActivityRepository(db)

    def log_activity(
        self,
        order_id: Optional[uuid.UUID],
        activity_type: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        performed_by: Optional[str] = None,
    ) -> bool:
        """Returns False (and logs) when the record could not be written"""
        try:
            with self.db.begin_nested():
                self.repo.create(
                    order_id=order_id,
                    activity_type=activity_type,
                    description=description,
                    activity_metadata=to_jsonable(metadata) if metadata else None,
                    old_data=to_jsonable(old_data) if old_data else None,
                    new_data=to_jsonable(new_data) if new_data else None,
                    performed_by=performed_by,
                )
        except SQLAlchemyError as e:
            activity_log_failures_counter.inc()
            logger.warning(
                f"Activity logging failed: {e}",
                extra={"order_id": str(order_id) if order_id else None, "activity_type": activity_type},
            )
            return False
        return True
