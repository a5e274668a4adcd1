"""Credit applications, credit lines, usage and late-penalty accrual"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.exceptions import (
    ConcurrencyConflict,
    CreditLimitExceeded,
    NotFoundError,
    ValidationError,
)
from credit_ledger.domain.models import PenaltyRunSummary
from credit_ledger.domain.penalties import calculate_penalty
from credit_ledger.infrastructure.database.models import CreditApplication, CreditLine
from credit_ledger.infrastructure.database.repositories import (
    CreditApplicationRepository,
    CreditLineRepository,
    InvoiceRepository,
    ProfileRepository,
    SentTermsRepository,
)
from credit_ledger.infrastructure.database.session import unit_of_work
from credit_ledger.infrastructure.observability.logging import log_credit_review
from credit_ledger.infrastructure.observability.metrics import (
    credit_review_counter,
    credit_usage_rejections_counter,
    penalties_accrued_counter,
)
from credit_ledger.services.activity import ActivityLogger, snapshot_invoice
from credit_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

VALID_NET_TERMS = (30, 45, 60)
REVIEW_DECISIONS = ("approved", "rejected", "expired")
TERMINAL_STATUSES = ("approved", "rejected", "expired")

# pending may be decided directly; the explicit under_review step is optional
ALLOWED_TRANSITIONS = {
    "pending": ("under_review", "approved", "rejected", "expired"),
    "under_review": ("approved", "rejected", "expired"),
}


@dataclass
class ReviewOutcome:
    application: CreditApplication
    credit_line: Optional[CreditLine]


def _validate_net_terms(net_terms: int) -> int:
    if net_terms not in VALID_NET_TERMS:
        raise ValidationError(f"Net terms must be one of {VALID_NET_TERMS}, got {net_terms}")
    return net_terms


def _validate_rate(interest_rate: Any) -> Decimal:
    try:
        rate = Decimal(str(interest_rate))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid interest rate: {interest_rate}") from e
    if rate < 0 or rate > 100:
        raise ValidationError("Interest rate must be between 0 and 100 percent")
    return rate


class CreditLineManager:
    """Owns the credit application lifecycle and every credit line mutation"""

    def __init__(self, db: Session, activity: Optional[ActivityLogger] = None):
        self.db = db
        self.applications = CreditApplicationRepository(db)
        self.lines = CreditLineRepository(db)
        self.profiles = ProfileRepository(db)
        self.terms = SentTermsRepository(db)
        self.invoices = InvoiceRepository(db)
        self.activity = activity or ActivityLogger(db)

    # Applications

    def submit_application(
        self,
        customer_id: str,
        requested_cents: int,
        net_terms: int = 30,
        business_info: Optional[Dict[str, Any]] = None,
        bank_info: Optional[Dict[str, Any]] = None,
        trade_references: Optional[List[Dict[str, Any]]] = None,
        signature: Optional[str] = None,
    ) -> CreditApplication:
        if not customer_id:
            raise ValidationError("Customer is required")
        if requested_cents <= 0:
            raise ValidationError("Requested amount must be positive")
        _validate_net_terms(net_terms)

        with unit_of_work(self.db):
            self.profiles.get_or_create(customer_id)
            return self.applications.create(
                customer_id=customer_id,
                requested_cents=requested_cents,
                net_terms=net_terms,
                business_info=business_info or {},
                bank_info=bank_info or {},
                trade_references=trade_references or [],
                signature=signature,
                status="pending",
            )

    def start_review(self, application_id: uuid.UUID | str, reviewed_by: Optional[str] = None) -> CreditApplication:
        with unit_of_work(self.db):
            application = self._get_application(application_id)
            if application.status == "under_review":
                return application
            self._check_transition(application, "under_review")
            application.status = "under_review"
            application.reviewed_by = reviewed_by
            return application

    def review_application(
        self,
        application_id: uuid.UUID | str,
        decision: Optional[str],
        approved_cents: Optional[int] = None,
        net_terms: Optional[int] = None,
        interest_rate: Optional[Any] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Decide a credit application.

        Approval is one unit of work keyed by the application: profile credit
        fields, credit line upsert (existing used credit preserved) and the
        accepted terms record. Re-submitting the same approval returns the
        existing line without writing anything.
        """
        if not decision:
            raise ValidationError("Review decision is required")
        if decision not in REVIEW_DECISIONS:
            raise ValidationError(f"Unknown review decision: {decision}")
        if decision == "rejected" and not (rejection_reason and rejection_reason.strip()):
            raise ValidationError("A rejection reason is required")

        with unit_of_work(self.db):
            application = self._get_application(application_id)

            if application.status == decision:
                # Retried review; approval side effects already happened
                return ReviewOutcome(application, self.lines.get_by_customer(application.customer_id))
            self._check_transition(application, decision)

            credit_line = None
            if decision == "approved":
                amount = approved_cents if approved_cents is not None else application.requested_cents
                terms = _validate_net_terms(net_terms if net_terms is not None else application.net_terms)
                rate = _validate_rate(interest_rate if interest_rate is not None else settings.default_interest_rate)
                if amount <= 0:
                    raise ValidationError("Approved amount must be positive")

                credit_line = self._apply_approval(application, amount, terms, rate)
                application.approved_cents = amount
            elif decision == "rejected":
                application.rejection_reason = rejection_reason.strip()

            application.status = decision
            application.notes = notes
            application.reviewed_by = reviewed_by
            application.reviewed_at = utcnow()
            self.db.flush()

        credit_review_counter.labels(decision=decision).inc()
        log_credit_review(
            str(application.id),
            application.customer_id,
            decision,
            credit_line.credit_limit_cents if credit_line else 0,
        )
        return ReviewOutcome(application, credit_line)

    def _apply_approval(self, application: CreditApplication, amount: int, net_terms: int, rate: Decimal) -> CreditLine:
        customer_id = application.customer_id
        line = self.lines.get_by_customer(customer_id)

        if line is None:
            try:
                with self.db.begin_nested():
                    line = self.lines.create(
                        customer_id=customer_id,
                        application_id=application.id,
                        credit_limit_cents=amount,
                        used_credit_cents=0,
                        available_credit_cents=amount,
                        net_terms=net_terms,
                        interest_rate=rate,
                        status="active",
                        payment_score=100,
                    )
            except IntegrityError as e:
                raise ConcurrencyConflict(f"Credit line for {customer_id} was created concurrently") from e
        else:
            used = line.used_credit_cents
            if amount < used:
                raise ValidationError(
                    f"Approved amount {amount} is below the {used} cents of credit already in use"
                )
            if not self.lines.update_terms_if_unchanged(line.id, used, amount, net_terms, rate, application.id):
                raise ConcurrencyConflict(f"Credit line for {customer_id} changed during approval")
            line = self.lines.get_by_customer(customer_id)

        profile = self.profiles.get_or_create(customer_id)
        profile.credit_limit_cents = amount
        profile.net_terms = net_terms
        profile.credit_status = "approved"

        try:
            self.terms.create(
                customer_id=customer_id,
                application_id=application.id,
                credit_limit_cents=amount,
                net_terms=net_terms,
                interest_rate=rate,
                status="accepted",
                accepted_at=utcnow(),
            )
        except IntegrityError as e:
            raise ConcurrencyConflict(f"Application {application.id} was approved concurrently") from e

        return line

    def _get_application(self, application_id: uuid.UUID | str) -> CreditApplication:
        application = self.applications.get(application_id)
        if application is None:
            raise NotFoundError(f"Credit application {application_id} not found")
        return application

    def _check_transition(self, application: CreditApplication, target: str) -> None:
        if target not in ALLOWED_TRANSITIONS.get(application.status, ()):
            raise ValidationError(f"Application is already {application.status}; cannot move to {target}")

    # Credit lines

    def get_credit_line(self, customer_id: str) -> CreditLine:
        line = self.lines.get_by_customer(customer_id)
        if line is None:
            raise NotFoundError(f"No credit line for customer {customer_id}")
        return line

    def record_credit_usage(self, customer_id: str, amount_cents: int) -> CreditLine:
        """
        Draw on the customer's credit line.

        Raises:
            ValidationError: amount is not positive
            CreditLimitExceeded: no active line, or amount > available credit
        """
        if amount_cents <= 0:
            raise ValidationError("Credit usage amount must be positive")

        with unit_of_work(self.db):
            if not self.lines.consume(customer_id, amount_cents):
                credit_usage_rejections_counter.inc()
                line = self.lines.get_by_customer(customer_id)
                available = line.available_credit_cents if line and line.status == "active" else 0
                raise CreditLimitExceeded(
                    f"Order amount {amount_cents} exceeds available credit {available}",
                    requested_cents=amount_cents,
                    available_cents=available,
                )
            return self.lines.get_by_customer(customer_id)

    def record_credit_repayment(self, customer_id: str, amount_cents: int) -> CreditLine:
        """Repay used credit; overpayment floors used credit at zero"""
        if amount_cents <= 0:
            raise ValidationError("Repayment amount must be positive")

        with unit_of_work(self.db):
            if not self.lines.release(customer_id, amount_cents):
                raise NotFoundError(f"No credit line for customer {customer_id}")
            return self.lines.get_by_customer(customer_id)

    # Penalties

    def calculate_penalties(self, as_of: Optional[date] = None) -> PenaltyRunSummary:
        """
        Flag past-due invoices as overdue and recompute their late penalties.

        Safe to re-run: invoices already accrued for `as_of` are skipped, and
        the penalty is derived from the due date rather than added onto the
        previous figure.
        """
        as_of = as_of or utcnow().date()
        summary = PenaltyRunSummary(as_of=as_of)

        with unit_of_work(self.db):
            for invoice in self.invoices.list_past_due(as_of):
                invoice.status = "overdue"
                summary.marked_overdue += 1
            self.db.flush()

            rates: Dict[str, Decimal] = {}
            for invoice in self.invoices.list_overdue():
                if invoice.last_penalty_date == as_of:
                    summary.skipped += 1
                    continue

                if invoice.customer_id not in rates:
                    line = self.lines.get_by_customer(invoice.customer_id)
                    rates[invoice.customer_id] = Decimal(line.interest_rate) if line else Decimal(0)

                before = snapshot_invoice(invoice)
                accrual = calculate_penalty(
                    original_cents=invoice.total_cents,
                    interest_rate=rates[invoice.customer_id],
                    due_date=invoice.due_date,
                    as_of=as_of,
                    amount_paid_cents=invoice.amount_paid_cents,
                )
                invoice.days_overdue = accrual.days_overdue
                invoice.penalty_cents = accrual.penalty_cents
                invoice.balance_due_cents = accrual.balance_due_cents
                invoice.last_penalty_date = as_of

                summary.accrued += 1
                summary.total_penalty_cents += accrual.penalty_cents
                penalties_accrued_counter.inc()

                self.activity.log_activity(
                    order_id=invoice.order_id,
                    activity_type="penalty_accrued",
                    description=(
                        f"Late penalty recalculated for invoice {invoice.invoice_number}: "
                        f"{accrual.days_overdue} days overdue"
                    ),
                    old_data=before,
                    new_data=snapshot_invoice(invoice),
                    metadata={"as_of": as_of, "interest_rate": rates[invoice.customer_id]},
                )

        logger.info(
            "Penalty run completed",
            extra={
                "as_of": as_of.isoformat(),
                "marked_overdue": summary.marked_overdue,
                "accrued": summary.accrued,
                "skipped": summary.skipped,
                "total_penalty_cents": summary.total_penalty_cents,
            },
        )
        return summary
