"""Data access layer for ledger entities.

Shared counters (credit usage, reward points, memo balances, offer usage,
document sequences) are only ever changed with single conditional UPDATE
statements so that concurrent requests cannot lose writes.
"""

import uuid
from datetime import date
from typing import List, Optional
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credit_ledger.domain.exceptions import ConcurrencyConflict, ValidationError
from credit_ledger.infrastructure.database.models import (
    AccountTransaction,
    CreditApplication,
    CreditLine,
    CreditMemo,
    CreditMemoApplication,
    CustomerProfile,
    DiscountApplication,
    Invoice,
    NumberSequence,
    Offer,
    Order,
    OrderActivity,
    PaymentAdjustment,
    Refund,
    RewardRedemption,
    RewardTransaction,
    SentCreditTerms,
)
from credit_ledger.utils.date_utils import utcnow


def to_uuid(value: uuid.UUID | str, label: str = "id") -> uuid.UUID:
    """Parse an identifier coming from the API or a stored JSON payload"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {label} format: {value}") from e


class ProfileRepository:
    """Repository for customer profiles and their reward balance"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, customer_id: str) -> Optional[CustomerProfile]:
        return self.db.query(CustomerProfile).filter(CustomerProfile.id == customer_id).populate_existing().first()

    def get_or_create(self, customer_id: str) -> CustomerProfile:
        profile = self.get(customer_id)
        if profile is None:
            profile = CustomerProfile(id=customer_id, reward_points=0, lifetime_reward_points=0)
            self.db.add(profile)
            self.db.flush()
        return profile

    def redeem_points(self, customer_id: str, points: int) -> bool:
        """Atomic decrement; False when the balance cannot cover the points"""
        self.db.flush()
        updated = (
            self.db.query(CustomerProfile)
            .filter(CustomerProfile.id == customer_id, CustomerProfile.reward_points >= points)
            .update({CustomerProfile.reward_points: CustomerProfile.reward_points - points}, synchronize_session=False)
        )
        return updated == 1

    def award_points(self, customer_id: str, points: int) -> bool:
        self.db.flush()
        updated = (
            self.db.query(CustomerProfile)
            .filter(CustomerProfile.id == customer_id)
            .update(
                {
                    CustomerProfile.reward_points: CustomerProfile.reward_points + points,
                    CustomerProfile.lifetime_reward_points: CustomerProfile.lifetime_reward_points + points,
                },
                synchronize_session=False,
            )
        )
        return updated == 1


class CreditApplicationRepository:
    """Repository for credit applications"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> CreditApplication:
        application = CreditApplication(**fields)
        self.db.add(application)
        self.db.flush()
        return application

    def get(self, application_id: uuid.UUID | str) -> Optional[CreditApplication]:
        return (
            self.db.query(CreditApplication)
            .filter(CreditApplication.id == to_uuid(application_id, "application id"))
            .first()
        )


class CreditLineRepository:
    """Repository for credit lines with atomic usage mutations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_customer(self, customer_id: str) -> Optional[CreditLine]:
        """Always re-read: usage may have changed through a bulk UPDATE"""
        return (
            self.db.query(CreditLine)
            .filter(CreditLine.customer_id == customer_id)
            .populate_existing()
            .first()
        )

    def create(self, **fields) -> CreditLine:
        line = CreditLine(**fields)
        self.db.add(line)
        self.db.flush()
        return line

    def update_terms_if_unchanged(
        self,
        line_id: uuid.UUID,
        expected_used_cents: int,
        credit_limit_cents: int,
        net_terms: int,
        interest_rate,
        application_id: uuid.UUID,
    ) -> bool:
        """Compare-and-swap on the used credit read before the upsert"""
        self.db.flush()
        updated = (
            self.db.query(CreditLine)
            .filter(CreditLine.id == line_id, CreditLine.used_credit_cents == expected_used_cents)
            .update(
                {
                    CreditLine.credit_limit_cents: credit_limit_cents,
                    CreditLine.available_credit_cents: credit_limit_cents - expected_used_cents,
                    CreditLine.net_terms: net_terms,
                    CreditLine.interest_rate: interest_rate,
                    CreditLine.application_id: application_id,
                    CreditLine.status: "active",
                    CreditLine.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def consume(self, customer_id: str, amount_cents: int) -> bool:
        """Atomically move amount from available to used; False if it does not fit"""
        self.db.flush()
        updated = (
            self.db.query(CreditLine)
            .filter(
                CreditLine.customer_id == customer_id,
                CreditLine.status == "active",
                CreditLine.available_credit_cents >= amount_cents,
            )
            .update(
                {
                    CreditLine.used_credit_cents: CreditLine.used_credit_cents + amount_cents,
                    CreditLine.available_credit_cents: CreditLine.available_credit_cents - amount_cents,
                    CreditLine.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def release(self, customer_id: str, amount_cents: int) -> bool:
        """Atomically repay: used = max(0, used - amount)"""
        self.db.flush()
        new_used = case(
            (CreditLine.used_credit_cents > amount_cents, CreditLine.used_credit_cents - amount_cents),
            else_=0,
        )
        updated = (
            self.db.query(CreditLine)
            .filter(CreditLine.customer_id == customer_id)
            .update(
                {
                    CreditLine.used_credit_cents: new_used,
                    CreditLine.available_credit_cents: CreditLine.credit_limit_cents - new_used,
                    CreditLine.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1


class SentTermsRepository:
    """Repository for credit terms sent to customers"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_application(self, application_id: uuid.UUID) -> Optional[SentCreditTerms]:
        return self.db.query(SentCreditTerms).filter(SentCreditTerms.application_id == application_id).first()

    def create(self, **fields) -> SentCreditTerms:
        terms = SentCreditTerms(**fields)
        self.db.add(terms)
        self.db.flush()
        return terms


class SequenceRepository:
    """Per-year document counters"""

    def __init__(self, db: Session):
        self.db = db

    def next_value(self, name: str, year: int) -> int:
        """
        Allocate the next number for (name, year).

        The increment is a single UPDATE, so on PostgreSQL the row lock
        serializes concurrent allocators until commit. The first allocation of
        a year inserts the row; losing that insert race raises
        ConcurrencyConflict for the caller to retry.
        """
        self.db.flush()
        updated = (
            self.db.query(NumberSequence)
            .filter(NumberSequence.name == name, NumberSequence.year == year)
            .update({NumberSequence.last_value: NumberSequence.last_value + 1}, synchronize_session=False)
        )

        if updated == 0:
            try:
                with self.db.begin_nested():
                    self.db.add(NumberSequence(name=name, year=year, last_value=1))
            except IntegrityError as e:
                raise ConcurrencyConflict(f"Sequence {name}/{year} was created concurrently") from e
            return 1

        return (
            self.db.query(NumberSequence.last_value)
            .filter(NumberSequence.name == name, NumberSequence.year == year)
            .scalar()
        )


class OrderRepository:
    """Repository for orders"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> Order:
        order = Order(**fields)
        self.db.add(order)
        self.db.flush()
        return order

    def get(self, order_id: uuid.UUID | str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == to_uuid(order_id, "order id")).first()

    def mark_invoice_created(self, order_id: uuid.UUID) -> None:
        self.db.query(Order).filter(Order.id == order_id).update(
            {Order.invoice_created: True}, synchronize_session=False
        )


class InvoiceRepository:
    """Repository for invoices"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, invoice_id: uuid.UUID | str) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.id == to_uuid(invoice_id, "invoice id")).first()

    def get_by_order(self, order_id: uuid.UUID) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.order_id == order_id).first()

    def add(self, invoice: Invoice) -> Invoice:
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def list_past_due(self, as_of: date) -> List[Invoice]:
        """Unpaid invoices whose due date has passed but are not yet flagged overdue"""
        return (
            self.db.query(Invoice)
            .filter(Invoice.status == "pending", Invoice.due_date < as_of)
            .all()
        )

    def list_overdue(self) -> List[Invoice]:
        return self.db.query(Invoice).filter(Invoice.status == "overdue").order_by(Invoice.due_date).all()

    def list_outstanding(self, customer_id: Optional[str] = None) -> List[Invoice]:
        query = self.db.query(Invoice).filter(Invoice.balance_due_cents > 0)
        if customer_id:
            query = query.filter(Invoice.customer_id == customer_id)
        return query.order_by(Invoice.created_at).all()


class CreditMemoRepository:
    """Repository for credit memos with atomic draw-down"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> CreditMemo:
        memo = CreditMemo(**fields)
        self.db.add(memo)
        self.db.flush()
        return memo

    def get(self, memo_id: uuid.UUID | str) -> Optional[CreditMemo]:
        return (
            self.db.query(CreditMemo)
            .filter(CreditMemo.id == to_uuid(memo_id, "credit memo id"))
            .populate_existing()
            .first()
        )

    def list_open(self, customer_id: str) -> List[CreditMemo]:
        return (
            self.db.query(CreditMemo)
            .filter(
                CreditMemo.customer_id == customer_id,
                CreditMemo.status.in_(["issued", "partially_applied"]),
                CreditMemo.balance_cents > 0,
            )
            .order_by(CreditMemo.created_at.desc())
            .all()
        )

    def draw_down(self, memo_id: uuid.UUID, amount_cents: int) -> bool:
        """balance -= amount, applied += amount, only if the balance covers it"""
        self.db.flush()
        updated = (
            self.db.query(CreditMemo)
            .filter(CreditMemo.id == memo_id, CreditMemo.balance_cents >= amount_cents)
            .update(
                {
                    CreditMemo.balance_cents: CreditMemo.balance_cents - amount_cents,
                    CreditMemo.applied_cents: CreditMemo.applied_cents + amount_cents,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def record_application(
        self, memo_id: uuid.UUID, order_id: uuid.UUID, amount_cents: int, applied_by: Optional[str] = None
    ) -> CreditMemoApplication:
        application = CreditMemoApplication(
            credit_memo_id=memo_id,
            order_id=order_id,
            amount_cents=amount_cents,
            applied_by=applied_by,
        )
        self.db.add(application)
        return application


class OfferRepository:
    """Repository for promo offers"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, offer_id: uuid.UUID | str) -> Optional[Offer]:
        return self.db.query(Offer).filter(Offer.id == to_uuid(offer_id, "offer id")).first()

    def increment_usage(self, offer_id: uuid.UUID) -> bool:
        self.db.flush()
        updated = (
            self.db.query(Offer)
            .filter(Offer.id == offer_id)
            .update({Offer.used_count: Offer.used_count + 1}, synchronize_session=False)
        )
        return updated == 1


class RewardRepository:
    """Repository for reward redemptions and the points ledger"""

    def __init__(self, db: Session):
        self.db = db

    def get_redemption(self, redemption_id: uuid.UUID | str) -> Optional[RewardRedemption]:
        return (
            self.db.query(RewardRedemption)
            .filter(RewardRedemption.id == to_uuid(redemption_id, "redemption id"))
            .first()
        )

    def mark_redemption_used(self, redemption_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        """pending -> used; False if it was already consumed"""
        self.db.flush()
        updated = (
            self.db.query(RewardRedemption)
            .filter(RewardRedemption.id == redemption_id, RewardRedemption.status == "pending")
            .update(
                {
                    RewardRedemption.status: "used",
                    RewardRedemption.used_in_order_id: order_id,
                    RewardRedemption.used_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def add_transaction(self, **fields) -> RewardTransaction:
        entry = RewardTransaction(**fields)
        self.db.add(entry)
        return entry


class DiscountApplicationRepository:
    """Idempotency markers for committed discounts"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, order_id: uuid.UUID, instrument_ref: str) -> bool:
        return (
            self.db.query(DiscountApplication.id)
            .filter(DiscountApplication.order_id == order_id, DiscountApplication.instrument_ref == instrument_ref)
            .first()
            is not None
        )

    def create(self, order_id: uuid.UUID, instrument_ref: str, discount_type: str, amount_cents: int) -> None:
        self.db.add(
            DiscountApplication(
                order_id=order_id,
                instrument_ref=instrument_ref,
                discount_type=discount_type,
                amount_cents=amount_cents,
            )
        )
        self.db.flush()


class AdjustmentRepository:
    """Repository for payment adjustments and refunds"""

    def __init__(self, db: Session):
        self.db = db

    def create_adjustment(self, **fields) -> PaymentAdjustment:
        adjustment = PaymentAdjustment(**fields)
        self.db.add(adjustment)
        self.db.flush()
        return adjustment

    def list_by_order(self, order_id: uuid.UUID | str) -> List[PaymentAdjustment]:
        return (
            self.db.query(PaymentAdjustment)
            .filter(PaymentAdjustment.order_id == to_uuid(order_id, "order id"))
            .order_by(PaymentAdjustment.created_at.desc())
            .all()
        )

    def create_refund(self, **fields) -> Refund:
        refund = Refund(**fields)
        self.db.add(refund)
        self.db.flush()
        return refund

    def refunded_cents(self, order_id: uuid.UUID) -> int:
        """Completed and still-pending refunds against an order; failed ones do not count"""
        total = (
            self.db.query(func.coalesce(func.sum(Refund.amount_cents), 0))
            .filter(Refund.order_id == order_id, Refund.status.in_(["completed", "pending"]))
            .scalar()
        )
        return int(total)


class AccountTransactionRepository:
    """Append-only customer account ledger"""

    def __init__(self, db: Session):
        self.db = db

    def latest(self, customer_id: str) -> Optional[AccountTransaction]:
        return (
            self.db.query(AccountTransaction)
            .filter(AccountTransaction.customer_id == customer_id)
            .order_by(AccountTransaction.entry_no.desc())
            .first()
        )

    def append(self, **fields) -> AccountTransaction:
        """Insert in a savepoint; a duplicate entry_no means another writer got there first"""
        entry = AccountTransaction(**fields)
        try:
            with self.db.begin_nested():
                self.db.add(entry)
        except IntegrityError as e:
            raise ConcurrencyConflict(
                f"Account entry {fields.get('entry_no')} for {fields.get('customer_id')} already exists"
            ) from e
        return entry

    def list_by_customer(self, customer_id: str, limit: int = 100) -> List[AccountTransaction]:
        return (
            self.db.query(AccountTransaction)
            .filter(AccountTransaction.customer_id == customer_id)
            .order_by(AccountTransaction.entry_no)
            .limit(limit)
            .all()
        )


class ActivityRepository:
    """Repository for order activity records"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> OrderActivity:
        activity = OrderActivity(**fields)
        self.db.add(activity)
        return activity

    def list_by_order(self, order_id: uuid.UUID | str) -> List[OrderActivity]:
        return (
            self.db.query(OrderActivity)
            .filter(OrderActivity.order_id == to_uuid(order_id, "order id"))
            .order_by(OrderActivity.created_at)
            .all()
        )
