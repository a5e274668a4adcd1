"""SQLAlchemy ORM models for the settlement ledger. Money columns are integer cents."""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Numeric,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship

from credit_ledger.utils.date_utils import utcnow

Base = declarative_base()


class CustomerProfile(Base):
    """Pharmacy account: reward balance and the credit fields mirrored from its credit line"""

    __tablename__ = "customer_profile"

    id = Column(Text, primary_key=True)
    company_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    reward_points = Column(BigInteger, nullable=False, default=0)
    lifetime_reward_points = Column(BigInteger, nullable=False, default=0)
    credit_limit_cents = Column(BigInteger, nullable=False, default=0)
    net_terms = Column(Integer, nullable=True)
    credit_status = Column(Text, nullable=False, default="none")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (CheckConstraint("reward_points >= 0", name="ck_profile_reward_points"),)


class CreditApplication(Base):
    """Trade credit application submitted by a customer"""

    __tablename__ = "credit_application"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, index=True)
    requested_cents = Column(BigInteger, nullable=False)
    net_terms = Column(Integer, nullable=False, default=30)
    business_info = Column(JSON, nullable=True)
    bank_info = Column(JSON, nullable=True)
    trade_references = Column(JSON, nullable=True)
    signature = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    approved_cents = Column(BigInteger, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    reviewed_by = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CreditLine(Base):
    """Revolving credit line; at most one per customer"""

    __tablename__ = "credit_line"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, unique=True)
    application_id = Column(UUID(as_uuid=True), ForeignKey("credit_application.id"), nullable=True)
    credit_limit_cents = Column(BigInteger, nullable=False)
    used_credit_cents = Column(BigInteger, nullable=False, default=0)
    available_credit_cents = Column(BigInteger, nullable=False)
    net_terms = Column(Integer, nullable=False, default=30)
    interest_rate = Column(Numeric(5, 2), nullable=False)
    status = Column(Text, nullable=False, default="active")
    payment_score = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("used_credit_cents >= 0", name="ck_credit_line_used"),
        CheckConstraint("available_credit_cents >= 0", name="ck_credit_line_available"),
        CheckConstraint(
            "available_credit_cents = credit_limit_cents - used_credit_cents",
            name="ck_credit_line_balance",
        ),
        CheckConstraint("payment_score BETWEEN 0 AND 100", name="ck_credit_line_score"),
    )


class SentCreditTerms(Base):
    """Credit terms sent to a customer; approval records them as accepted"""

    __tablename__ = "sent_credit_terms"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, index=True)
    application_id = Column(UUID(as_uuid=True), ForeignKey("credit_application.id"), nullable=True, unique=True)
    credit_limit_cents = Column(BigInteger, nullable=False)
    net_terms = Column(Integer, nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False)
    terms_version = Column(Text, nullable=False, default="1.0")
    status = Column(Text, nullable=False, default="pending")
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Order(Base):
    """Settled order. Append-only: later money changes are adjustments"""

    __tablename__ = "customer_order"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number = Column(Text, nullable=False, unique=True)
    customer_id = Column(Text, nullable=False, index=True)
    items = Column(JSON, nullable=False, default=list)
    subtotal_cents = Column(BigInteger, nullable=False)
    tax_cents = Column(BigInteger, nullable=False, default=0)
    shipping_cents = Column(BigInteger, nullable=False, default=0)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    discount_details = Column(JSON, nullable=False, default=list)
    total_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    payment_status = Column(Text, nullable=False, default="pending")
    status = Column(Text, nullable=False, default="new")
    payment_transaction_id = Column(Text, nullable=True)
    invoice_created = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (CheckConstraint("total_cents >= 0", name="ck_order_total"),)

    invoice = relationship("Invoice", back_populates="order", uselist=False)


class Invoice(Base):
    """Invoice for a settled order; one per order"""

    __tablename__ = "invoice"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(Text, nullable=False, unique=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("customer_order.id"), nullable=False, unique=True)
    customer_id = Column(Text, nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)  # Pre-discount subtotal
    tax_cents = Column(BigInteger, nullable=False, default=0)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False)
    amount_paid_cents = Column(BigInteger, nullable=False, default=0)
    penalty_cents = Column(BigInteger, nullable=False, default=0)
    balance_due_cents = Column(BigInteger, nullable=False, default=0)
    days_overdue = Column(Integer, nullable=False, default=0)
    last_penalty_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    payment_status = Column(Text, nullable=False, default="pending")
    payment_method = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="invoice")


class CreditMemo(Base):
    """Stored-value credit owed to a customer"""

    __tablename__ = "credit_memo"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    memo_number = Column(Text, nullable=False, unique=True)
    customer_id = Column(Text, nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), nullable=True)
    refund_id = Column(UUID(as_uuid=True), nullable=True)
    amount_cents = Column(BigInteger, nullable=False)
    applied_cents = Column(BigInteger, nullable=False, default=0)
    balance_cents = Column(BigInteger, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="issued")
    issued_by = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_credit_memo_balance"),
        CheckConstraint("applied_cents + balance_cents = amount_cents", name="ck_credit_memo_total"),
    )

    applications = relationship("CreditMemoApplication", back_populates="credit_memo")


class CreditMemoApplication(Base):
    """One draw-down of a credit memo against an order"""

    __tablename__ = "credit_memo_application"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credit_memo_id = Column(UUID(as_uuid=True), ForeignKey("credit_memo.id"), nullable=False)
    order_id = Column(UUID(as_uuid=True), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    applied_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    credit_memo = relationship("CreditMemo", back_populates="applications")


class Offer(Base):
    """Promo code / offer; used_count is the shared usage counter"""

    __tablename__ = "offer"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(Text, nullable=True, unique=True)
    title = Column(Text, nullable=False)
    offer_type = Column(Text, nullable=False)  # percentage | flat
    discount_value = Column(Numeric(10, 2), nullable=False)
    max_discount_cents = Column(BigInteger, nullable=True)
    min_order_cents = Column(BigInteger, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)


class RewardRedemption(Base):
    """Voucher a customer redeemed from the rewards catalog"""

    __tablename__ = "reward_redemption"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, index=True)
    reward_name = Column(Text, nullable=False)
    reward_type = Column(Text, nullable=False)  # discount_percent | store_credit | free_shipping
    reward_value = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Text, nullable=False, default="pending")
    used_in_order_id = Column(UUID(as_uuid=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class RewardTransaction(Base):
    """Append-only reward points ledger"""

    __tablename__ = "reward_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, index=True)
    points = Column(BigInteger, nullable=False)
    transaction_type = Column(Text, nullable=False)  # earn | redeem
    description = Column(Text, nullable=True)
    reference_type = Column(Text, nullable=True)
    reference_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class DiscountApplication(Base):
    """Marker that one discount instrument has been committed for an order"""

    __tablename__ = "discount_application"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("customer_order.id"), nullable=False)
    instrument_ref = Column(Text, nullable=False)
    discount_type = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("order_id", "instrument_ref", name="uq_discount_application"),)


class PaymentAdjustment(Base):
    """Post-settlement money change against an order"""

    __tablename__ = "payment_adjustment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    adjustment_number = Column(Text, nullable=False, unique=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("customer_order.id"), nullable=False, index=True)
    customer_id = Column(Text, nullable=False, index=True)
    adjustment_type = Column(Text, nullable=False)
    original_cents = Column(BigInteger, nullable=False)
    new_cents = Column(BigInteger, nullable=False)
    difference_cents = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=True)
    payment_status = Column(Text, nullable=False, default="pending")
    payment_transaction_id = Column(Text, nullable=True)
    credit_memo_id = Column(UUID(as_uuid=True), nullable=True)
    refund_id = Column(UUID(as_uuid=True), nullable=True)
    reason = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    processed_by = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Refund(Base):
    """Refund attempt; kept even when the gateway fails"""

    __tablename__ = "refund"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    refund_number = Column(Text, nullable=False, unique=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("customer_order.id"), nullable=False, index=True)
    invoice_id = Column(UUID(as_uuid=True), nullable=True)
    customer_id = Column(Text, nullable=False, index=True)
    original_payment_id = Column(Text, nullable=True)
    amount_cents = Column(BigInteger, nullable=False)
    reason = Column(Text, nullable=False)
    items_returned = Column(JSON, nullable=False, default=list)
    refund_method = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    gateway_refund_id = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    processed_by = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AccountTransaction(Base):
    """Append-only customer account ledger with running balance"""

    __tablename__ = "account_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(Text, nullable=False, index=True)
    entry_no = Column(Integer, nullable=False)
    transaction_type = Column(Text, nullable=False)  # debit | credit
    reference_type = Column(Text, nullable=True)
    reference_id = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    debit_cents = Column(BigInteger, nullable=False, default=0)
    credit_cents = Column(BigInteger, nullable=False, default=0)
    running_balance_cents = Column(BigInteger, nullable=False)
    transaction_date = Column(Date, nullable=False)
    created_by = Column(Text, nullable=True)
    gateway_transaction_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("customer_id", "entry_no", name="uq_account_transaction_entry"),)

    @property
    def amount_cents(self) -> int:
        return self.debit_cents if self.transaction_type == "debit" else self.credit_cents


class NumberSequence(Base):
    """Per-year document counter (invoice, order, adjustment, memo, refund)"""

    __tablename__ = "number_sequence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(32), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("name", "year", name="uq_number_sequence"),)


class OrderActivity(Base):
    """Immutable audit record of something that happened to an order"""

    __tablename__ = "order_activity"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    activity_type = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    activity_metadata = Column("metadata", JSON, nullable=True)
    performed_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
