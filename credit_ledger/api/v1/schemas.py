"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from credit_ledger.domain.models import (
    CardDetails,
    CreditMemoInstrument,
    PromoInstrument,
    RedeemedRewardInstrument,
    RewardsInstrument,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Credit


class CreditApplicationRequest(BaseModel):
    """Request body for POST /v1/credit/applications"""

    customer_id: str = Field(..., min_length=1, description="Customer identifier")
    requested_cents: int = Field(..., gt=0, description="Requested credit limit in cents")
    net_terms: int = Field(30, description="Requested net terms in days (30, 45 or 60)")
    business_info: Dict[str, Any] = Field(default_factory=dict)
    bank_info: Dict[str, Any] = Field(default_factory=dict)
    trade_references: List[Dict[str, Any]] = Field(default_factory=list)
    signature: Optional[str] = None


class CreditApplicationResponse(ORMModel):
    id: uuid.UUID
    customer_id: str
    requested_cents: int
    net_terms: int
    status: str
    approved_cents: Optional[int] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class ReviewRequest(BaseModel):
    """Request body for POST /v1/credit/applications/{id}/review"""

    decision: Optional[Literal["approved", "rejected", "expired"]] = None
    approved_cents: Optional[int] = Field(None, gt=0)
    net_terms: Optional[int] = None
    interest_rate: Optional[Decimal] = Field(None, description="Monthly late penalty rate, percent")
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None


class StartReviewRequest(BaseModel):
    reviewed_by: Optional[str] = None


class CreditLineResponse(ORMModel):
    id: uuid.UUID
    customer_id: str
    credit_limit_cents: int
    used_credit_cents: int
    available_credit_cents: int
    net_terms: int
    interest_rate: Decimal
    status: str
    payment_score: int


class ReviewResponse(BaseModel):
    application: CreditApplicationResponse
    credit_line: Optional[CreditLineResponse] = None


class CreditAmountRequest(BaseModel):
    """Request body for credit usage and repayment"""

    amount_cents: int = Field(..., gt=0)


class PenaltyRunRequest(BaseModel):
    as_of: Optional[date] = None


class PenaltyRunResponse(BaseModel):
    as_of: date
    marked_overdue: int
    accrued: int
    skipped: int
    total_penalty_cents: int


# Discounts and orders


class RewardsInstrumentSchema(BaseModel):
    type: Literal["rewards"]
    points_used: int = Field(..., gt=0)

    def to_domain(self) -> RewardsInstrument:
        return RewardsInstrument(points_used=self.points_used)


class PromoInstrumentSchema(BaseModel):
    type: Literal["offer"]
    offer_id: str

    def to_domain(self) -> PromoInstrument:
        return PromoInstrument(offer_id=self.offer_id)


class CreditMemoInstrumentSchema(BaseModel):
    type: Literal["credit_memo"]
    memo_id: str
    amount_cents: Optional[int] = Field(None, ge=0)

    def to_domain(self) -> CreditMemoInstrument:
        return CreditMemoInstrument(memo_id=self.memo_id, amount_cents=self.amount_cents)


class RedeemedRewardInstrumentSchema(BaseModel):
    type: Literal["redeemed_reward"]
    redemption_id: str

    def to_domain(self) -> RedeemedRewardInstrument:
        return RedeemedRewardInstrument(redemption_id=self.redemption_id)


InstrumentSchema = Annotated[
    Union[
        RewardsInstrumentSchema,
        PromoInstrumentSchema,
        CreditMemoInstrumentSchema,
        RedeemedRewardInstrumentSchema,
    ],
    Field(discriminator="type"),
]


class DiscountQuoteRequest(BaseModel):
    """Request body for POST /v1/discounts/quote"""

    customer_id: str = Field(..., min_length=1)
    subtotal_cents: int = Field(..., ge=0)
    tax_cents: int = Field(0, ge=0)
    shipping_cents: int = Field(0, ge=0)
    instruments: List[InstrumentSchema] = Field(default_factory=list)


class DiscountLineSchema(BaseModel):
    discount_type: str
    name: str
    amount_cents: int
    instrument_ref: str
    points_used: Optional[int] = None
    offer_id: Optional[str] = None
    credit_memo_id: Optional[str] = None
    redemption_id: Optional[str] = None


class DiscountQuoteResponse(BaseModel):
    discount_cents: int
    total_cents: int
    details: List[DiscountLineSchema]


class CardSchema(BaseModel):
    card_number: Optional[str] = None
    expiration_date: Optional[str] = None
    cvv: Optional[str] = None
    cardholder_name: Optional[str] = None
    customer_profile_id: Optional[str] = None
    payment_profile_id: Optional[str] = None

    def to_domain(self) -> CardDetails:
        return CardDetails(**self.model_dump())


class SettlementRequestSchema(BaseModel):
    """Request body for POST /v1/orders"""

    customer_id: str = Field(..., min_length=1)
    items: List[Dict[str, Any]] = Field(..., min_length=1)
    subtotal_cents: int = Field(..., ge=0)
    tax_cents: int = Field(0, ge=0)
    shipping_cents: int = Field(0, ge=0)
    payment_method: Literal["card", "credit", "manual"]
    instruments: List[InstrumentSchema] = Field(default_factory=list)
    card: Optional[CardSchema] = None
    performed_by: Optional[str] = None


class OrderResponse(ORMModel):
    id: uuid.UUID
    order_number: str
    customer_id: str
    items: List[Dict[str, Any]]
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    discount_cents: int
    discount_details: List[Dict[str, Any]]
    total_cents: int
    payment_method: str
    payment_status: str
    status: str
    payment_transaction_id: Optional[str] = None
    invoice_created: bool
    created_at: datetime


class InvoiceResponse(ORMModel):
    id: uuid.UUID
    invoice_number: str
    order_id: uuid.UUID
    customer_id: str
    amount_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    amount_paid_cents: int
    penalty_cents: int
    balance_due_cents: int
    days_overdue: int
    due_date: date
    status: str
    payment_status: str
    created_at: datetime


class SettlementResponse(BaseModel):
    order: OrderResponse
    invoice: Optional[InvoiceResponse] = None
    settlement_path: str
    discount_cents: int
    points_earned: int
    discounts_committed: bool


class CommitDiscountsResponse(BaseModel):
    order_id: uuid.UUID
    applied: List[str]


class ActivityResponse(ORMModel):
    id: uuid.UUID
    activity_type: str
    description: str
    old_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="activity_metadata")
    performed_by: Optional[str] = None
    created_at: datetime


# Invoices and receivables


class CreateInvoiceRequest(BaseModel):
    """Request body for POST /v1/invoices"""

    order_id: uuid.UUID
    settlement_date: Optional[date] = None


class InvoicePaymentRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    performed_by: Optional[str] = None


class AgingResponse(BaseModel):
    as_of: date
    customer_id: Optional[str] = None
    b0_30: int
    b31_60: int
    b61_90: int
    b90_plus: int
    total: int


# Adjustments


class AdjustmentRequest(BaseModel):
    """Request body for POST /v1/orders/{order_id}/adjustments"""

    new_cents: int = Field(..., ge=0)
    original_cents: Optional[int] = Field(None, ge=0)
    adjustment_type: Optional[
        Literal["additional_payment", "partial_refund", "full_refund", "order_modification"]
    ] = None
    payment_method: Optional[str] = None
    payment_status: Literal["pending", "completed", "failed"] = "pending"
    transaction_id: Optional[str] = None
    reason: Optional[str] = None
    processed_by: Optional[str] = None


class AdjustmentResponse(ORMModel):
    id: uuid.UUID
    adjustment_number: str
    order_id: uuid.UUID
    customer_id: str
    adjustment_type: str
    original_cents: int
    new_cents: int
    difference_cents: int
    payment_method: Optional[str] = None
    payment_status: str
    payment_transaction_id: Optional[str] = None
    credit_memo_id: Optional[uuid.UUID] = None
    refund_id: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class IssueCreditMemoRequest(BaseModel):
    """Request body for POST /v1/credit-memos"""

    customer_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)
    order_id: Optional[uuid.UUID] = None
    issued_by: Optional[str] = None
    expires_at: Optional[datetime] = None


class ApplyCreditMemoRequest(BaseModel):
    order_id: uuid.UUID
    amount_cents: int = Field(..., gt=0)
    applied_by: Optional[str] = None


class CreditMemoResponse(ORMModel):
    id: uuid.UUID
    memo_number: str
    customer_id: str
    order_id: Optional[uuid.UUID] = None
    refund_id: Optional[uuid.UUID] = None
    amount_cents: int
    applied_cents: int
    balance_cents: int
    reason: Optional[str] = None
    status: str
    expires_at: Optional[datetime] = None
    created_at: datetime


class RefundRequest(BaseModel):
    """Request body for POST /v1/orders/{order_id}/refunds"""

    amount_cents: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)
    refund_method: Literal["original_payment", "credit_memo", "manual"]
    original_payment_id: Optional[str] = None
    invoice_id: Optional[uuid.UUID] = None
    items_returned: List[Dict[str, Any]] = Field(default_factory=list)
    processed_by: Optional[str] = None


class RefundResponse(ORMModel):
    id: uuid.UUID
    refund_number: str
    order_id: uuid.UUID
    customer_id: str
    amount_cents: int
    reason: str
    refund_method: str
    status: str
    gateway_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime


class AccountTransactionResponse(ORMModel):
    entry_no: int
    transaction_type: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    description: Optional[str] = None
    debit_cents: int
    credit_cents: int
    running_balance_cents: int
    transaction_date: date
