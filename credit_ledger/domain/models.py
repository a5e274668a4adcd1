"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Union


# Discount instruments: one dataclass per tag, handled exhaustively at commit time


@dataclass(frozen=True)
class RewardsInstrument:
    """Redeem loyalty points at the configured point value"""

    points_used: int

    @property
    def instrument_ref(self) -> str:
        return "rewards"


@dataclass(frozen=True)
class PromoInstrument:
    """Promo code or offer, validated against its usage counter"""

    offer_id: str

    @property
    def instrument_ref(self) -> str:
        return f"offer:{self.offer_id}"


@dataclass(frozen=True)
class CreditMemoInstrument:
    """Stored-value credit memo; amount defaults to the full memo balance"""

    memo_id: str
    amount_cents: Optional[int] = None

    @property
    def instrument_ref(self) -> str:
        return f"credit_memo:{self.memo_id}"


@dataclass(frozen=True)
class RedeemedRewardInstrument:
    """Voucher the customer redeemed earlier from the rewards catalog"""

    redemption_id: str

    @property
    def instrument_ref(self) -> str:
        return f"redeemed_reward:{self.redemption_id}"


DiscountInstrument = Union[RewardsInstrument, PromoInstrument, CreditMemoInstrument, RedeemedRewardInstrument]


@dataclass
class DiscountLine:
    """Single applied discount as stored on the order"""

    discount_type: str  # rewards | offer | credit_memo | redeemed_reward
    name: str
    amount_cents: int
    instrument_ref: str
    points_used: Optional[int] = None
    offer_id: Optional[str] = None
    credit_memo_id: Optional[str] = None
    redemption_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscountLine":
        return cls(
            discount_type=data["discount_type"],
            name=data.get("name", ""),
            amount_cents=int(data["amount_cents"]),
            instrument_ref=data["instrument_ref"],
            points_used=data.get("points_used"),
            offer_id=data.get("offer_id"),
            credit_memo_id=data.get("credit_memo_id"),
            redemption_id=data.get("redemption_id"),
        )


@dataclass
class DiscountResult:
    """Output of discount stacking"""

    discount_cents: int
    details: List[DiscountLine] = field(default_factory=list)


@dataclass
class CardDetails:
    """Raw card data or a saved gateway profile reference"""

    card_number: Optional[str] = None
    expiration_date: Optional[str] = None
    cvv: Optional[str] = None
    cardholder_name: Optional[str] = None
    customer_profile_id: Optional[str] = None
    payment_profile_id: Optional[str] = None

    @property
    def is_saved_profile(self) -> bool:
        return bool(self.customer_profile_id and self.payment_profile_id)


@dataclass
class SettlementRequest:
    """Priced cart plus the chosen payment method"""

    customer_id: str
    items: List[Dict[str, Any]]
    subtotal_cents: int
    payment_method: str  # card | credit | manual
    tax_cents: int = 0
    shipping_cents: int = 0
    instruments: List[DiscountInstrument] = field(default_factory=list)
    card: Optional[CardDetails] = None
    performed_by: Optional[str] = None


@dataclass
class AdjustmentClassification:
    """Signed difference between an order's original and new amounts"""

    difference_cents: int
    adjustment_type: str  # additional_payment | partial_refund | no_change


@dataclass
class PenaltyAccrual:
    """Late penalty figures for one overdue invoice"""

    days_overdue: int
    penalty_cents: int
    balance_due_cents: int


@dataclass
class PenaltyRunSummary:
    """Outcome of a penalty run for one calendar day"""

    as_of: date
    marked_overdue: int = 0
    accrued: int = 0
    skipped: int = 0
    total_penalty_cents: int = 0


@dataclass
class AgingBuckets:
    """Outstanding receivables grouped by invoice age"""

    b0_30: int = 0
    b31_60: int = 0
    b61_90: int = 0
    b90_plus: int = 0
    total: int = 0
