"""Stacked discounts: quote against live balances, commit after the order is durable"""

import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Sequence
from sqlalchemy.orm import Session

from credit_ledger.config import settings
from credit_ledger.domain.adjustments import memo_status
from credit_ledger.domain.discounts import (
    quote_credit_memo,
    quote_offer,
    quote_redeemed_reward,
    quote_rewards,
    validate_offer,
)
from credit_ledger.domain.exceptions import InsufficientBalance, NotFoundError, ValidationError
from credit_ledger.domain.models import (
    CreditMemoInstrument,
    DiscountInstrument,
    DiscountLine,
    DiscountResult,
    PromoInstrument,
    RedeemedRewardInstrument,
    RewardsInstrument,
)
from credit_ledger.infrastructure.database.repositories import (
    CreditMemoRepository,
    DiscountApplicationRepository,
    OfferRepository,
    ProfileRepository,
    RewardRepository,
    to_uuid,
)
from credit_ledger.infrastructure.database.session import unit_of_work
from credit_ledger.utils.date_utils import as_datetime, utcnow

logger = logging.getLogger(__name__)

OPEN_MEMO_STATUSES = ("issued", "partially_applied")


class DiscountReconciler:
    """Computes discount stacks and applies their source-balance mutations exactly once"""

    def __init__(self, db: Session, point_value: Optional[Decimal] = None):
        self.db = db
        self.point_value = point_value if point_value is not None else settings.point_value
        self.profiles = ProfileRepository(db)
        self.offers = OfferRepository(db)
        self.memos = CreditMemoRepository(db)
        self.rewards = RewardRepository(db)
        self.applications = DiscountApplicationRepository(db)

    # Quoting

    def compute_discounts(
        self,
        customer_id: str,
        subtotal_cents: int,
        instruments: Sequence[DiscountInstrument],
        tax_cents: int = 0,
        shipping_cents: int = 0,
    ) -> DiscountResult:
        """
        Price the requested instruments in caller order.

        Each instrument is capped at the payable amount still remaining after
        the ones before it, so the stack never exceeds subtotal + tax +
        shipping. Nothing is mutated.
        """
        if subtotal_cents < 0 or tax_cents < 0 or shipping_cents < 0:
            raise ValidationError("Order amounts cannot be negative")

        refs = [instrument.instrument_ref for instrument in instruments]
        if len(refs) != len(set(refs)):
            raise ValidationError("Each discount instrument can only be applied once per order")

        remaining = subtotal_cents + tax_cents + shipping_cents
        details: List[DiscountLine] = []

        for instrument in instruments:
            line = self._quote(customer_id, instrument, subtotal_cents, shipping_cents, remaining)
            if line is None or line.amount_cents <= 0:
                continue
            details.append(line)
            remaining -= line.amount_cents

        return DiscountResult(discount_cents=sum(d.amount_cents for d in details), details=details)

    def _quote(
        self,
        customer_id: str,
        instrument: DiscountInstrument,
        subtotal_cents: int,
        shipping_cents: int,
        remaining: int,
    ) -> Optional[DiscountLine]:
        if isinstance(instrument, RewardsInstrument):
            return self._quote_rewards(customer_id, instrument, remaining)
        elif isinstance(instrument, PromoInstrument):
            return self._quote_offer(instrument, subtotal_cents, remaining)
        elif isinstance(instrument, CreditMemoInstrument):
            return self._quote_credit_memo(customer_id, instrument, remaining)
        elif isinstance(instrument, RedeemedRewardInstrument):
            return self._quote_redeemed_reward(customer_id, instrument, subtotal_cents, shipping_cents, remaining)
        raise ValidationError(f"Unsupported discount instrument: {type(instrument).__name__}")

    def _quote_rewards(self, customer_id: str, instrument: RewardsInstrument, remaining: int) -> DiscountLine:
        profile = self.profiles.get(customer_id)
        balance = profile.reward_points if profile else 0
        points, amount = quote_rewards(instrument.points_used, balance, remaining, self.point_value)
        return DiscountLine(
            discount_type="rewards",
            name=f"{points} Reward Points",
            amount_cents=amount,
            instrument_ref=instrument.instrument_ref,
            points_used=points,
        )

    def _quote_offer(self, instrument: PromoInstrument, subtotal_cents: int, remaining: int) -> DiscountLine:
        offer = self.offers.get(instrument.offer_id)
        if offer is None:
            raise ValidationError("Invalid or expired promo code")

        validate_offer(
            is_active=offer.is_active,
            usage_limit=offer.usage_limit,
            used_count=offer.used_count or 0,
            min_order_cents=offer.min_order_cents,
            subtotal_cents=subtotal_cents,
            start_at=as_datetime(offer.start_at) if offer.start_at else None,
            end_at=as_datetime(offer.end_at) if offer.end_at else None,
            now=utcnow(),
        )
        amount = quote_offer(
            offer.offer_type,
            Decimal(offer.discount_value),
            subtotal_cents,
            remaining,
            max_discount_cents=offer.max_discount_cents,
        )
        return DiscountLine(
            discount_type="offer",
            name=offer.title,
            amount_cents=amount,
            instrument_ref=instrument.instrument_ref,
            offer_id=str(offer.id),
        )

    def _quote_credit_memo(self, customer_id: str, instrument: CreditMemoInstrument, remaining: int) -> DiscountLine:
        memo = self.memos.get(instrument.memo_id)
        if memo is None or memo.customer_id != customer_id:
            raise ValidationError("Credit memo not found for this customer")
        if memo.status not in OPEN_MEMO_STATUSES or memo.balance_cents <= 0:
            raise ValidationError(f"Credit memo {memo.memo_number} has no remaining balance")
        if memo.expires_at and as_datetime(memo.expires_at) < utcnow():
            raise ValidationError(f"Credit memo {memo.memo_number} has expired")

        amount = quote_credit_memo(memo.balance_cents, remaining, instrument.amount_cents)
        return DiscountLine(
            discount_type="credit_memo",
            name=f"Credit Memo {memo.memo_number}",
            amount_cents=amount,
            instrument_ref=instrument.instrument_ref,
            credit_memo_id=str(memo.id),
        )

    def _quote_redeemed_reward(
        self,
        customer_id: str,
        instrument: RedeemedRewardInstrument,
        subtotal_cents: int,
        shipping_cents: int,
        remaining: int,
    ) -> DiscountLine:
        redemption = self.rewards.get_redemption(instrument.redemption_id)
        if redemption is None or redemption.customer_id != customer_id:
            raise ValidationError("Reward redemption not found for this customer")
        if redemption.status != "pending":
            raise ValidationError(f"Reward '{redemption.reward_name}' has already been used")

        amount = quote_redeemed_reward(
            redemption.reward_type,
            Decimal(redemption.reward_value or 0),
            subtotal_cents,
            shipping_cents,
            remaining,
        )
        return DiscountLine(
            discount_type="redeemed_reward",
            name=redemption.reward_name,
            amount_cents=amount,
            instrument_ref=instrument.instrument_ref,
            redemption_id=str(redemption.id),
        )

    # Committing

    def commit_discounts(
        self,
        order_id: uuid.UUID | str,
        customer_id: str,
        details: Sequence[DiscountLine],
        performed_by: Optional[str] = None,
    ) -> List[str]:
        """
        Apply each discount's source mutation once per (order, instrument).

        Must only run after the order row is durable. Already-committed
        instruments are skipped, so a retry after a partial failure finishes
        the remaining ones. Returns the instrument refs applied by this call.

        Raises:
            InsufficientBalance: a points or memo balance no longer covers the discount
            ValidationError: a voucher was consumed elsewhere, or an unknown discount type
        """
        order_uuid = to_uuid(order_id, "order id")
        applied: List[str] = []

        with unit_of_work(self.db):
            for line in details:
                if self.applications.exists(order_uuid, line.instrument_ref):
                    continue
                self._apply(order_uuid, customer_id, line, performed_by)
                self.applications.create(order_uuid, line.instrument_ref, line.discount_type, line.amount_cents)
                applied.append(line.instrument_ref)

        if applied:
            logger.info("Discounts committed", extra={"order_id": str(order_uuid), "instruments": applied})
        return applied

    def _apply(self, order_id: uuid.UUID, customer_id: str, line: DiscountLine, performed_by: Optional[str]) -> None:
        if line.discount_type == "rewards":
            self._apply_rewards(order_id, customer_id, line)
        elif line.discount_type in ("offer", "promo"):
            self._apply_offer(line)
        elif line.discount_type == "credit_memo":
            self.apply_memo_balance(line.credit_memo_id, order_id, line.amount_cents, performed_by)
        elif line.discount_type == "redeemed_reward":
            self._apply_redeemed_reward(order_id, line)
        else:
            raise ValidationError(f"Unknown discount type: {line.discount_type}")

    def _apply_rewards(self, order_id: uuid.UUID, customer_id: str, line: DiscountLine) -> None:
        points = line.points_used or 0
        if points <= 0:
            return
        if not self.profiles.redeem_points(customer_id, points):
            raise InsufficientBalance(f"Customer {customer_id} no longer has {points} reward points")
        self.rewards.add_transaction(
            customer_id=customer_id,
            points=-points,
            transaction_type="redeem",
            description=f"Redeemed {points} points for order {order_id}",
            reference_type="order",
            reference_id=str(order_id),
        )

    def _apply_offer(self, line: DiscountLine) -> None:
        if not self.offers.increment_usage(to_uuid(line.offer_id, "offer id")):
            raise NotFoundError(f"Offer {line.offer_id} not found")

    def _apply_redeemed_reward(self, order_id: uuid.UUID, line: DiscountLine) -> None:
        if not self.rewards.mark_redemption_used(to_uuid(line.redemption_id, "redemption id"), order_id):
            raise ValidationError(f"Reward redemption {line.redemption_id} is no longer available")

    def apply_memo_balance(
        self,
        memo_id: uuid.UUID | str,
        order_id: uuid.UUID,
        amount_cents: int,
        applied_by: Optional[str] = None,
    ):
        """Draw a credit memo down by amount: balance -= amount, applied += amount"""
        memo_uuid = to_uuid(memo_id, "credit memo id")
        if amount_cents <= 0:
            raise ValidationError("Credit memo amount must be positive")
        if not self.memos.draw_down(memo_uuid, amount_cents):
            if self.memos.get(memo_uuid) is None:
                raise NotFoundError(f"Credit memo {memo_id} not found")
            raise InsufficientBalance(f"Credit memo {memo_id} balance does not cover {amount_cents} cents")

        memo = self.memos.get(memo_uuid)
        memo.status = memo_status(memo.amount_cents, memo.balance_cents)
        self.memos.record_application(memo_uuid, order_id, amount_cents, applied_by)
        self.db.flush()
        return memo
