"""Discount stacking arithmetic - caps each instrument at the remaining payable amount"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from credit_ledger.domain.exceptions import ValidationError
from credit_ledger.utils.money import percent_of, quantize_cents


def order_total(subtotal_cents: int, tax_cents: int, shipping_cents: int, discount_cents: int) -> int:
    """Final payable amount; a fully discounted order totals zero, never negative"""
    return max(0, subtotal_cents + tax_cents + shipping_cents - discount_cents)


def quote_rewards(
    points_requested: int,
    points_balance: int,
    remaining_cents: int,
    point_value: Decimal,
) -> tuple[int, int]:
    """
    Convert reward points into a discount.

    Points are capped at the customer's balance and at the number of points
    the remaining payable amount can absorb. Partial-cent point values are
    not redeemed.

    Returns: (points_used, discount_cents)
    """
    if points_requested <= 0 or remaining_cents <= 0 or point_value <= 0:
        return 0, 0

    cents_per_point = point_value * 100
    max_points_for_remaining = int(Decimal(remaining_cents) / cents_per_point)

    points = min(points_requested, max(points_balance, 0), max_points_for_remaining)
    if points <= 0:
        return 0, 0

    return points, quantize_cents(Decimal(points) * cents_per_point)


def validate_offer(
    is_active: bool,
    usage_limit: Optional[int],
    used_count: int,
    min_order_cents: Optional[int],
    subtotal_cents: int,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> None:
    """Read-only eligibility check; the usage counter itself is incremented at commit"""
    if not is_active:
        raise ValidationError("Invalid or expired promo code")

    if now is not None:
        if start_at is not None and now < start_at:
            raise ValidationError("This promo code is not yet active")
        if end_at is not None and now > end_at:
            raise ValidationError("This promo code has expired")

    if usage_limit and used_count >= usage_limit:
        raise ValidationError("This promo code has reached its usage limit")

    if min_order_cents and subtotal_cents < min_order_cents:
        raise ValidationError(f"Minimum order amount is {min_order_cents} cents")


def quote_offer(
    offer_type: str,
    discount_value: Decimal,
    subtotal_cents: int,
    remaining_cents: int,
    max_discount_cents: Optional[int] = None,
) -> int:
    """Percentage offers apply to the subtotal (optionally capped); flat offers are a fixed amount"""
    if offer_type == "percentage":
        amount = percent_of(subtotal_cents, discount_value)
        if max_discount_cents:
            amount = min(amount, max_discount_cents)
    elif offer_type == "flat":
        amount = min(quantize_cents(Decimal(discount_value) * 100), subtotal_cents)
    else:
        raise ValidationError(f"Unsupported offer type: {offer_type}")

    return max(0, min(amount, remaining_cents))


def quote_credit_memo(balance_cents: int, remaining_cents: int, requested_cents: Optional[int] = None) -> int:
    """Memo discount is capped at the memo balance and at the remaining payable amount"""
    if requested_cents is not None and requested_cents < 0:
        raise ValidationError("Credit memo amount cannot be negative")

    amount = balance_cents if requested_cents is None else min(requested_cents, balance_cents)
    return max(0, min(amount, remaining_cents))


def quote_redeemed_reward(
    reward_type: str,
    reward_value: Decimal,
    subtotal_cents: int,
    shipping_cents: int,
    remaining_cents: int,
) -> int:
    """
    Value of a pre-redeemed voucher.

    - discount_percent: percentage of the subtotal
    - store_credit: fixed dollar amount
    - free_shipping: waives the shipping charge
    """
    if reward_type in ("discount", "discount_percent"):
        amount = percent_of(subtotal_cents, reward_value)
    elif reward_type in ("credit", "store_credit"):
        amount = quantize_cents(Decimal(reward_value) * 100)
    elif reward_type in ("shipping", "free_shipping"):
        amount = shipping_cents
    else:
        raise ValidationError(f"Unsupported reward type: {reward_type}")

    return max(0, min(amount, remaining_cents))


def points_earned(total_cents: int, points_per_dollar: int, multiplier: Decimal = Decimal("1")) -> int:
    """Loyalty points for a settled order: whole dollars times rate, floored"""
    if total_cents <= 0 or points_per_dollar <= 0:
        return 0
    base_points = (total_cents * points_per_dollar) // 100
    return int(Decimal(base_points) * multiplier)
