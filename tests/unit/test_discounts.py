"""Unit tests for discount stacking arithmetic"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from credit_ledger.domain.discounts import (
    order_total,
    points_earned,
    quote_credit_memo,
    quote_offer,
    quote_redeemed_reward,
    quote_rewards,
    validate_offer,
)
from credit_ledger.domain.exceptions import ValidationError


def test_order_total_scenario_b():
    """$100 + $8 tax + $10 shipping - $25 discounts = $93"""
    assert order_total(10000, 800, 1000, 2500) == 9300


def test_order_total_never_negative():
    assert order_total(5000, 0, 0, 6000) == 0


def test_quote_rewards_converts_at_point_value():
    """500 points at $0.01 = $5.00"""
    points, cents = quote_rewards(500, 1000, 11800, Decimal("0.01"))
    assert points == 500
    assert cents == 500


def test_quote_rewards_capped_at_balance():
    points, cents = quote_rewards(2000, 1500, 100000, Decimal("0.01"))
    assert points == 1500
    assert cents == 1500


def test_quote_rewards_capped_at_remaining_payable():
    """Only as many points as the remaining amount can absorb are used"""
    points, cents = quote_rewards(5000, 5000, 1200, Decimal("0.01"))
    assert points == 1200
    assert cents == 1200


def test_quote_rewards_nothing_remaining():
    assert quote_rewards(500, 1000, 0, Decimal("0.01")) == (0, 0)


def test_quote_offer_percentage_with_cap():
    """10% of $100 is $10, capped at $5"""
    assert quote_offer("percentage", Decimal("10"), 10000, 10000) == 1000
    assert quote_offer("percentage", Decimal("10"), 10000, 10000, max_discount_cents=500) == 500


def test_quote_offer_flat_value_in_dollars():
    assert quote_offer("flat", Decimal("15"), 10000, 10000) == 1500
    # Flat value never exceeds the subtotal
    assert quote_offer("flat", Decimal("15"), 1000, 10000) == 1000


def test_quote_offer_capped_at_remaining():
    assert quote_offer("flat", Decimal("15"), 10000, 700) == 700


def test_quote_offer_unknown_type():
    with pytest.raises(ValidationError):
        quote_offer("bogo", Decimal("1"), 10000, 10000)


def test_validate_offer_rules():
    """Inactive, exhausted, below minimum and outside the date window are all rejected"""
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)

    validate_offer(True, 10, 3, 5000, 10000, now - timedelta(days=1), now + timedelta(days=1), now)

    with pytest.raises(ValidationError):
        validate_offer(False, None, 0, None, 10000)
    with pytest.raises(ValidationError, match="usage limit"):
        validate_offer(True, 10, 10, None, 10000)
    with pytest.raises(ValidationError, match="Minimum order"):
        validate_offer(True, None, 0, 20000, 10000)
    with pytest.raises(ValidationError, match="not yet active"):
        validate_offer(True, None, 0, None, 10000, start_at=now + timedelta(days=1), now=now)
    with pytest.raises(ValidationError, match="expired"):
        validate_offer(True, None, 0, None, 10000, end_at=now - timedelta(days=1), now=now)


def test_quote_credit_memo_scenario_c():
    """$60 memo against a $50 order is capped at $50"""
    assert quote_credit_memo(6000, 5000) == 5000


def test_quote_credit_memo_requested_amount():
    assert quote_credit_memo(6000, 5000, requested_cents=2000) == 2000
    assert quote_credit_memo(1500, 5000, requested_cents=2000) == 1500


def test_quote_credit_memo_negative_request():
    with pytest.raises(ValidationError):
        quote_credit_memo(6000, 5000, requested_cents=-1)


def test_quote_redeemed_reward_types():
    assert quote_redeemed_reward("free_shipping", Decimal("0"), 10000, 1000, 11000) == 1000
    assert quote_redeemed_reward("discount_percent", Decimal("5"), 10000, 0, 10000) == 500
    assert quote_redeemed_reward("store_credit", Decimal("25"), 10000, 0, 2000) == 2000


def test_quote_redeemed_reward_unknown_type():
    with pytest.raises(ValidationError):
        quote_redeemed_reward("mystery_box", Decimal("1"), 10000, 0, 10000)


def test_points_earned_floors_whole_dollars():
    assert points_earned(9300, 1) == 93
    assert points_earned(9399, 1) == 93
    assert points_earned(99, 1) == 0
    assert points_earned(0, 1) == 0
    assert points_earned(10000, 2, Decimal("1.5")) == 300
