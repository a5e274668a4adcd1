"""Integration tests for order settlement and discount commitment"""

import pytest
from unittest.mock import patch
from decimal import Decimal
from sqlalchemy.orm import Session

from credit_ledger.domain.exceptions import CreditLimitExceeded, GatewayError, InsufficientBalance, ValidationError
from credit_ledger.domain.models import (
    CardDetails,
    CreditMemoInstrument,
    PromoInstrument,
    RedeemedRewardInstrument,
    RewardsInstrument,
    SettlementRequest,
)
from credit_ledger.infrastructure.database.models import (
    CreditLine,
    CreditMemoApplication,
    CustomerProfile,
    DiscountApplication,
    Invoice,
    Order,
    OrderActivity,
    RewardTransaction,
)
from credit_ledger.services.discounts import DiscountReconciler
from credit_ledger.services.settlement import OrderSettlementEngine

CARD = CardDetails(card_number="4111111111111111", expiration_date="12/28", cvv="123", cardholder_name="Main St Pharmacy")
ITEMS = [{"sku": "IBU-200", "quantity": 4, "unit_price_cents": 2500}]


def _request(**overrides) -> SettlementRequest:
    fields = dict(
        customer_id="pharm_1",
        items=ITEMS,
        subtotal_cents=10000,
        payment_method="card",
        card=CARD,
    )
    fields.update(overrides)
    return SettlementRequest(**fields)


def test_card_settlement_scenario_b(db: Session, gateway, make_profile, make_memo):
    """$100 + $8 + $10 with $5 of points and a $20 memo settles at $93"""
    make_profile("pharm_1", reward_points=1000)
    memo = make_memo("pharm_1", amount_cents=2000)

    result = OrderSettlementEngine(db, gateway).settle_order(
        _request(
            tax_cents=800,
            shipping_cents=1000,
            instruments=[RewardsInstrument(points_used=500), CreditMemoInstrument(memo_id=str(memo.id))],
        )
    )

    assert result.path == "card"
    assert result.discount.discount_cents == 2500
    assert result.order.total_cents == 9300
    assert result.order.status == "new"
    assert result.order.payment_status == "paid"
    assert result.order.payment_transaction_id == "txn_1"
    assert gateway.charges[0]["amount_cents"] == 9300
    assert gateway.charges[0]["order_reference"] == str(result.order.id)

    assert result.invoice.status == "paid"
    assert result.invoice.amount_cents == 10000
    assert result.invoice.total_cents == 9300
    assert result.invoice.balance_due_cents == 0
    assert result.invoice.invoice_number.startswith("INV-")

    assert result.discounts_committed is True
    assert result.points_earned == 93
    profile = db.get(CustomerProfile, "pharm_1")
    assert profile.reward_points == 1000 - 500 + 93
    db.refresh(memo)
    assert memo.balance_cents == 0
    assert memo.applied_cents == 2000
    assert memo.status == "fully_applied"
    assert db.query(DiscountApplication).count() == 2


def test_order_total_invariant(db: Session, gateway, make_profile):
    make_profile("pharm_1", reward_points=300)

    result = OrderSettlementEngine(db, gateway).settle_order(
        _request(tax_cents=650, shipping_cents=1200, instruments=[RewardsInstrument(points_used=300)])
    )

    order = result.order
    assert order.total_cents == max(
        0, order.subtotal_cents + order.tax_cents + order.shipping_cents - order.discount_cents
    )
    assert order.discount_cents == sum(d["amount_cents"] for d in order.discount_details)


def test_zero_total_settlement_scenario_c(db: Session, gateway, make_memo):
    """$50 order against a $60 memo: capped at $50, paid invoice, memo keeps $10"""
    memo = make_memo("pharm_1", amount_cents=6000)

    result = OrderSettlementEngine(db, gateway).settle_order(
        _request(subtotal_cents=5000, instruments=[CreditMemoInstrument(memo_id=str(memo.id))])
    )

    assert result.path == "zero_total"
    assert result.discount.discount_cents == 5000
    assert result.order.total_cents == 0
    assert result.order.payment_status == "paid"
    assert result.invoice is not None
    assert result.invoice.status == "paid"
    assert result.points_earned == 0
    assert gateway.charges == []

    db.refresh(memo)
    assert memo.balance_cents == 1000
    assert memo.applied_cents == 5000
    assert memo.status == "partially_applied"
    application = db.query(CreditMemoApplication).one()
    assert application.order_id == result.order.id
    assert application.amount_cents == 5000


def test_credit_settlement(db: Session, gateway, make_credit_line):
    make_credit_line("pharm_1", limit_cents=100000)

    result = OrderSettlementEngine(db, gateway).settle_order(
        _request(subtotal_cents=40000, payment_method="credit", card=None)
    )

    assert result.path == "credit"
    assert result.order.status == "credit_approval_processing"
    assert result.order.payment_status == "pending"
    assert result.invoice is None
    assert result.points_earned == 0

    line = db.query(CreditLine).filter(CreditLine.customer_id == "pharm_1").one()
    db.refresh(line)
    assert line.used_credit_cents == 40000
    assert line.available_credit_cents == 60000


def test_credit_limit_exceeded_scenario_d(db: Session, gateway, make_credit_line):
    """$500 credit order against $300 available: nothing persisted"""
    make_credit_line("pharm_1", limit_cents=30000)

    with pytest.raises(CreditLimitExceeded):
        OrderSettlementEngine(db, gateway).settle_order(
            _request(subtotal_cents=50000, payment_method="credit", card=None)
        )

    assert db.query(Order).count() == 0
    line = db.query(CreditLine).filter(CreditLine.customer_id == "pharm_1").one()
    db.refresh(line)
    assert line.used_credit_cents == 0
    assert line.available_credit_cents == 30000


def test_card_gateway_failure_creates_no_order(db: Session, gateway, make_profile):
    make_profile("pharm_1", reward_points=1000)
    gateway.fail_charges = True

    with pytest.raises(GatewayError):
        OrderSettlementEngine(db, gateway).settle_order(_request(instruments=[RewardsInstrument(points_used=500)]))

    assert db.query(Order).count() == 0
    assert db.query(Invoice).count() == 0
    assert db.get(CustomerProfile, "pharm_1").reward_points == 1000


def test_manual_settlement_creates_pending_invoice(db: Session, gateway, make_credit_line):
    make_credit_line("pharm_1", net_terms=45)

    result = OrderSettlementEngine(db, gateway).settle_order(_request(payment_method="manual", card=None))

    assert result.path == "manual"
    assert result.order.payment_status == "pending"
    assert result.invoice.status == "pending"
    assert result.invoice.balance_due_cents == 10000
    assert (result.invoice.due_date - result.invoice.created_at.date()).days == 45


def test_card_requires_card_details(db: Session, gateway):
    with pytest.raises(ValidationError):
        OrderSettlementEngine(db, gateway).settle_order(_request(card=None))
    assert db.query(Order).count() == 0


def test_settlement_validation(db: Session, gateway):
    engine = OrderSettlementEngine(db, gateway)

    with pytest.raises(ValidationError):
        engine.settle_order(_request(payment_method="bitcoin"))
    with pytest.raises(ValidationError):
        engine.settle_order(_request(items=[]))
    with pytest.raises(ValidationError):
        engine.settle_order(_request(customer_id=""))
    with pytest.raises(ValidationError, match="only be applied once"):
        engine.settle_order(
            _request(instruments=[RewardsInstrument(points_used=10), RewardsInstrument(points_used=20)])
        )

    assert db.query(Order).count() == 0


def test_offer_usage_incremented_on_commit(db: Session, gateway, make_offer):
    offer = make_offer(offer_type="percentage", discount_value=Decimal("10"), usage_limit=5)

    result = OrderSettlementEngine(db, gateway).settle_order(_request(instruments=[PromoInstrument(offer_id=str(offer.id))]))

    assert result.discount.discount_cents == 1000
    assert result.order.total_cents == 9000
    db.refresh(offer)
    assert offer.used_count == 1


def test_exhausted_offer_rejected(db: Session, gateway, make_offer):
    offer = make_offer(usage_limit=3, used_count=3)

    with pytest.raises(ValidationError, match="usage limit"):
        OrderSettlementEngine(db, gateway).settle_order(_request(instruments=[PromoInstrument(offer_id=str(offer.id))]))
    assert gateway.charges == []


def test_redeemed_reward_marked_used(db: Session, gateway, make_redemption):
    redemption = make_redemption("pharm_1", reward_type="free_shipping")

    result = OrderSettlementEngine(db, gateway).settle_order(
        _request(shipping_cents=1500, instruments=[RedeemedRewardInstrument(redemption_id=str(redemption.id))])
    )

    assert result.discount.discount_cents == 1500
    db.refresh(redemption)
    assert redemption.status == "used"
    assert redemption.used_in_order_id == result.order.id


def test_memo_of_other_customer_rejected(db: Session, gateway, make_memo):
    memo = make_memo("pharm_2", amount_cents=5000)

    with pytest.raises(ValidationError):
        OrderSettlementEngine(db, gateway).settle_order(_request(instruments=[CreditMemoInstrument(memo_id=str(memo.id))]))


def test_created_activity_has_snapshots(db: Session, gateway):
    result = OrderSettlementEngine(db, gateway).settle_order(_request())

    activity = (
        db.query(OrderActivity)
        .filter(OrderActivity.order_id == result.order.id, OrderActivity.activity_type == "created")
        .one()
    )
    assert activity.old_data["total_cents"] == 10000
    assert activity.new_data["order_number"] == result.order.order_number
    assert activity.activity_metadata["path"] == "card"


def test_points_earned_recorded_in_ledger(db: Session, gateway, make_profile):
    make_profile("pharm_1")

    result = OrderSettlementEngine(db, gateway).settle_order(_request(subtotal_cents=25075))

    assert result.points_earned == 250
    entry = db.query(RewardTransaction).filter(RewardTransaction.transaction_type == "earn").one()
    assert entry.points == 250
    assert entry.reference_id == str(result.order.id)


def test_discount_commit_failure_keeps_order(db: Session, gateway, make_profile):
    """Order stays; failure is logged as activity; retry finishes the commit"""
    make_profile("pharm_1", reward_points=1000)
    engine = OrderSettlementEngine(db, gateway)

    with patch.object(DiscountReconciler, "commit_discounts", side_effect=InsufficientBalance("points moved")):
        result = engine.settle_order(_request(instruments=[RewardsInstrument(points_used=500)]))

    assert result.discounts_committed is False
    assert db.query(Order).count() == 1
    assert db.query(DiscountApplication).count() == 0
    failure = db.query(OrderActivity).filter(OrderActivity.activity_type == "discount_commit_failed").one()
    assert "points moved" in failure.description

    applied = engine.retry_discount_commit(result.order.id)

    assert applied == ["rewards"]
    assert db.get(CustomerProfile, "pharm_1").reward_points == 1000 - 500 + 95


def test_commit_discounts_is_idempotent(db: Session, gateway, make_profile, make_memo):
    make_profile("pharm_1", reward_points=1000)
    memo = make_memo("pharm_1", amount_cents=3000)
    engine = OrderSettlementEngine(db, gateway)

    result = engine.settle_order(
        _request(instruments=[RewardsInstrument(points_used=200), CreditMemoInstrument(memo_id=str(memo.id))])
    )
    again = engine.retry_discount_commit(result.order.id)

    assert again == []
    db.refresh(memo)
    assert memo.balance_cents == 0
    assert db.get(CustomerProfile, "pharm_1").reward_points == 1000 - 200 + 68
    assert db.query(RewardTransaction).filter(RewardTransaction.transaction_type == "redeem").count() == 1


def test_commit_fails_when_points_gone(db: Session, make_profile):
    """Balance spent elsewhere between quote and commit"""
    make_profile("pharm_1", reward_points=100)
    reconciler = DiscountReconciler(db)
    quote = reconciler.compute_discounts("pharm_1", 10000, [RewardsInstrument(points_used=100)])

    profile = db.get(CustomerProfile, "pharm_1")
    profile.reward_points = 20
    db.commit()

    order = Order(
        order_number="ORD-TEST000001",
        customer_id="pharm_1",
        items=ITEMS,
        subtotal_cents=10000,
        total_cents=9900,
        payment_method="card",
    )
    db.add(order)
    db.commit()

    with pytest.raises(InsufficientBalance):
        reconciler.commit_discounts(order.id, "pharm_1", quote.details)
    assert db.get(CustomerProfile, "pharm_1").reward_points == 20
    assert db.query(DiscountApplication).count() == 0


def test_discount_sum_never_exceeds_gross(db: Session, make_profile, make_memo, make_offer):
    make_profile("pharm_1", reward_points=100000)
    memo = make_memo("pharm_1", amount_cents=100000)
    offer = make_offer(offer_type="flat", discount_value=Decimal("50"))

    result = DiscountReconciler(db).compute_discounts(
        "pharm_1",
        8000,
        [
            PromoInstrument(offer_id=str(offer.id)),
            RewardsInstrument(points_used=5000),
            CreditMemoInstrument(memo_id=str(memo.id)),
        ],
        tax_cents=500,
        shipping_cents=500,
    )

    assert result.discount_cents == 9000
    assert [d.amount_cents for d in result.details] == [5000, 4000]
    assert all(d.amount_cents > 0 for d in result.details)
