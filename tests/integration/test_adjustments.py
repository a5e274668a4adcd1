"""Integration tests for adjustments, credit memos, refunds and the account ledger"""

import logging
import pytest
from unittest.mock import patch
from sqlalchemy.orm import Session

from credit_ledger.domain.exceptions import ConcurrencyConflict, InsufficientBalance, NotFoundError, ValidationError
from credit_ledger.domain.models import CardDetails, SettlementRequest
from credit_ledger.infrastructure.database.models import (
    AccountTransaction,
    CreditMemo,
    OrderActivity,
    PaymentAdjustment,
    Refund,
)
from credit_ledger.services.adjustments import PaymentAdjustmentLedger
from credit_ledger.services.settlement import OrderSettlementEngine


@pytest.fixture
def card_order(db: Session, gateway):
    """A $100 order paid by card"""
    request = SettlementRequest(
        customer_id="pharm_1",
        items=[{"sku": "MET-500", "quantity": 60}],
        subtotal_cents=10000,
        payment_method="card",
        card=CardDetails(customer_profile_id="cp_1", payment_profile_id="pp_1"),
    )
    return OrderSettlementEngine(db, gateway).settle_order(request).order


def test_additional_payment_adjustment(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)

    adjustment = ledger.create_adjustment(card_order.id, new_cents=12500, payment_method="card", transaction_id="txn_extra")

    assert adjustment.adjustment_type == "additional_payment"
    assert adjustment.difference_cents == 2500
    assert adjustment.original_cents == 10000
    assert adjustment.adjustment_number.startswith("ADJ-")
    assert adjustment.description.startswith("Additional payment of $25.00 collected via card")

    entry = db.query(AccountTransaction).one()
    assert entry.transaction_type == "debit"
    assert entry.debit_cents == 2500
    assert entry.running_balance_cents == 2500
    assert entry.gateway_transaction_id == "txn_extra"

    activity = db.query(OrderActivity).filter(OrderActivity.activity_type == "payment_received").one()
    assert activity.activity_metadata["adjustment_number"] == adjustment.adjustment_number


def test_decrease_classified_as_partial_refund(db: Session, gateway, card_order):
    adjustment = PaymentAdjustmentLedger(db, gateway).create_adjustment(card_order.id, new_cents=7000)

    assert adjustment.adjustment_type == "partial_refund"
    assert adjustment.difference_cents == 3000
    entry = db.query(AccountTransaction).one()
    assert entry.transaction_type == "credit"
    assert entry.running_balance_cents == -3000


def test_no_change_adjustment_rejected(db: Session, gateway, card_order):
    with pytest.raises(ValidationError):
        PaymentAdjustmentLedger(db, gateway).create_adjustment(card_order.id, new_cents=10000)
    assert db.query(PaymentAdjustment).count() == 0


def test_adjustment_numbers_are_sequential(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)

    first = ledger.create_adjustment(card_order.id, new_cents=11000)
    second = ledger.create_adjustment(card_order.id, new_cents=9000)

    assert int(second.adjustment_number[-6:]) == int(first.adjustment_number[-6:]) + 1
    assert len(ledger.get_order_adjustments(card_order.id)) == 2


def test_running_balance_chains(db: Session, gateway):
    ledger = PaymentAdjustmentLedger(db, gateway)

    ledger.append_account_transaction("pharm_1", "debit", 5000, description="Opening balance")
    ledger.append_account_transaction("pharm_1", "credit", 2000)
    ledger.append_account_transaction("pharm_1", "debit", 700)
    ledger.append_account_transaction("pharm_2", "debit", 100)

    entries = ledger.get_account_transactions("pharm_1")
    assert [e.entry_no for e in entries] == [1, 2, 3]
    assert [e.running_balance_cents for e in entries] == [5000, 3000, 3700]
    assert ledger.get_account_transactions("pharm_2")[0].running_balance_cents == 100


def test_credit_memo_round_trip(db: Session, gateway, card_order):
    """Issue $50, apply $20 then $30; amount == applied + balance throughout"""
    ledger = PaymentAdjustmentLedger(db, gateway)

    memo = ledger.issue_credit_memo("pharm_1", 5000, "Short-dated stock", order_id=card_order.id)
    assert memo.memo_number.startswith("CM-")
    assert memo.status == "issued"
    assert memo.balance_cents == 5000

    memo = ledger.apply_credit_memo(memo.id, card_order.id, 2000)
    assert memo.balance_cents == 3000
    assert memo.applied_cents == 2000
    assert memo.status == "partially_applied"
    assert memo.amount_cents == memo.applied_cents + memo.balance_cents

    with pytest.raises(InsufficientBalance):
        ledger.apply_credit_memo(memo.id, card_order.id, 4000)

    memo = ledger.apply_credit_memo(memo.id, card_order.id, 3000)
    assert memo.balance_cents == 0
    assert memo.status == "fully_applied"
    assert ledger.list_credit_memos("pharm_1") == []

    types = sorted(a.adjustment_type for a in ledger.get_order_adjustments(card_order.id))
    assert types == ["credit_memo_applied", "credit_memo_applied", "credit_memo_issued"]
    credit = db.query(AccountTransaction).one()
    assert credit.credit_cents == 5000
    assert credit.reference_type == "credit_memo"


def test_credit_memo_requires_reason(db: Session, gateway):
    with pytest.raises(ValidationError):
        PaymentAdjustmentLedger(db, gateway).issue_credit_memo("pharm_1", 5000, "")
    assert db.query(CreditMemo).count() == 0


def test_apply_memo_across_customers_rejected(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)
    memo = ledger.issue_credit_memo("pharm_2", 5000, "Goodwill")

    with pytest.raises(ValidationError):
        ledger.apply_credit_memo(memo.id, card_order.id, 1000)


def test_refund_to_original_payment(db: Session, gateway, card_order):
    refund = PaymentAdjustmentLedger(db, gateway).create_refund(
        card_order.id, 3000, "Damaged in transit", refund_method="original_payment"
    )

    assert refund.status == "completed"
    assert refund.refund_number.startswith("REF-")
    assert refund.gateway_refund_id is not None
    assert gateway.refunds[0]["transaction_id"] == card_order.payment_transaction_id
    assert gateway.refunds[0]["amount_cents"] == 3000

    adjustment = db.query(PaymentAdjustment).one()
    assert adjustment.adjustment_type == "partial_refund"
    assert adjustment.refund_id == refund.id
    entry = db.query(AccountTransaction).one()
    assert entry.credit_cents == 3000
    assert entry.reference_type == "refund"


def test_full_refund_classified(db: Session, gateway, card_order):
    PaymentAdjustmentLedger(db, gateway).create_refund(
        card_order.id, 10000, "Order cancelled", refund_method="original_payment"
    )
    assert db.query(PaymentAdjustment).one().adjustment_type == "full_refund"


def test_failed_gateway_refund_is_persisted(db: Session, gateway, card_order):
    gateway.fail_refunds = True

    refund = PaymentAdjustmentLedger(db, gateway).create_refund(
        card_order.id, 3000, "Damaged in transit", refund_method="original_payment"
    )

    assert refund.status == "failed"
    assert "timeout" in refund.failure_reason
    stored = db.get(Refund, refund.id)
    assert stored.status == "failed"
    assert db.query(PaymentAdjustment).count() == 0
    assert db.query(AccountTransaction).count() == 0
    activity = (
        db.query(OrderActivity)
        .filter(OrderActivity.order_id == card_order.id, OrderActivity.activity_type == "updated")
        .one()
    )
    assert "failed" in activity.description


def test_refund_as_credit_memo(db: Session, gateway, card_order):
    refund = PaymentAdjustmentLedger(db, gateway).create_refund(
        card_order.id, 4000, "Wrong strength shipped", refund_method="credit_memo"
    )

    assert refund.status == "completed"
    assert gateway.refunds == []
    memo = db.query(CreditMemo).one()
    assert memo.refund_id == refund.id
    assert memo.balance_cents == 4000

    adjustment = db.query(PaymentAdjustment).one()
    assert adjustment.adjustment_type == "partial_refund"
    assert adjustment.credit_memo_id == memo.id
    # Credited once, through the memo
    entry = db.query(AccountTransaction).one()
    assert entry.credit_cents == 4000
    assert entry.reference_type == "credit_memo"


def test_manual_refund_stays_pending(db: Session, gateway, card_order):
    refund = PaymentAdjustmentLedger(db, gateway).create_refund(
        card_order.id, 1000, "Check to be mailed", refund_method="manual"
    )

    assert refund.status == "pending"
    assert db.query(PaymentAdjustment).count() == 0


def test_refund_validation(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)

    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 20000, "Too much", refund_method="original_payment")
    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 1000, "", refund_method="original_payment")
    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 1000, "Reason", refund_method="gift_card")
    with pytest.raises(NotFoundError):
        ledger.create_refund("00000000-0000-0000-0000-000000000000", 1000, "Reason", refund_method="manual")
    assert gateway.refunds == []


def test_repeated_refunds_cannot_exceed_order_total(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)
    ledger.create_refund(card_order.id, 10000, "Damaged", refund_method="original_payment")

    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 10000, "Damaged", refund_method="original_payment")
    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 1, "Damaged", refund_method="manual")

    assert len(gateway.refunds) == 1
    assert db.query(PaymentAdjustment).count() == 1


def test_refunds_classified_against_remaining_amount(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)
    ledger.create_refund(card_order.id, 6000, "Short shipped", refund_method="original_payment")
    ledger.create_refund(card_order.id, 4000, "Rest of order returned", refund_method="credit_memo")

    with pytest.raises(ValidationError):
        ledger.create_refund(card_order.id, 1, "One more", refund_method="original_payment")

    adjustments = db.query(PaymentAdjustment).filter(PaymentAdjustment.refund_id.isnot(None)).all()
    by_type = sorted((a.adjustment_type, a.original_cents, a.new_cents) for a in adjustments)
    assert by_type == [("full_refund", 4000, 0), ("partial_refund", 10000, 4000)]


def test_failed_refund_does_not_count_toward_refunded_total(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)
    gateway.fail_refunds = True
    ledger.create_refund(card_order.id, 10000, "Damaged", refund_method="original_payment")
    gateway.fail_refunds = False

    refund = ledger.create_refund(card_order.id, 10000, "Damaged", refund_method="original_payment")

    assert refund.status == "completed"


def test_refund_persist_failure_logs_gateway_refund_id(db: Session, gateway, card_order, caplog):
    ledger = PaymentAdjustmentLedger(db, gateway)
    caplog.set_level(logging.ERROR)

    with patch(
        "credit_ledger.services.adjustments.allocate_number",
        side_effect=ConcurrencyConflict("sequence contention"),
    ):
        with pytest.raises(ConcurrencyConflict):
            ledger.create_refund(card_order.id, 3000, "Damaged", refund_method="original_payment")

    assert len(gateway.refunds) == 1
    assert db.query(Refund).count() == 0
    record = next(r for r in caplog.records if "after successful gateway refund" in r.getMessage())
    assert record.gateway_refund_id.startswith("rf_")


def test_explicit_type_must_match_direction(db: Session, gateway, card_order):
    ledger = PaymentAdjustmentLedger(db, gateway)

    with pytest.raises(ValidationError):
        ledger.create_adjustment(card_order.id, new_cents=7000, adjustment_type="additional_payment")
    with pytest.raises(ValidationError):
        ledger.create_adjustment(card_order.id, new_cents=12000, adjustment_type="partial_refund")

    adjustment = ledger.create_adjustment(card_order.id, new_cents=12000, adjustment_type="order_modification")
    assert adjustment.difference_cents == 2000
    assert db.query(AccountTransaction).one().debit_cents == 2000
