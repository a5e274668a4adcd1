"""Post-settlement adjustment classification and ledger arithmetic"""

from credit_ledger.domain.exceptions import ValidationError
from credit_ledger.domain.models import AdjustmentClassification
from credit_ledger.utils.money import format_usd

ADJUSTMENT_TYPES = (
    "additional_payment",
    "partial_refund",
    "full_refund",
    "credit_memo_issued",
    "credit_memo_applied",
    "order_modification",
)

# Adjustments that leave the customer owing more are debits on their account
DEBIT_ADJUSTMENTS = ("additional_payment", "order_modification")


def classify_adjustment(original_cents: int, new_cents: int) -> AdjustmentClassification:
    """Sign of (new - original) selects the adjustment; the difference is returned unsigned"""
    difference = new_cents - original_cents

    if difference > 0:
        return AdjustmentClassification(difference_cents=difference, adjustment_type="additional_payment")
    elif difference < 0:
        return AdjustmentClassification(difference_cents=abs(difference), adjustment_type="partial_refund")
    return AdjustmentClassification(difference_cents=0, adjustment_type="no_change")


def check_direction(adjustment_type: str, classification: AdjustmentClassification) -> None:
    """An explicit type must agree with the direction of the amount change"""
    if adjustment_type in DEBIT_ADJUSTMENTS and classification.adjustment_type != "additional_payment":
        raise ValidationError(f"{adjustment_type} requires the new amount to exceed the original")
    if adjustment_type in ("partial_refund", "full_refund") and classification.adjustment_type != "partial_refund":
        raise ValidationError(f"{adjustment_type} requires the new amount to be below the original")


def describe_adjustment(
    adjustment_type: str,
    difference_cents: int,
    adjustment_number: str,
    payment_method: str | None = None,
) -> str:
    """Templated activity text for an adjustment"""
    amount = format_usd(difference_cents)

    if adjustment_type == "additional_payment":
        if payment_method == "payment_link":
            return f"Payment link sent for additional payment of {amount} ({adjustment_number})"
        return f"Additional payment of {amount} collected via {payment_method or 'manual'} ({adjustment_number})"
    elif adjustment_type == "partial_refund":
        return f"Partial refund of {amount} processed ({adjustment_number})"
    elif adjustment_type == "full_refund":
        return f"Full refund of {amount} processed ({adjustment_number})"
    elif adjustment_type == "credit_memo_issued":
        return f"Credit memo of {amount} issued ({adjustment_number})"
    elif adjustment_type == "credit_memo_applied":
        return f"Credit memo of {amount} applied ({adjustment_number})"
    elif adjustment_type == "order_modification":
        return f"Order modified - amount changed by {amount} ({adjustment_number})"
    return f"Payment adjustment of {amount} ({adjustment_number})"


def entry_type_for(adjustment_type: str) -> str:
    """Account ledger side for an adjustment: debit or credit"""
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError(f"Unknown adjustment type: {adjustment_type}")
    return "debit" if adjustment_type in DEBIT_ADJUSTMENTS else "credit"


def next_running_balance(current_balance_cents: int, transaction_type: str, amount_cents: int) -> int:
    """Debits increase what the customer owes; credits decrease it"""
    if transaction_type == "debit":
        return current_balance_cents + amount_cents
    elif transaction_type == "credit":
        return current_balance_cents - amount_cents
    raise ValidationError(f"Unknown transaction type: {transaction_type}")


def memo_status(amount_cents: int, balance_cents: int) -> str:
    """issued -> partially_applied -> fully_applied as the balance drains"""
    if balance_cents <= 0:
        return "fully_applied"
    elif balance_cents < amount_cents:
        return "partially_applied"
    return "issued"


def format_document_number(prefix: str, year: int, value: int) -> str:
    """e.g. INV-2026000042"""
    return f"{prefix}-{year}{value:06d}"
