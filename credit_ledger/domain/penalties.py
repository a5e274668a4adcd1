"""Late-payment penalty accrual for overdue credit invoices"""

from datetime import date
from decimal import Decimal

from credit_ledger.domain.models import PenaltyAccrual
from credit_ledger.utils.money import quantize_cents

DAYS_PER_PENALTY_PERIOD = 30


def calculate_penalty(
    original_cents: int,
    interest_rate: Decimal,
    due_date: date,
    as_of: date,
    amount_paid_cents: int = 0,
) -> PenaltyAccrual:
    """
    Monthly-prorated late penalty.

    penalty = original * rate% * days_overdue / 30
    balance_due = original + penalty - amount_paid

    The penalty is recomputed from the due date on every run rather than
    accumulated, so a second run on the same day yields identical figures.

    Example:
        $1000.00 at 3%/month, 45 days late -> $45.00 penalty, $1045.00 due
    """
    days_overdue = max(0, (as_of - due_date).days)

    penalty = (
        Decimal(original_cents)
        * Decimal(str(interest_rate))
        / Decimal(100)
        * Decimal(days_overdue)
        / Decimal(DAYS_PER_PENALTY_PERIOD)
    )
    penalty_cents = quantize_cents(penalty)

    return PenaltyAccrual(
        days_overdue=days_overdue,
        penalty_cents=penalty_cents,
        balance_due_cents=max(0, original_cents + penalty_cents - amount_paid_cents),
    )
