"""Accounts-receivable aging"""

from datetime import date, datetime
from typing import Iterable, Protocol, Union

from credit_ledger.domain.models import AgingBuckets
from credit_ledger.utils.date_utils import days_between


class AgedBalance(Protocol):
    created_at: Union[date, datetime]
    balance_due_cents: int


def bucket_for_age(age_days: int) -> str:
    """Half-open buckets: (..30], (30..60], (60..90], (90..)"""
    if age_days <= 30:
        return "b0_30"
    elif age_days <= 60:
        return "b31_60"
    elif age_days <= 90:
        return "b61_90"
    return "b90_plus"


def bucketize(invoices: Iterable[AgedBalance], as_of: Union[date, datetime]) -> AgingBuckets:
    """
    Group outstanding invoice balances by age since invoicing.

    Each invoice with a positive balance contributes to exactly one bucket and
    once to the total. Settled invoices are ignored. Pure: nothing is mutated.
    """
    buckets = AgingBuckets()

    for invoice in invoices:
        balance = invoice.balance_due_cents or 0
        if balance <= 0:
            continue

        age_days = days_between(invoice.created_at, as_of)
        name = bucket_for_age(age_days)
        setattr(buckets, name, getattr(buckets, name) + balance)
        buckets.total += balance

    return buckets
