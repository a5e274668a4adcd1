"""Prometheus metrics for settlements, credit usage, gateway calls and ledger writes"""

from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_counter = Counter(
    "ledger_settlement_total",
    "Order settlement attempts",
    ["path", "outcome"],  # card | credit | zero_total | manual ; settled | rejected | failed
)

settlement_amount_histogram = Histogram(
    "ledger_settlement_amount_dollars",
    "Settled order totals",
    ["path"],
    buckets=[0, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

discount_commit_failures_counter = Counter(
    "ledger_discount_commit_failures_total",
    "Orders persisted whose discount sources could not be committed",
)

# Credit metrics
credit_review_counter = Counter(
    "ledger_credit_review_total",
    "Credit application review decisions",
    ["decision"],  # approved | rejected | expired
)

credit_usage_rejections_counter = Counter(
    "ledger_credit_usage_rejections_total",
    "Credit usage attempts rejected for exceeding the available credit",
)

penalties_accrued_counter = Counter(
    "ledger_penalties_accrued_total",
    "Overdue invoices whose late penalty was recomputed",
)

# Gateway metrics
gateway_failures_counter = Counter(
    "ledger_gateway_failures_total",
    "Failed payment gateway calls",
    ["operation"],  # charge | refund
)

# Ledger metrics
sequence_conflicts_counter = Counter(
    "ledger_sequence_conflicts_total",
    "Number allocations or ledger appends retried after a concurrent writer",
    ["sequence"],
)

adjustment_counter = Counter(
    "ledger_adjustment_total",
    "Payment adjustments recorded",
    ["adjustment_type"],
)

activity_log_failures_counter = Counter(
    "ledger_activity_log_failures_total",
    "Activity records that could not be written",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(path: str, outcome: str, total_cents: int = 0) -> None:
    """Record settlement outcome and, for settled orders, the amount distribution"""
    settlement_counter.labels(path=path, outcome=outcome).inc()
    if outcome == "settled":
        settlement_amount_histogram.labels(path=path).observe(total_cents / 100)
