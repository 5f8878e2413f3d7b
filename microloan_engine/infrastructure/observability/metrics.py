"""Prometheus metrics for decision outcomes, routing load and disbursements"""

from decimal import Decimal
from prometheus_client import Counter, Histogram

# Decision metrics
decision_counter = Counter(
    "microloan_decision_total",
    "Total loan decisions made",
    ["outcome", "mode"],  # outcome: approved | rejected | observed; mode: automatic | manual
)

score_band_counter = Counter(
    "microloan_score_band_total",
    "Scoring results by risk band",
    ["band"],
)

# Workflow metrics
state_transition_counter = Counter(
    "microloan_state_transition_total",
    "Application status transitions",
    ["from_status", "to_status"],
)

routing_counter = Counter(
    "microloan_routing_total",
    "Routing calls by agent assignment outcome",
    ["outcome"],  # assigned | unassigned
)

# Disbursement metrics
disbursement_counter = Counter(
    "microloan_disbursement_total",
    "Disbursement attempts",
    ["outcome", "reason"],
)

disbursed_amount_histogram = Histogram(
    "microloan_disbursed_amount",
    "Principal released per disbursement",
    buckets=[500, 1000, 2500, 5000, 10000, 25000, 50000],
)

# Collaborator health
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification sink response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "microloan_notification_failures_total",
    "Notifications that could not be delivered",
    ["template"],
)

audit_failure_counter = Counter(
    "microloan_audit_failures_total",
    "Audit events that could not be written",
)


def record_decision(result: str, is_automatic: bool) -> None:
    """Record decision metrics for monitoring approval and rejection rates"""
    mode = "automatic" if is_automatic else "manual"
    decision_counter.labels(outcome=result, mode=mode).inc()


def record_disbursement(amount: Decimal) -> None:
    disbursement_counter.labels(outcome="succeeded", reason="").inc()
    disbursed_amount_histogram.observe(float(amount))


def record_disbursement_refused(reason: str) -> None:
    disbursement_counter.labels(outcome="refused", reason=reason).inc()
