"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'tapn_booking_attempts_total',
    'Booking creation attempts',
    ['flow', 'outcome']  # flow: pay_at_venue, prepaid; outcome: success, conflict, invalid, error
)

booking_transitions = Counter(
    'tapn_booking_transitions_total',
    'Booking status transitions',
    ['from_status', 'to_status']
)

request_latency = Histogram(
    'tapn_request_latency_seconds',
    'HTTP request latency',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Availability metrics
availability_checks = Counter(
    'tapn_availability_checks_total',
    'Slot availability checks',
    ['result']  # available, conflict, error
)

# Payment metrics
payment_reconciliations = Counter(
    'tapn_payment_reconciliations_total',
    'Payment confirmation callbacks',
    ['outcome']  # confirmed, duplicate, slot_taken, not_completed, failed
)

refunds = Counter(
    'tapn_refunds_total',
    'Refunds issued through the payment gateway',
    ['reason', 'result']  # result: issued, failed
)

# Rate limiting metrics
rate_limit_decisions = Counter(
    'tapn_rate_limit_decisions_total',
    'Rate limiter decisions',
    ['result']  # allowed, rejected, fail_open
)

# Slot locks
slot_locks = Counter(
    'tapn_slot_locks_total',
    'Cross-process slot lock operations',
    ['action', 'result']  # acquire: success, blocked, fail_open; release: success, expired, error
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(flow: str, outcome: str):
    """Record booking attempt. Outcome: success, conflict, invalid, error"""
    booking_attempts.labels(flow=flow, outcome=outcome).inc()


def record_transition(from_status: str, to_status: str):
    booking_transitions.labels(from_status=from_status, to_status=to_status).inc()


def record_availability_check(result: str):
    availability_checks.labels(result=result).inc()


def record_reconciliation(outcome: str):
    payment_reconciliations.labels(outcome=outcome).inc()


def record_refund(reason: str, issued: bool):
    refunds.labels(reason=reason, result="issued" if issued else "failed").inc()


def record_rate_limit(result: str):
    """Record rate limiter decision. Result: allowed, rejected, fail_open"""
    rate_limit_decisions.labels(result=result).inc()


def record_slot_lock(action: str, result: str):
    slot_locks.labels(action=action, result=result).inc()
