"""Prometheus metrics helpers for the billing domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

BILLING_REQUEST_COUNT = Counter(
    "billing_request_total",
    "Number of billing API requests",
    labelnames=("endpoint", "method", "status"),
)

BILLING_REQUEST_LATENCY = Histogram(
    "billing_request_duration_seconds",
    "Latency of billing API requests",
    labelnames=("endpoint", "method"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

PROVIDER_CALL_LATENCY = Histogram(
    "billing_provider_call_duration_seconds",
    "Latency of calls to the PIX provider",
    labelnames=("operation", "outcome"),
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 15),
)

CHARGE_CREATED_COUNT = Counter(
    "billing_pix_charge_created_total",
    "PIX charges created at the provider",
    labelnames=("environment",),
)

PAYMENT_SUCCESS_COUNT = Counter(
    "billing_payment_success_total",
    "Payments reconciled into a paid invoice",
    labelnames=("gateway",),
)

PAYMENT_FAILURE_COUNT = Counter(
    "billing_payment_failure_total",
    "Payment notifications that could not be applied",
    labelnames=("gateway", "reason"),
)

WEBHOOK_EVENT_COUNT = Counter(
    "billing_webhook_event_total",
    "Provider webhook notifications by reconciliation outcome",
    labelnames=("outcome",),
)

SUBSCRIPTION_TRANSITION_COUNT = Counter(
    "billing_subscription_transition_total",
    "Subscription status transitions",
    labelnames=("from_status", "to_status"),
)
