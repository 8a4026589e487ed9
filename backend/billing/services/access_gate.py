"""Back-office access decision from the locally persisted subscription status."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from billing.models import Invoice, TenantSubscription

ALLOWED_STATUSES = frozenset({TenantSubscription.Status.ACTIVE, TenantSubscription.Status.TRIALING})
NO_SUBSCRIPTION = "none"

_REASONS = {
    TenantSubscription.Status.PAST_DUE: "payment_overdue",
    TenantSubscription.Status.SUSPENDED: "subscription_suspended",
    TenantSubscription.Status.CANCELED: "subscription_canceled",
    NO_SUBSCRIPTION: "no_subscription",
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    status: str
    awaiting_payment: bool = False
    reason: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_allowed(status: Optional[str]) -> bool:
    """Only ``active`` and ``trialing`` grant access; anything else, unknown included, denies."""
    return status in ALLOWED_STATUSES


def evaluate_access(status: Optional[str], awaiting_payment: bool = False) -> AccessDecision:
    normalised = status or NO_SUBSCRIPTION
    if is_allowed(status):
        return AccessDecision(True, normalised, awaiting_payment, "")
    return AccessDecision(False, normalised, awaiting_payment, _REASONS.get(normalised, "unknown_status"))


def check_tenant_access(tenant) -> AccessDecision:
    """Decide access for ``tenant`` with two local reads and no provider call."""
    status = TenantSubscription.objects.filter(tenant=tenant).values_list("status", flat=True).first()
    awaiting_payment = Invoice.objects.filter(tenant=tenant, status=Invoice.Status.PENDING).exists()
    return evaluate_access(status, awaiting_payment)


__all__ = ["AccessDecision", "check_tenant_access", "evaluate_access", "is_allowed"]
