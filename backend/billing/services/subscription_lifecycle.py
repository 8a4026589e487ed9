"""
Subscription lifecycle: acquisition, cycle changes, suspension, reactivation,
activation from a confirmed payment and period-expiry enforcement.

Every status change is a compare-and-swap UPDATE filtered on the status (and
period end) the caller observed, retried a bounded number of times when a
concurrent writer got there first. Subscriptions are never deleted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.constants import BILLING_CYCLE_MONTHLY, CYCLE_LENGTH_DAYS
from billing.exceptions import InvalidStateError, NotFoundError
from billing.models import BillingAuditLog, Invoice, Plan, TenantSubscription
from billing.observability.metrics import SUBSCRIPTION_TRANSITION_COUNT
from billing.services.audit import SYSTEM_ACTOR, record_audit

logger = logging.getLogger(__name__)

MAX_TRANSITION_ATTEMPTS = 3

Status = TenantSubscription.Status


@dataclass(frozen=True)
class TransitionResult:
    subscription: TenantSubscription
    changed: bool
    previous_status: Optional[str] = None


@dataclass
class ExpiryReport:
    checked: int = 0
    past_due: List[str] = field(default_factory=list)
    suspended: List[str] = field(default_factory=list)
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "checked": self.checked,
            "past_due": len(self.past_due),
            "suspended": len(self.suspended),
            "skipped": self.skipped,
        }


def cycle_length(billing_cycle: str) -> timedelta:
    try:
        return timedelta(days=CYCLE_LENGTH_DAYS[billing_cycle])
    except KeyError:
        raise ValueError(f"Unknown billing cycle '{billing_cycle}'.") from None


def get_subscription(tenant) -> TenantSubscription:
    """Return the tenant's subscription. Never creates one."""
    subscription = TenantSubscription.objects.select_related("plan").filter(tenant=tenant).first()
    if subscription is None:
        raise NotFoundError(
            "Tenant has no subscription.",
            details={"tenant_id": str(getattr(tenant, "pk", tenant))},
        )
    return subscription


def _apply_transition(
    tenant,
    *,
    allowed: Iterable[str],
    build_updates: Callable[[TenantSubscription], Optional[Dict[str, object]]],
    operation: str,
    noop: Iterable[str] = (),
) -> TransitionResult:
    """Compare-and-swap a subscription update.

    ``build_updates`` receives the observed row and returns the fields to
    write, or ``None`` when the row is already in the desired shape. Rows in a
    ``noop`` status are returned unchanged; any other status outside
    ``allowed`` raises ``InvalidStateError``.
    """
    allowed = frozenset(allowed)
    noop = frozenset(noop)
    for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
        current = get_subscription(tenant)
        if current.status in noop:
            return TransitionResult(current, False, current.status)
        if current.status not in allowed:
            raise InvalidStateError(
                f"Cannot {operation} a subscription that is {current.status}.",
                details={"status": current.status, "operation": operation},
            )
        updates = build_updates(current)
        if updates is None:
            return TransitionResult(current, False, current.status)
        updates["updated_at"] = timezone.now()

        previous_status = current.status
        updated = TenantSubscription.objects.filter(
            pk=current.pk,
            status=previous_status,
            current_period_end=current.current_period_end,
        ).update(**updates)
        if updated:
            current.refresh_from_db()
            if current.status != previous_status:
                SUBSCRIPTION_TRANSITION_COUNT.labels(from_status=previous_status, to_status=current.status).inc()
            return TransitionResult(current, True, previous_status)
        logger.info("Subscription %s changed concurrently during %s (attempt %s).", current.pk, operation, attempt)

    raise InvalidStateError(
        f"Subscription changed concurrently; {operation} was not applied.",
        details={"operation": operation},
    )


def acquire_plan(
    tenant,
    plan: Optional[Plan],
    billing_cycle: str = BILLING_CYCLE_MONTHLY,
    *,
    trial_days: int = 0,
    now: Optional[datetime] = None,
) -> TenantSubscription:
    """Create the tenant's first subscription, ``active`` or ``trialing``."""
    now = now or timezone.now()
    length = timedelta(days=trial_days) if trial_days > 0 else cycle_length(billing_cycle)
    try:
        with transaction.atomic():
            subscription = TenantSubscription.objects.create(
                tenant=tenant,
                plan=plan,
                billing_cycle=billing_cycle,
                status=Status.TRIALING if trial_days > 0 else Status.ACTIVE,
                current_period_start=now,
                current_period_end=now + length,
                auto_renew=True,
            )
    except IntegrityError as exc:
        raise InvalidStateError(
            "Tenant already has a subscription.",
            details={"tenant_id": str(tenant.pk)},
        ) from exc
    SUBSCRIPTION_TRANSITION_COUNT.labels(from_status="none", to_status=subscription.status).inc()
    logger.info("Tenant %s acquired plan %s (%s).", tenant.pk, getattr(plan, "pk", None), billing_cycle)
    return subscription


def change_cycle(
    tenant,
    plan: Optional[Plan],
    billing_cycle: str,
    *,
    actor: str = "",
    actor_type: str = BillingAuditLog.ActorType.OWNER,
) -> TransitionResult:
    """Set plan and cycle, restarting the period end from now. Creates the subscription when missing."""
    length = cycle_length(billing_cycle)

    with transaction.atomic():
        existing = TenantSubscription.objects.filter(tenant=tenant).first()
        if existing is None:
            subscription = acquire_plan(tenant, plan, billing_cycle)
            result = TransitionResult(subscription, True, None)
            previous = {"plan_id": None, "billing_cycle": None}
        else:
            previous = {"plan_id": existing.plan_id, "billing_cycle": existing.billing_cycle}

            def build(current: TenantSubscription):
                return {
                    "plan": plan if plan is not None else current.plan,
                    "billing_cycle": billing_cycle,
                    "current_period_end": max(timezone.now() + length, current.current_period_start),
                }

            result = _apply_transition(
                tenant,
                allowed=Status.values,
                build_updates=build,
                operation="change the billing cycle of",
            )

        record_audit(
            BillingAuditLog.Action.CHANGE_BILLING_CYCLE,
            tenant=tenant,
            actor_type=actor_type,
            actor=actor,
            meta={
                "plan_id": getattr(plan, "pk", None),
                "billing_cycle": billing_cycle,
                "previous_plan_id": previous["plan_id"],
                "previous_billing_cycle": previous["billing_cycle"],
                "created": existing is None,
            },
        )
    return result


def cancel_subscription(
    tenant,
    *,
    actor: str = "",
    reason: str = "",
    actor_type: str = BillingAuditLog.ActorType.OWNER,
) -> TransitionResult:
    """Owner cancellation: access stops now and the subscription will not renew."""

    def build(current: TenantSubscription):
        if current.status == Status.SUSPENDED and current.cancel_at_period_end and not current.auto_renew:
            return None
        return {
            "status": Status.SUSPENDED,
            "auto_renew": False,
            "cancel_at_period_end": True,
            "suspended_reason": reason or "canceled_by_owner",
        }

    with transaction.atomic():
        result = _apply_transition(
            tenant,
            allowed=(Status.ACTIVE, Status.TRIALING, Status.PAST_DUE, Status.SUSPENDED),
            build_updates=build,
            operation="cancel",
        )
        if result.changed:
            record_audit(
                BillingAuditLog.Action.CANCEL_SUBSCRIPTION,
                tenant=tenant,
                actor_type=actor_type,
                actor=actor,
                meta={"previous_status": result.previous_status, "reason": reason},
            )
    return result


def suspend_system(
    tenant,
    *,
    reason: str = "",
    actor: str = "",
    actor_type: str = BillingAuditLog.ActorType.OWNER,
) -> TransitionResult:
    """Administrative suspension.

    Suspending an already suspended subscription changes nothing, but the call
    is still audited with ``changed`` set to False.
    """

    def build(current: TenantSubscription):
        return {
            "status": Status.SUSPENDED,
            "auto_renew": False,
            "suspended_reason": (reason or "Manual suspension")[:255],
        }

    with transaction.atomic():
        result = _apply_transition(
            tenant,
            allowed=(Status.TRIALING, Status.ACTIVE, Status.PAST_DUE),
            noop=(Status.SUSPENDED,),
            build_updates=build,
            operation="suspend",
        )
        record_audit(
            BillingAuditLog.Action.SUSPEND_SYSTEM,
            tenant=tenant,
            actor_type=actor_type,
            actor=actor,
            meta={
                "reason": reason or "Manual suspension",
                "previous_status": result.previous_status,
                "changed": result.changed,
            },
        )
    if result.changed:
        logger.info("Tenant %s suspended by %s.", tenant.pk, actor or actor_type)
    return result


def reactivate_system(
    tenant,
    *,
    actor: str = "",
    actor_type: str = BillingAuditLog.ActorType.OWNER,
) -> TransitionResult:
    """Administrative reactivation with a fresh period. Running subscriptions are left as they are; the call is audited either way."""

    def build(current: TenantSubscription):
        now = timezone.now()
        return {
            "status": Status.ACTIVE,
            "current_period_start": now,
            "current_period_end": now + cycle_length(current.billing_cycle),
            "auto_renew": True,
            "cancel_at_period_end": False,
            "suspended_reason": "",
        }

    with transaction.atomic():
        result = _apply_transition(
            tenant,
            allowed=(Status.SUSPENDED, Status.PAST_DUE),
            noop=(Status.ACTIVE, Status.TRIALING),
            build_updates=build,
            operation="reactivate",
        )
        record_audit(
            BillingAuditLog.Action.REACTIVATE_SYSTEM,
            tenant=tenant,
            actor_type=actor_type,
            actor=actor,
            meta={
                "previous_status": result.previous_status,
                "current_period_end": result.subscription.current_period_end,
                "changed": result.changed,
            },
        )
    return result


def _plan_from_snapshot(meta: Dict[str, object]) -> Optional[Plan]:
    plan_id = (meta or {}).get("plan_id")
    if not plan_id:
        return None
    try:
        return Plan.objects.filter(pk=plan_id).first()
    except (ValueError, TypeError):
        return None


def activate_from_payment(invoice: Invoice, *, now: Optional[datetime] = None) -> TransitionResult:
    """Grant the period paid for by ``invoice``.

    Must run in the same transaction that marked the invoice paid. Every
    payment starts a fresh window of one cycle from now, whatever the
    previous status.
    """
    now = now or timezone.now()
    meta = invoice.meta or {}
    plan = _plan_from_snapshot(meta)
    snapshot_cycle = meta.get("billing_cycle") if meta.get("billing_cycle") in CYCLE_LENGTH_DAYS else None

    tenant = invoice.tenant
    if not TenantSubscription.objects.filter(tenant=tenant).exists():
        subscription = acquire_plan(tenant, plan, snapshot_cycle or BILLING_CYCLE_MONTHLY, now=now)
        Invoice.objects.filter(pk=invoice.pk, subscription__isnull=True).update(subscription=subscription)
        return TransitionResult(subscription, True, None)

    def build(current: TenantSubscription):
        billing_cycle = snapshot_cycle or current.billing_cycle
        length = cycle_length(billing_cycle)
        updates = {
            "status": Status.ACTIVE,
            "billing_cycle": billing_cycle,
            "current_period_start": now,
            "current_period_end": now + length,
            "auto_renew": True,
            "cancel_at_period_end": False,
            "suspended_reason": "",
        }
        if plan is not None:
            updates["plan"] = plan
        return updates

    # Money received always buys access, a canceled subscription included.
    result = _apply_transition(
        tenant,
        allowed=(Status.TRIALING, Status.ACTIVE, Status.PAST_DUE, Status.SUSPENDED, Status.CANCELED),
        build_updates=build,
        operation="activate",
    )
    Invoice.objects.filter(pk=invoice.pk, subscription__isnull=True).update(subscription=result.subscription)
    logger.info(
        "Subscription %s activated by invoice %s until %s.",
        result.subscription.pk,
        invoice.pk,
        result.subscription.current_period_end,
    )
    return result


def _grace_window(grace_days: Optional[int]) -> timedelta:
    if grace_days is None:
        grace_days = int(getattr(settings, "BILLING_PAST_DUE_GRACE_DAYS", 0) or 0)
    return timedelta(days=max(grace_days, 0))


def enforce_period_expiry(
    now: Optional[datetime] = None,
    *,
    grace_days: Optional[int] = None,
    dry_run: bool = False,
) -> ExpiryReport:
    """Move subscriptions whose paid period ended to ``past_due`` or ``suspended``.

    With a grace window, auto-renewing subscriptions first become ``past_due``
    and are suspended once the window has elapsed. Without one, or when auto
    renewal is off, they are suspended directly.
    """
    now = now or timezone.now()
    grace = _grace_window(grace_days)
    report = ExpiryReport()

    candidates = TenantSubscription.objects.select_related("tenant").filter(
        status__in=(Status.ACTIVE, Status.TRIALING, Status.PAST_DUE),
        current_period_end__lt=now,
    )
    for subscription in candidates:
        report.checked += 1
        if subscription.status == Status.PAST_DUE:
            if grace and subscription.current_period_end + grace > now:
                report.skipped += 1
                continue
            target = Status.SUSPENDED
        elif grace and subscription.auto_renew:
            target = Status.PAST_DUE
        else:
            target = Status.SUSPENDED

        if dry_run:
            (report.past_due if target == Status.PAST_DUE else report.suspended).append(str(subscription.pk))
            continue

        try:
            applied = _expire_one(subscription, target, now=now, grace=grace)
        except InvalidStateError:
            applied = False
        if not applied:
            report.skipped += 1
            continue
        (report.past_due if target == Status.PAST_DUE else report.suspended).append(str(subscription.pk))

    if report.past_due or report.suspended:
        logger.info("Period expiry: %s", report.as_dict())
    return report


def _expire_one(subscription: TenantSubscription, target: str, *, now: datetime, grace: timedelta) -> bool:
    observed = subscription.status

    def build(current: TenantSubscription):
        if current.current_period_end >= now:
            # Renewed since the scan.
            return None
        if target == Status.PAST_DUE:
            return {"status": Status.PAST_DUE}
        return {"status": Status.SUSPENDED, "auto_renew": False, "suspended_reason": "period_expired"}

    with transaction.atomic():
        result = _apply_transition(
            subscription.tenant,
            allowed=(observed,),
            build_updates=build,
            operation="expire",
        )
        if not result.changed:
            return False
        if target == Status.PAST_DUE:
            action = BillingAuditLog.Action.SUBSCRIPTION_PAST_DUE
        else:
            action = BillingAuditLog.Action.SUBSCRIPTION_SUSPENDED_AUTO
        record_audit(
            action,
            tenant=subscription.tenant,
            actor_type=BillingAuditLog.ActorType.SYSTEM,
            actor=SYSTEM_ACTOR,
            meta={
                "previous_status": result.previous_status,
                "period_end": subscription.current_period_end,
                "grace_days": grace.days,
                "auto_renew": subscription.auto_renew,
            },
        )
    return True


__all__ = [
    "ExpiryReport",
    "MAX_TRANSITION_ATTEMPTS",
    "TransitionResult",
    "acquire_plan",
    "activate_from_payment",
    "cancel_subscription",
    "change_cycle",
    "cycle_length",
    "enforce_period_expiry",
    "get_subscription",
    "reactivate_system",
    "suspend_system",
]
