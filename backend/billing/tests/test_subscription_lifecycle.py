from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from billing.exceptions import InvalidStateError, NotFoundError
from billing.models import BillingAuditLog, Invoice, TenantSubscription
from billing.services import invoices, subscription_lifecycle

Status = TenantSubscription.Status


@pytest.mark.django_db
def test_acquire_plan_creates_active_subscription(tenant, plan):
    subscription = subscription_lifecycle.acquire_plan(tenant, plan, "annual")

    assert subscription.status == Status.ACTIVE
    assert subscription.current_period_end - subscription.current_period_start == timedelta(days=365)

    with pytest.raises(InvalidStateError):
        subscription_lifecycle.acquire_plan(tenant, plan)


@pytest.mark.django_db
def test_acquire_plan_with_trial(tenant, plan):
    subscription = subscription_lifecycle.acquire_plan(tenant, plan, trial_days=7)

    assert subscription.status == Status.TRIALING
    assert subscription.current_period_end - subscription.current_period_start == timedelta(days=7)


@pytest.mark.django_db
def test_get_subscription_never_creates(tenant):
    with pytest.raises(NotFoundError):
        subscription_lifecycle.get_subscription(tenant)

    assert not TenantSubscription.objects.exists()


@pytest.mark.django_db
def test_suspend_then_suspend_again_is_noop(tenant, make_subscription):
    make_subscription()

    first = subscription_lifecycle.suspend_system(tenant, reason="fraud review", actor="owner")
    second = subscription_lifecycle.suspend_system(tenant, reason="again", actor="owner")

    assert first.changed is True
    assert first.subscription.status == Status.SUSPENDED
    assert first.subscription.auto_renew is False
    assert first.subscription.suspended_reason == "fraud review"
    assert second.changed is False
    assert second.subscription.suspended_reason == "fraud review"
    entries = BillingAuditLog.objects.filter(action=BillingAuditLog.Action.SUSPEND_SYSTEM).order_by("id")
    assert [entry.meta["changed"] for entry in entries] == [True, False]
    assert entries[1].meta["previous_status"] == Status.SUSPENDED


@pytest.mark.django_db
def test_suspend_default_reason(tenant, make_subscription):
    make_subscription()

    result = subscription_lifecycle.suspend_system(tenant)

    assert result.subscription.suspended_reason == "Manual suspension"


@pytest.mark.django_db
def test_suspend_without_subscription(tenant):
    with pytest.raises(NotFoundError):
        subscription_lifecycle.suspend_system(tenant)


@pytest.mark.django_db
def test_reactivate_gives_fresh_period(tenant, make_subscription):
    make_subscription(Status.SUSPENDED, days_left=-5, auto_renew=False)

    result = subscription_lifecycle.reactivate_system(tenant, actor="owner")

    subscription = result.subscription
    assert result.changed is True
    assert subscription.status == Status.ACTIVE
    assert subscription.auto_renew is True
    assert subscription.cancel_at_period_end is False
    assert subscription.current_period_end - subscription.current_period_start == timedelta(days=30)
    assert subscription.current_period_end > timezone.now() + timedelta(days=29)


@pytest.mark.django_db
@pytest.mark.parametrize("status", [Status.ACTIVE, Status.TRIALING])
def test_reactivate_running_subscription_is_noop(tenant, make_subscription, status):
    original = make_subscription(status)

    result = subscription_lifecycle.reactivate_system(tenant)

    assert result.changed is False
    assert result.subscription.current_period_end == original.current_period_end
    entry = BillingAuditLog.objects.get()
    assert entry.action == BillingAuditLog.Action.REACTIVATE_SYSTEM
    assert entry.meta["changed"] is False


@pytest.mark.django_db
def test_canceled_subscription_cannot_be_reactivated_or_canceled(tenant, make_subscription):
    make_subscription(Status.CANCELED)

    with pytest.raises(InvalidStateError):
        subscription_lifecycle.reactivate_system(tenant)
    with pytest.raises(InvalidStateError):
        subscription_lifecycle.cancel_subscription(tenant)


@pytest.mark.django_db
def test_cancel_stops_access_and_renewal(tenant, make_subscription):
    make_subscription()

    result = subscription_lifecycle.cancel_subscription(tenant, actor="owner", reason="closing store")
    again = subscription_lifecycle.cancel_subscription(tenant, actor="owner")

    assert result.changed is True
    assert result.subscription.status == Status.SUSPENDED
    assert result.subscription.auto_renew is False
    assert result.subscription.cancel_at_period_end is True
    assert again.changed is False
    entry = BillingAuditLog.objects.get(action=BillingAuditLog.Action.CANCEL_SUBSCRIPTION)
    assert entry.meta == {"previous_status": "active", "reason": "closing store"}


@pytest.mark.django_db
def test_change_cycle_creates_missing_subscription(tenant, plan):
    result = subscription_lifecycle.change_cycle(tenant, plan, "semiannual", actor="owner")

    assert result.changed is True
    assert result.subscription.billing_cycle == "semiannual"
    assert result.subscription.status == Status.ACTIVE
    entry = BillingAuditLog.objects.get(action=BillingAuditLog.Action.CHANGE_BILLING_CYCLE)
    assert entry.meta["created"] is True


@pytest.mark.django_db
def test_change_cycle_restarts_period_end_from_now(tenant, plan, make_subscription):
    make_subscription(days_left=20)

    result = subscription_lifecycle.change_cycle(tenant, plan, "annual", actor="owner")

    expected = timezone.now() + timedelta(days=365)
    assert abs(result.subscription.current_period_end - expected) < timedelta(minutes=1)
    assert result.subscription.billing_cycle == "annual"


@pytest.mark.django_db
def test_change_cycle_rejects_unknown_cycle(tenant, plan, make_subscription):
    make_subscription()

    with pytest.raises(ValueError):
        subscription_lifecycle.change_cycle(tenant, plan, "weekly")


@pytest.mark.django_db
def test_activate_from_payment_restarts_running_period_from_now(tenant, pending_invoice, make_subscription):
    original = make_subscription(days_left=10)
    now = timezone.now()

    paid = invoices.mark_paid(pending_invoice.pk, paid_amount="199.90")
    result = subscription_lifecycle.activate_from_payment(paid, now=now)

    assert result.subscription.current_period_start == now
    assert result.subscription.current_period_end == now + timedelta(days=30)
    assert Invoice.objects.get(pk=paid.pk).subscription_id == original.pk


@pytest.mark.django_db
@pytest.mark.parametrize("status", [Status.SUSPENDED, Status.PAST_DUE, Status.CANCELED])
def test_activate_from_payment_restarts_lapsed_period(tenant, pending_invoice, make_subscription, status):
    make_subscription(status, days_left=-3, auto_renew=False)
    now = timezone.now()

    paid = invoices.mark_paid(pending_invoice.pk, paid_amount="199.90")
    result = subscription_lifecycle.activate_from_payment(paid, now=now)

    subscription = result.subscription
    assert subscription.status == Status.ACTIVE
    assert subscription.auto_renew is True
    assert subscription.current_period_start == now
    assert subscription.current_period_end == now + timedelta(days=30)


@pytest.mark.django_db
def test_activate_from_payment_applies_invoice_cycle(tenant, plan, make_subscription):
    make_subscription(days_left=1)
    invoice = invoices.generate_invoice(tenant, plan=plan, billing_cycle="annual")
    paid = invoices.mark_paid(invoice.pk, paid_amount=invoice.amount)

    result = subscription_lifecycle.activate_from_payment(paid)

    assert result.subscription.billing_cycle == "annual"
    assert result.subscription.days_until_renewal >= 365


@pytest.mark.django_db
def test_activate_from_payment_creates_first_subscription(tenant, pending_invoice):
    paid = invoices.mark_paid(pending_invoice.pk, paid_amount="199.90")

    result = subscription_lifecycle.activate_from_payment(paid)

    assert result.previous_status is None
    assert result.subscription.status == Status.ACTIVE
    assert Invoice.objects.get(pk=paid.pk).subscription_id == result.subscription.pk


@pytest.mark.django_db
def test_enforce_expiry_suspends_without_grace(tenant, make_subscription):
    subscription = make_subscription(days_left=-1)

    report = subscription_lifecycle.enforce_period_expiry(grace_days=0)

    subscription.refresh_from_db()
    assert report.as_dict() == {"checked": 1, "past_due": 0, "suspended": 1, "skipped": 0}
    assert subscription.status == Status.SUSPENDED
    assert subscription.auto_renew is False
    assert subscription.suspended_reason == "period_expired"
    entry = BillingAuditLog.objects.get(action=BillingAuditLog.Action.SUBSCRIPTION_SUSPENDED_AUTO)
    assert entry.actor == "system"
    assert entry.actor_type == BillingAuditLog.ActorType.SYSTEM


@pytest.mark.django_db
def test_enforce_expiry_with_grace_goes_past_due_first(tenant, make_subscription):
    subscription = make_subscription(days_left=-1)

    first = subscription_lifecycle.enforce_period_expiry(grace_days=3)
    subscription.refresh_from_db()
    assert subscription.status == Status.PAST_DUE
    assert first.as_dict()["past_due"] == 1

    within_grace = subscription_lifecycle.enforce_period_expiry(grace_days=3)
    subscription.refresh_from_db()
    assert subscription.status == Status.PAST_DUE
    assert within_grace.skipped == 1

    later = subscription_lifecycle.enforce_period_expiry(timezone.now() + timedelta(days=3), grace_days=3)
    subscription.refresh_from_db()
    assert subscription.status == Status.SUSPENDED
    assert later.as_dict()["suspended"] == 1


@pytest.mark.django_db
def test_enforce_expiry_without_auto_renew_suspends_directly(tenant, make_subscription):
    subscription = make_subscription(days_left=-1, auto_renew=False)

    subscription_lifecycle.enforce_period_expiry(grace_days=3)

    subscription.refresh_from_db()
    assert subscription.status == Status.SUSPENDED


@pytest.mark.django_db
def test_enforce_expiry_ignores_running_subscriptions(tenant, make_subscription):
    make_subscription(days_left=5)

    report = subscription_lifecycle.enforce_period_expiry(grace_days=0)

    assert report.checked == 0
    assert TenantSubscription.objects.get(tenant=tenant).status == Status.ACTIVE


@pytest.mark.django_db
def test_enforce_expiry_dry_run_changes_nothing(tenant, make_subscription):
    subscription = make_subscription(days_left=-1)

    report = subscription_lifecycle.enforce_period_expiry(grace_days=0, dry_run=True)

    subscription.refresh_from_db()
    assert report.suspended == [str(subscription.pk)]
    assert subscription.status == Status.ACTIVE
    assert not BillingAuditLog.objects.exists()


@pytest.mark.django_db
def test_subscription_cannot_be_deleted(make_subscription):
    subscription = make_subscription()

    with pytest.raises(ValidationError):
        subscription.delete()


@pytest.mark.django_db
def test_plan_price_for_cycle(plan):
    assert plan.price_for("monthly") == Decimal("199.90")
    assert plan.price_for("annual") == Decimal("1918.80")
