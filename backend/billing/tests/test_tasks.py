from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command

from billing.models import Invoice, TenantSubscription
from billing.services import invoices
from billing.tasks import enforce_subscription_expiry_task, expire_overdue_invoices_task


@pytest.mark.django_db
def test_expire_overdue_invoices_task(tenant):
    invoices.generate_invoice(tenant, amount="10", due_in=timedelta(days=-2))

    assert expire_overdue_invoices_task() == 1
    assert Invoice.objects.get().status == Invoice.Status.EXPIRED


@pytest.mark.django_db
def test_enforce_subscription_expiry_task_returns_stats(settings, make_subscription):
    settings.BILLING_PAST_DUE_GRACE_DAYS = 0
    make_subscription(days_left=-1)

    stats = enforce_subscription_expiry_task()

    assert stats == {"checked": 1, "past_due": 0, "suspended": 1, "skipped": 0}
    assert TenantSubscription.objects.get().status == TenantSubscription.Status.SUSPENDED


@pytest.mark.django_db
def test_check_subscription_expiry_command_dry_run(tenant, make_subscription):
    make_subscription(days_left=-1)
    invoices.generate_invoice(tenant, amount="10", due_in=timedelta(days=-2))
    out = StringIO()

    call_command("check_subscription_expiry", "--dry-run", "--grace-days", "2", stdout=out)

    output = out.getvalue()
    assert "DRY RUN MODE" in output
    assert "Would expire 1 overdue invoice(s)" in output
    assert "Would move 1 subscription(s) to past_due" in output
    assert TenantSubscription.objects.get().status == TenantSubscription.Status.ACTIVE
    assert Invoice.objects.get().status == Invoice.Status.PENDING


@pytest.mark.django_db
def test_check_subscription_expiry_command_applies_changes(tenant, make_subscription):
    make_subscription(days_left=-1)
    out = StringIO()

    call_command("check_subscription_expiry", "--grace-days", "0", stdout=out)

    assert "Moved 1 subscription(s) to suspended" in out.getvalue()
    assert TenantSubscription.objects.get().status == TenantSubscription.Status.SUSPENDED
