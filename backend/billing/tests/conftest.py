from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import Invoice, Plan, TenantSubscription
from billing.tests.helpers import create_user
from tenants.models import Tenant, TenantMembership


@pytest.fixture
def owner(db):
    return create_user("owner")


@pytest.fixture
def tenant(owner):
    return Tenant.objects.create(name="Loja Central", slug="loja-central", owner=owner)


@pytest.fixture
def admin_member(tenant):
    user = create_user("manager")
    TenantMembership.objects.create(tenant=tenant, user=user, role=TenantMembership.ROLE_ADMIN)
    return user


@pytest.fixture
def seller(tenant):
    user = create_user("seller")
    TenantMembership.objects.create(tenant=tenant, user=user, role=TenantMembership.ROLE_SELLER)
    return user


@pytest.fixture
def plan(db):
    return Plan.objects.create(
        name="Pro",
        monthly_price=Decimal("199.90"),
        semiannual_price=Decimal("1079.46"),
        annual_price=Decimal("1918.80"),
    )


@pytest.fixture
def owner_client(owner):
    client = APIClient()
    client.force_authenticate(user=owner)
    return client


@pytest.fixture
def pending_invoice(tenant, plan):
    return Invoice.objects.create(
        tenant=tenant,
        amount=Decimal("199.90"),
        due_at=timezone.now() + timedelta(days=3),
        meta={"plan_id": str(plan.pk), "plan_name": plan.name, "billing_cycle": "monthly"},
    )


@pytest.fixture
def charged_invoice(pending_invoice):
    Invoice.objects.filter(pk=pending_invoice.pk).update(gateway_charge_id="TX123", gateway_location_id="77")
    pending_invoice.refresh_from_db()
    return pending_invoice


@pytest.fixture
def make_subscription(tenant, plan):
    def _make(status=TenantSubscription.Status.ACTIVE, *, days_left=10, auto_renew=True, billing_cycle="monthly"):
        now = timezone.now()
        return TenantSubscription.objects.create(
            tenant=tenant,
            plan=plan,
            billing_cycle=billing_cycle,
            status=status,
            current_period_start=now - timedelta(days=30),
            current_period_end=now + timedelta(days=days_left),
            auto_renew=auto_renew,
        )

    return _make


@pytest.fixture
def efi_settings(settings):
    settings.EFI_CLIENT_ID = "client-id"
    settings.EFI_CLIENT_SECRET = "client-secret"
    settings.EFI_PIX_KEY = "pix@example.com"
    settings.EFI_CERT_B64 = ""
    settings.EFI_ENVIRONMENT = "sandbox"
    settings.EFI_WEBHOOK_SECRET = "webhook-secret"
    return settings
