from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from billing.exceptions import InvalidStateError, NotFoundError
from billing.models import BillingAuditLog, Invoice
from billing.services import invoices


@pytest.mark.django_db
def test_generate_invoice_from_plan_price_snapshots_plan(tenant, plan, settings):
    settings.BILLING_INVOICE_DUE_DAYS = 5

    invoice = invoices.generate_invoice(tenant, plan=plan, billing_cycle="semiannual", actor="owner")

    assert invoice.status == Invoice.Status.PENDING
    assert invoice.amount == Decimal("1079.46")
    assert invoice.meta == {"plan_id": str(plan.pk), "plan_name": "Pro", "billing_cycle": "semiannual"}
    assert invoice.gateway_charge_id is None
    assert timedelta(days=4, hours=23) < invoice.due_at - timezone.now() <= timedelta(days=5)
    entry = BillingAuditLog.objects.get(action=BillingAuditLog.Action.GENERATE_INVOICE)
    assert entry.actor == "owner"
    assert entry.meta["invoice_id"] == str(invoice.pk)
    assert entry.meta["amount"] == "1079.46"


@pytest.mark.django_db
def test_generate_invoice_with_explicit_amount_is_quantized(tenant):
    invoice = invoices.generate_invoice(tenant, amount="49.999")

    assert invoice.amount == Decimal("50.00")
    assert invoice.meta["plan_id"] is None


@pytest.mark.django_db
def test_generate_invoice_links_existing_subscription(tenant, make_subscription):
    subscription = make_subscription()

    invoice = invoices.generate_invoice(tenant, amount="10")

    assert invoice.subscription_id == subscription.pk


@pytest.mark.django_db
@pytest.mark.parametrize("kwargs", [{}, {"amount": "0"}, {"amount": "-5"}, {"amount": "10", "billing_cycle": "weekly"}])
def test_generate_invoice_rejects_invalid_input(tenant, kwargs):
    with pytest.raises(ValueError):
        invoices.generate_invoice(tenant, **kwargs)

    assert not Invoice.objects.exists()


@pytest.mark.django_db
def test_attach_charge_records_txid_once(pending_invoice):
    invoice = invoices.attach_charge(pending_invoice.pk, txid="TX1", location_id="9", payment_code="000201")

    assert invoice.gateway_charge_id == "TX1"
    assert invoice.gateway_location_id == "9"
    assert invoice.pix_copy_paste == "000201"

    with pytest.raises(InvalidStateError):
        invoices.attach_charge(pending_invoice.pk, txid="TX2")


@pytest.mark.django_db
def test_attach_charge_same_txid_fills_only_blank_fields(pending_invoice):
    invoices.attach_charge(pending_invoice.pk, txid="TX1", location_id="9", payment_code="first")

    invoice = invoices.attach_charge(
        pending_invoice.pk,
        txid="TX1",
        payment_code="second",
        payment_code_image="data:image/png;base64,AAA",
    )

    assert invoice.pix_copy_paste == "first"
    assert invoice.pix_qrcode == "data:image/png;base64,AAA"


@pytest.mark.django_db
def test_attach_charge_rejects_txid_used_by_another_invoice(tenant, pending_invoice):
    other = invoices.generate_invoice(tenant, amount="10")
    invoices.attach_charge(other.pk, txid="TX1")

    with pytest.raises(InvalidStateError):
        invoices.attach_charge(pending_invoice.pk, txid="TX1")


@pytest.mark.django_db
def test_attach_charge_to_non_pending_invoice(pending_invoice):
    invoices.mark_canceled(pending_invoice.pk, actor="owner")

    with pytest.raises(InvalidStateError):
        invoices.attach_charge(pending_invoice.pk, txid="TX1")


@pytest.mark.django_db
def test_mark_paid_happens_once(pending_invoice):
    invoice = invoices.mark_paid(pending_invoice.pk, paid_amount=Decimal("199.90"), end_to_end_id="E2E1")

    assert invoice.status == Invoice.Status.PAID
    assert invoice.paid_amount == Decimal("199.90")
    assert invoice.end_to_end_id == "E2E1"
    assert invoice.paid_at is not None

    with pytest.raises(InvalidStateError) as exc:
        invoices.mark_paid(pending_invoice.pk, paid_amount=Decimal("199.90"))
    assert exc.value.details["status"] == Invoice.Status.PAID


@pytest.mark.django_db
def test_mark_paid_unknown_invoice():
    import uuid

    with pytest.raises(NotFoundError):
        invoices.mark_paid(uuid.uuid4())


@pytest.mark.django_db
def test_expired_invoice_cannot_be_paid(pending_invoice):
    invoices.mark_expired(pending_invoice.pk)

    with pytest.raises(InvalidStateError):
        invoices.mark_paid(pending_invoice.pk)
    assert BillingAuditLog.objects.filter(action=BillingAuditLog.Action.INVOICE_EXPIRED).count() == 1


@pytest.mark.django_db
def test_mark_refunded_only_from_paid(pending_invoice):
    with pytest.raises(InvalidStateError):
        invoices.mark_refunded(pending_invoice.pk)

    invoices.mark_paid(pending_invoice.pk, paid_amount="199.90")
    invoice = invoices.mark_refunded(pending_invoice.pk, actor="owner", reason="duplicate")

    assert invoice.status == Invoice.Status.REFUNDED
    entry = BillingAuditLog.objects.get(action=BillingAuditLog.Action.INVOICE_REFUNDED)
    assert entry.meta["reason"] == "duplicate"


@pytest.mark.django_db
def test_expire_overdue_invoices_only_touches_overdue_pending(tenant):
    overdue = invoices.generate_invoice(tenant, amount="10", due_in=timedelta(days=-1))
    current = invoices.generate_invoice(tenant, amount="10")
    paid = invoices.generate_invoice(tenant, amount="10", due_in=timedelta(days=-1))
    invoices.mark_paid(paid.pk, paid_amount="10")

    assert invoices.expire_overdue_invoices() == 1

    assert Invoice.objects.get(pk=overdue.pk).status == Invoice.Status.EXPIRED
    assert Invoice.objects.get(pk=current.pk).status == Invoice.Status.PENDING
    assert Invoice.objects.get(pk=paid.pk).status == Invoice.Status.PAID


@pytest.mark.django_db
def test_get_invoice_is_scoped_to_tenant(pending_invoice, owner):
    from tenants.models import Tenant

    other_tenant = Tenant.objects.create(name="Outra Loja", slug="outra-loja", owner=owner)

    assert invoices.get_invoice(pending_invoice.pk, tenant=pending_invoice.tenant).pk == pending_invoice.pk
    with pytest.raises(NotFoundError):
        invoices.get_invoice(pending_invoice.pk, tenant=other_tenant)


@pytest.mark.django_db
def test_invoices_and_audit_entries_cannot_be_deleted(pending_invoice):
    entry = BillingAuditLog.objects.create(tenant=pending_invoice.tenant, action="generate_invoice", actor_type="owner")

    with pytest.raises(ValidationError):
        pending_invoice.delete()
    with pytest.raises(ValidationError):
        entry.delete()
    entry.actor = "someone"
    with pytest.raises(ValidationError):
        entry.save()
