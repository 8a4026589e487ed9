"""
Invoice ledger.

Invoices move ``pending -> paid | expired | canceled`` exactly once, and a paid
invoice may later be corrected to ``refunded``. Every transition is a single
conditional UPDATE filtered on the expected status, so concurrent writers
(the webhook, the expiry job, an owner action) can never apply the same
transition twice.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from billing.constants import BILLING_CYCLE_MONTHLY, CHARGE_CLAIM_TTL_SECONDS, CYCLE_LENGTH_DAYS
from billing.exceptions import InvalidStateError, NotFoundError
from billing.models import BillingAuditLog, Invoice, Plan, TenantSubscription
from billing.services.audit import record_audit

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def normalise_amount(amount: Union[Decimal, str, int, float]) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount '{amount}'.") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid amount '{amount}'.")
    value = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValueError("Invoice amount must be greater than zero.")
    return value


def _default_due_delta() -> timedelta:
    return timedelta(days=int(getattr(settings, "BILLING_INVOICE_DUE_DAYS", 3)))


def _raise_transition_failure(invoice_id, target: str) -> None:
    current = Invoice.objects.filter(pk=invoice_id).values_list("status", flat=True).first()
    if current is None:
        raise NotFoundError(f"Invoice {invoice_id} does not exist.", details={"invoice_id": str(invoice_id)})
    raise InvalidStateError(
        f"Invoice {invoice_id} cannot become {target} from {current}.",
        details={"invoice_id": str(invoice_id), "status": current, "target": target},
    )


def get_invoice(invoice_id, *, tenant=None) -> Invoice:
    queryset = Invoice.objects.select_related("tenant", "subscription")
    if tenant is not None:
        queryset = queryset.filter(tenant=tenant)
    invoice = queryset.filter(pk=invoice_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} does not exist.", details={"invoice_id": str(invoice_id)})
    return invoice


def get_pending_invoice(tenant) -> Optional[Invoice]:
    return (
        Invoice.objects.filter(tenant=tenant, status=Invoice.Status.PENDING)
        .order_by("-created_at")
        .first()
    )


def generate_invoice(
    tenant,
    *,
    plan: Optional[Plan] = None,
    billing_cycle: str = BILLING_CYCLE_MONTHLY,
    amount: Optional[Union[Decimal, str]] = None,
    due_in: Optional[timedelta] = None,
    actor: str = "",
    actor_type: str = BillingAuditLog.ActorType.OWNER,
) -> Invoice:
    """Create a pending invoice for ``tenant``.

    When ``amount`` is omitted the plan price for ``billing_cycle`` is used.
    The plan and cycle are snapshotted in ``meta`` so a later payment applies
    what was sold, not what the catalog says at payment time.
    """
    if billing_cycle not in CYCLE_LENGTH_DAYS:
        raise ValueError(f"Unknown billing cycle '{billing_cycle}'.")
    if amount is None:
        if plan is None:
            raise ValueError("Either an amount or a plan is required to generate an invoice.")
        amount = plan.price_for(billing_cycle)
    value = normalise_amount(amount)

    now = timezone.now()
    meta = {
        "plan_id": str(plan.pk) if plan else None,
        "plan_name": plan.name if plan else None,
        "billing_cycle": billing_cycle,
    }

    with transaction.atomic():
        subscription = TenantSubscription.objects.filter(tenant=tenant).first()
        invoice = Invoice.objects.create(
            tenant=tenant,
            subscription=subscription,
            amount=value,
            due_at=now + (due_in if due_in is not None else _default_due_delta()),
            meta=meta,
        )
        record_audit(
            BillingAuditLog.Action.GENERATE_INVOICE,
            tenant=tenant,
            actor_type=actor_type,
            actor=actor,
            meta={"invoice_id": invoice.pk, "amount": value, **meta},
        )

    logger.info("Generated invoice %s for tenant %s amount=%s.", invoice.pk, tenant.pk, value)
    return invoice


def claim_charge(invoice_id, now: Optional[datetime] = None) -> bool:
    """Reserve a pending, uncharged invoice for one provider charge request.

    Returns False when another request holds a live claim or the invoice
    already has a charge. Claims older than ``CHARGE_CLAIM_TTL_SECONDS`` are
    treated as abandoned.
    """
    now = now or timezone.now()
    stale_before = now - timedelta(seconds=CHARGE_CLAIM_TTL_SECONDS)
    claimed = (
        Invoice.objects.filter(
            pk=invoice_id,
            status=Invoice.Status.PENDING,
            gateway_charge_id__isnull=True,
        )
        .filter(Q(charge_requested_at__isnull=True) | Q(charge_requested_at__lt=stale_before))
        .update(charge_requested_at=now, updated_at=now)
    )
    return bool(claimed)


def release_charge_claim(invoice_id) -> None:
    Invoice.objects.filter(pk=invoice_id, gateway_charge_id__isnull=True).update(
        charge_requested_at=None,
        updated_at=timezone.now(),
    )


def attach_charge(
    invoice_id,
    *,
    txid: str,
    location_id: str = "",
    payment_code: str = "",
    payment_code_image: str = "",
) -> Invoice:
    """Record the provider txid (and payment code when known) on a pending invoice.

    Re-attaching the same txid only fills payment-code fields that are still
    blank. A different txid, or an invoice that is no longer pending and has
    no charge, raises ``InvalidStateError``.
    """
    if not txid:
        raise ValueError("txid is required.")
    now = timezone.now()

    with transaction.atomic():
        try:
            with transaction.atomic():
                updated = Invoice.objects.filter(
                    pk=invoice_id,
                    status=Invoice.Status.PENDING,
                    gateway_charge_id__isnull=True,
                ).update(
                    gateway_charge_id=txid,
                    gateway_location_id=location_id or "",
                    pix_copy_paste=payment_code or "",
                    pix_qrcode=payment_code_image or "",
                    charge_requested_at=None,
                    updated_at=now,
                )
        except IntegrityError as exc:
            raise InvalidStateError(
                f"txid {txid} is already attached to another invoice.",
                details={"invoice_id": str(invoice_id), "txid": txid},
            ) from exc

        invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} does not exist.", details={"invoice_id": str(invoice_id)})
        if updated:
            return invoice

        if invoice.gateway_charge_id != txid:
            if invoice.gateway_charge_id:
                raise InvalidStateError(
                    f"Invoice {invoice_id} already has charge {invoice.gateway_charge_id}.",
                    details={"invoice_id": str(invoice_id), "txid": invoice.gateway_charge_id},
                )
            raise InvalidStateError(
                f"Invoice {invoice_id} is {invoice.status}; a charge cannot be attached.",
                details={"invoice_id": str(invoice_id), "status": invoice.status},
            )

        fields = []
        if location_id and not invoice.gateway_location_id:
            invoice.gateway_location_id = location_id
            fields.append("gateway_location_id")
        if payment_code and not invoice.pix_copy_paste:
            invoice.pix_copy_paste = payment_code
            fields.append("pix_copy_paste")
        if payment_code_image and not invoice.pix_qrcode:
            invoice.pix_qrcode = payment_code_image
            fields.append("pix_qrcode")
        if fields:
            invoice.save(update_fields=fields + ["updated_at"])
        return invoice


def mark_paid(
    invoice_id,
    *,
    paid_amount: Optional[Union[Decimal, str]] = None,
    end_to_end_id: str = "",
    paid_at: Optional[datetime] = None,
) -> Invoice:
    """``pending -> paid``. Raises ``InvalidStateError`` when the invoice was already settled."""
    now = paid_at or timezone.now()
    values = {
        "status": Invoice.Status.PAID,
        "paid_at": now,
        "end_to_end_id": end_to_end_id or "",
        "updated_at": timezone.now(),
    }
    if paid_amount is not None:
        values["paid_amount"] = Decimal(str(paid_amount)).quantize(_CENT, rounding=ROUND_HALF_UP)

    with transaction.atomic():
        updated = Invoice.objects.filter(pk=invoice_id, status=Invoice.Status.PENDING).update(**values)
        if not updated:
            _raise_transition_failure(invoice_id, Invoice.Status.PAID)
        return Invoice.objects.select_related("tenant", "subscription").get(pk=invoice_id)


def _close_pending(invoice_id, target: str, action: str, *, actor: str, actor_type: str, meta=None) -> Invoice:
    with transaction.atomic():
        updated = Invoice.objects.filter(pk=invoice_id, status=Invoice.Status.PENDING).update(
            status=target,
            updated_at=timezone.now(),
        )
        if not updated:
            _raise_transition_failure(invoice_id, target)
        invoice = Invoice.objects.select_related("tenant").get(pk=invoice_id)
        record_audit(
            action,
            tenant=invoice.tenant,
            actor_type=actor_type,
            actor=actor,
            meta={"invoice_id": invoice.pk, "amount": invoice.amount, **(meta or {})},
        )
    return invoice


def mark_expired(invoice_id, *, actor: str = "", actor_type: str = BillingAuditLog.ActorType.SYSTEM) -> Invoice:
    return _close_pending(
        invoice_id,
        Invoice.Status.EXPIRED,
        BillingAuditLog.Action.INVOICE_EXPIRED,
        actor=actor,
        actor_type=actor_type,
    )


def mark_canceled(invoice_id, *, actor: str = "", actor_type: str = BillingAuditLog.ActorType.OWNER,
                  reason: str = "") -> Invoice:
    return _close_pending(
        invoice_id,
        Invoice.Status.CANCELED,
        BillingAuditLog.Action.INVOICE_CANCELED,
        actor=actor,
        actor_type=actor_type,
        meta={"reason": reason} if reason else None,
    )


def mark_refunded(invoice_id, *, actor: str = "", actor_type: str = BillingAuditLog.ActorType.OWNER,
                  reason: str = "") -> Invoice:
    """Administrative correction of a paid invoice. Does not touch the subscription."""
    with transaction.atomic():
        updated = Invoice.objects.filter(pk=invoice_id, status=Invoice.Status.PAID).update(
            status=Invoice.Status.REFUNDED,
            updated_at=timezone.now(),
        )
        if not updated:
            _raise_transition_failure(invoice_id, Invoice.Status.REFUNDED)
        invoice = Invoice.objects.select_related("tenant").get(pk=invoice_id)
        record_audit(
            BillingAuditLog.Action.INVOICE_REFUNDED,
            tenant=invoice.tenant,
            actor_type=actor_type,
            actor=actor,
            meta={"invoice_id": invoice.pk, "amount": invoice.amount, "reason": reason},
        )
    return invoice


def expire_overdue_invoices(now: Optional[datetime] = None) -> int:
    """Expire every pending invoice whose due date has passed. Returns how many were expired."""
    now = now or timezone.now()
    candidate_ids = list(
        Invoice.objects.filter(status=Invoice.Status.PENDING, due_at__lt=now).values_list("pk", flat=True)
    )
    expired = 0
    for invoice_id in candidate_ids:
        try:
            mark_expired(invoice_id)
        except InvalidStateError:
            # Paid or canceled between the scan and the update.
            continue
        expired += 1
    if expired:
        logger.info("Expired %s overdue invoice(s).", expired)
    return expired


__all__ = [
    "attach_charge",
    "claim_charge",
    "expire_overdue_invoices",
    "generate_invoice",
    "get_invoice",
    "get_pending_invoice",
    "mark_canceled",
    "mark_expired",
    "mark_paid",
    "mark_refunded",
    "normalise_amount",
    "release_charge_claim",
]
