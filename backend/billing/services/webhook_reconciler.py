"""
Reconciliation of Efí PIX payment notifications.

This is the only path by which an external payment confirmation changes
billing state. Marking the invoice paid is a conditional update, so duplicate
or concurrent deliveries for one txid extend the subscription exactly once.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from billing.constants import GATEWAY_EFI, PIX_SETTLED_STATUSES
from billing.exceptions import (
    ConfigurationError,
    InvalidStateError,
    MalformedWebhookError,
    WebhookSignatureError,
)
from billing.models import BillingAuditLog, Invoice, WebhookEventLog
from billing.observability.logging import log_billing_event
from billing.observability.metrics import (
    PAYMENT_FAILURE_COUNT,
    PAYMENT_SUCCESS_COUNT,
    WEBHOOK_EVENT_COUNT,
)
from billing.services.audit import WEBHOOK_ACTOR, record_audit
from billing.services.efi_credentials import get_webhook_secret
from billing.services.invoices import mark_paid
from billing.services.subscription_lifecycle import activate_from_payment

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Efi-Signature"
SIGNATURE_PREFIX = "sha256="
PING_EVENT = "teste_webhook"

OUTCOME_APPLIED = "applied"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_IGNORED = "ignored"
OUTCOME_REJECTED = "rejected"

_LOG_STATUS_BY_OUTCOME = {
    OUTCOME_APPLIED: WebhookEventLog.Status.PROCESSED,
    OUTCOME_ALREADY_PROCESSED: WebhookEventLog.Status.PROCESSED,
    OUTCOME_NOT_FOUND: WebhookEventLog.Status.IGNORED,
    OUTCOME_IGNORED: WebhookEventLog.Status.IGNORED,
    OUTCOME_REJECTED: WebhookEventLog.Status.FAILED,
}


@dataclass(frozen=True)
class PixNotification:
    txid: str
    amount: Optional[Decimal]
    end_to_end_id: str = ""
    paid_at: Optional[datetime] = None
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def event_id(self) -> str:
        return self.end_to_end_id or self.txid


@dataclass(frozen=True)
class WebhookPayload:
    is_ping: bool
    notifications: List[PixNotification]


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str
    txid: str
    invoice_id: Optional[str] = None
    detail: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "outcome": self.outcome,
            "invoice_id": self.invoice_id,
            "detail": self.detail,
        }


def verify_signature(
    body: bytes,
    *,
    signature_header: Optional[str] = None,
    query_secret: Optional[str] = None,
    secret: Optional[str] = None,
) -> None:
    """Authenticate a notification.

    Accepts either ``X-Efi-Signature: sha256=<hex HMAC of the raw body>`` or the
    ``?hmac=<secret>`` query parameter appended to the registered webhook URL.
    """
    secret = secret if secret is not None else get_webhook_secret()
    if not secret:
        raise ConfigurationError("EFI_WEBHOOK_SECRET is not configured.")

    if signature_header:
        provided = signature_header.strip()
        if provided.lower().startswith(SIGNATURE_PREFIX):
            provided = provided[len(SIGNATURE_PREFIX):]
        expected = hmac.new(secret.encode("utf-8"), body or b"", hashlib.sha256).hexdigest()
        if hmac.compare_digest(expected, provided.lower()):
            return
        raise WebhookSignatureError("Webhook signature mismatch.")

    if query_secret:
        if hmac.compare_digest(secret.encode("utf-8"), query_secret.encode("utf-8")):
            return
        raise WebhookSignatureError("Webhook secret mismatch.")

    raise WebhookSignatureError("Webhook signature missing.")


def payload_hash(body: bytes) -> str:
    return hashlib.sha256(body or b"").hexdigest()


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def parse_payload(body: bytes) -> WebhookPayload:
    """Decode a webhook body into notifications. Raises ``MalformedWebhookError``."""
    try:
        data = json.loads((body or b"").decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedWebhookError("Webhook body is not valid JSON.") from exc
    if not isinstance(data, dict):
        raise MalformedWebhookError("Webhook body must be a JSON object.")

    if data.get("evento") == PING_EVENT and "pix" not in data:
        return WebhookPayload(is_ping=True, notifications=[])

    entries = data.get("pix")
    if not isinstance(entries, list):
        raise MalformedWebhookError("Webhook body has no 'pix' list.")

    notifications = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("txid"):
            raise MalformedWebhookError("Every 'pix' entry needs a txid.")
        paid_at = None
        if entry.get("horario"):
            paid_at = parse_datetime(str(entry["horario"]))
        notifications.append(
            PixNotification(
                txid=str(entry["txid"]),
                amount=_parse_amount(entry.get("valor")),
                end_to_end_id=str(entry.get("endToEndId") or ""),
                paid_at=paid_at,
                status=entry.get("status"),
                raw=entry,
            )
        )
    return WebhookPayload(is_ping=False, notifications=notifications)


def _reject(invoice: Invoice, *, txid: str, amount: Optional[Decimal], end_to_end_id: str, reason: str) -> ReconcileResult:
    record_audit(
        BillingAuditLog.Action.PAYMENT_REJECTED,
        tenant=invoice.tenant,
        actor_type=BillingAuditLog.ActorType.WEBHOOK,
        actor=WEBHOOK_ACTOR,
        meta={
            "invoice_id": invoice.pk,
            "txid": txid,
            "amount": amount,
            "invoice_amount": invoice.amount,
            "invoice_status": invoice.status,
            "end_to_end_id": end_to_end_id,
            "reason": reason,
        },
    )
    PAYMENT_FAILURE_COUNT.labels(gateway=GATEWAY_EFI, reason=reason).inc()
    logger.warning("Rejected PIX payment txid=%s for invoice %s: %s", txid, invoice.pk, reason)
    return ReconcileResult(OUTCOME_REJECTED, txid, str(invoice.pk), reason)


def _find_invoice(txid: str) -> Optional[Invoice]:
    return Invoice.objects.select_related("tenant").filter(gateway_charge_id=txid).first()


def reconcile_pix_payment(
    txid: str,
    amount: Optional[Decimal],
    end_to_end_id: str = "",
    *,
    status: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> ReconcileResult:
    """Apply one settled PIX payment to its invoice and subscription."""
    if status and str(status).upper() not in PIX_SETTLED_STATUSES:
        return ReconcileResult(OUTCOME_IGNORED, txid, detail=f"status {status} is not a settlement")

    invoice = _find_invoice(txid)
    if invoice is None:
        logger.info("No invoice matches PIX txid %s; dropping notification.", txid)
        return ReconcileResult(OUTCOME_NOT_FOUND, txid, detail="no invoice for txid")

    if invoice.status == Invoice.Status.PAID:
        return ReconcileResult(OUTCOME_ALREADY_PROCESSED, txid, str(invoice.pk), "invoice already paid")

    if invoice.status != Invoice.Status.PENDING:
        return _reject(invoice, txid=txid, amount=amount, end_to_end_id=end_to_end_id,
                       reason=f"invoice_{invoice.status}")
    if amount is None or amount < invoice.amount:
        return _reject(invoice, txid=txid, amount=amount, end_to_end_id=end_to_end_id, reason="amount_below_invoice")

    now = timezone.now()
    try:
        with transaction.atomic():
            paid = mark_paid(invoice.pk, paid_amount=amount, end_to_end_id=end_to_end_id, paid_at=paid_at or now)
            result = activate_from_payment(paid, now=now)
            record_audit(
                BillingAuditLog.Action.PAYMENT_RECEIVED,
                tenant=paid.tenant,
                actor_type=BillingAuditLog.ActorType.WEBHOOK,
                actor=WEBHOOK_ACTOR,
                meta={
                    "invoice_id": paid.pk,
                    "txid": txid,
                    "amount": amount,
                    "end_to_end_id": end_to_end_id,
                    "previous_status": result.previous_status,
                    "current_period_end": result.subscription.current_period_end,
                },
            )
            tenant_id = str(paid.tenant_id)
            transaction.on_commit(
                lambda: _after_payment_committed(tenant_id=tenant_id, txid=txid, invoice_id=str(paid.pk))
            )
    except InvalidStateError:
        current = Invoice.objects.filter(pk=invoice.pk).values_list("status", flat=True).first()
        if current == Invoice.Status.PAID:
            return ReconcileResult(OUTCOME_ALREADY_PROCESSED, txid, str(invoice.pk), "invoice already paid")
        raise

    return ReconcileResult(OUTCOME_APPLIED, txid, str(invoice.pk), "payment applied")


def _after_payment_committed(*, tenant_id: str, txid: str, invoice_id: str) -> None:
    PAYMENT_SUCCESS_COUNT.labels(gateway=GATEWAY_EFI).inc()
    log_billing_event(
        message="PIX payment reconciled",
        tenant_id=tenant_id,
        actor=WEBHOOK_ACTOR,
        extra={"txid": txid, "invoice_id": invoice_id},
    )


def _record_event_receipt(notification: PixNotification, body_hash: str) -> WebhookEventLog:
    log_entry, created = WebhookEventLog.objects.get_or_create(
        event_id=notification.event_id,
        defaults={"txid": notification.txid, "payload_hash": body_hash},
    )
    if not created:
        WebhookEventLog.objects.filter(pk=log_entry.pk).update(delivery_count=log_entry.delivery_count + 1)
    return log_entry


def handle_notification(notification: PixNotification, *, body_hash: str = "") -> ReconcileResult:
    """Reconcile one notification and keep its receipt log up to date."""
    log_entry = _record_event_receipt(notification, body_hash)
    try:
        result = reconcile_pix_payment(
            notification.txid,
            notification.amount,
            notification.end_to_end_id,
            status=notification.status,
            paid_at=notification.paid_at,
        )
    except Exception as exc:
        WebhookEventLog.objects.filter(pk=log_entry.pk).update(
            status=WebhookEventLog.Status.FAILED,
            detail=str(exc)[:1000],
            processed_at=timezone.now(),
        )
        raise

    WebhookEventLog.objects.filter(pk=log_entry.pk).update(
        status=_LOG_STATUS_BY_OUTCOME[result.outcome],
        detail=f"{result.outcome}: {result.detail}"[:1000],
        processed_at=timezone.now(),
    )
    WEBHOOK_EVENT_COUNT.labels(outcome=result.outcome).inc()
    return result


__all__ = [
    "OUTCOME_ALREADY_PROCESSED",
    "OUTCOME_APPLIED",
    "OUTCOME_IGNORED",
    "OUTCOME_NOT_FOUND",
    "OUTCOME_REJECTED",
    "PixNotification",
    "ReconcileResult",
    "SIGNATURE_HEADER",
    "WebhookPayload",
    "handle_notification",
    "parse_payload",
    "payload_hash",
    "reconcile_pix_payment",
    "verify_signature",
]
