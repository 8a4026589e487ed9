"""
PIX charge orchestration for invoices.

A charge is created at most once per invoice. The invoice is claimed before
the provider is called, so overlapping requests cannot both reach it, and the
txid is stored before anything else is attempted so a failure while fetching
the payment code never loses it. Fetching the code can be retried any number of times.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from django.db import transaction

from billing.exceptions import AuthenticationError, InvalidStateError, NetworkError, ProviderError
from billing.models import BillingAuditLog, Invoice
from billing.observability.metrics import CHARGE_CREATED_COUNT
from billing.services.audit import record_audit
from billing.services.efi_pix import EfiPixClient
from billing.services.invoices import (
    attach_charge,
    claim_charge,
    get_invoice,
    normalise_amount,
    release_charge_claim,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeOutcome:
    invoice: Invoice
    txid: str
    qr_code: str = ""
    qr_image: str = ""
    created: bool = False
    code_error: Optional[str] = None


def _outcome(invoice_id, *, created: bool, code_error: Optional[str]) -> ChargeOutcome:
    invoice = Invoice.objects.select_related("tenant").get(pk=invoice_id)
    return ChargeOutcome(
        invoice=invoice,
        txid=invoice.gateway_charge_id or "",
        qr_code=invoice.pix_copy_paste,
        qr_image=invoice.pix_qrcode,
        created=created,
        code_error=code_error,
    )


def _fetch_and_attach_code(client: EfiPixClient, invoice: Invoice, *, token: Optional[str]) -> Optional[str]:
    """Fetch the payment code for an invoice that already has a txid. Returns an error message on failure."""
    if not invoice.gateway_location_id:
        return "The charge has no location reference; the payment code cannot be fetched."
    try:
        code = client.fetch_payment_code(invoice.gateway_location_id, token=token)
    except (ProviderError, NetworkError, AuthenticationError) as exc:
        logger.warning(
            "Payment code fetch failed for invoice %s txid=%s: %s",
            invoice.pk,
            invoice.gateway_charge_id,
            exc.message,
        )
        return exc.message or str(exc)

    attach_charge(
        invoice.pk,
        txid=invoice.gateway_charge_id,
        payment_code=code.qr_code,
        payment_code_image=code.qr_image,
    )
    return None


def create_charge_for_invoice(
    invoice_id,
    *,
    tenant=None,
    description: str = "",
    amount: Optional[Union[Decimal, str]] = None,
    actor: str = "",
    client: Optional[EfiPixClient] = None,
) -> ChargeOutcome:
    """Create (once) the PIX charge of a pending invoice and attach its payment code."""
    invoice = get_invoice(invoice_id, tenant=tenant)
    if invoice.status != Invoice.Status.PENDING:
        raise InvalidStateError(
            f"Invoice {invoice.pk} is {invoice.status}; only pending invoices can be charged.",
            details={"invoice_id": str(invoice.pk), "status": invoice.status},
        )
    if amount is not None and normalise_amount(amount) != invoice.amount:
        raise InvalidStateError(
            "The requested amount does not match the invoice amount.",
            details={"invoice_id": str(invoice.pk), "amount": str(amount), "invoice_amount": str(invoice.amount)},
        )

    owns_client = client is None
    client = client or EfiPixClient.from_settings()
    try:
        if invoice.gateway_charge_id:
            logger.info("Invoice %s already has charge %s; refreshing payment code only.",
                        invoice.pk, invoice.gateway_charge_id)
            return _refresh_code(client, invoice, actor=actor)

        if not claim_charge(invoice.pk):
            invoice.refresh_from_db()
            if invoice.gateway_charge_id:
                return _refresh_code(client, invoice, actor=actor)
            if invoice.status != Invoice.Status.PENDING:
                raise InvalidStateError(
                    f"Invoice {invoice.pk} is {invoice.status}; only pending invoices can be charged.",
                    details={"invoice_id": str(invoice.pk), "status": invoice.status},
                )
            raise InvalidStateError(
                f"A charge for invoice {invoice.pk} is already being created.",
                details={"invoice_id": str(invoice.pk), "status": invoice.status},
            )

        try:
            token = client.authenticate()
            charge = client.create_charge(
                invoice.amount,
                description or f"Fatura {invoice.pk}",
                token=token,
            )
        except Exception:
            release_charge_claim(invoice.pk)
            raise

        with transaction.atomic():
            try:
                attach_charge(
                    invoice.pk,
                    txid=charge.txid,
                    location_id=charge.location_id,
                    payment_code=charge.pix_copy_paste,
                )
            except InvalidStateError:
                logger.error(
                    "Charge %s was created for invoice %s but could not be attached.",
                    charge.txid,
                    invoice.pk,
                )
                raise
            record_audit(
                BillingAuditLog.Action.CREATE_CHARGE,
                tenant=invoice.tenant,
                actor_type=BillingAuditLog.ActorType.OWNER,
                actor=actor,
                meta={"invoice_id": invoice.pk, "txid": charge.txid, "amount": invoice.amount},
            )
        CHARGE_CREATED_COUNT.labels(environment=client.config.environment).inc()

        invoice.refresh_from_db()
        code_error = _fetch_and_attach_code(client, invoice, token=token)
        return _outcome(invoice.pk, created=True, code_error=code_error)
    finally:
        if owns_client:
            client.close()


def _refresh_code(client: EfiPixClient, invoice: Invoice, *, actor: str) -> ChargeOutcome:
    had_code = bool(invoice.pix_qrcode)
    code_error = _fetch_and_attach_code(client, invoice, token=None)
    if code_error is None and not had_code:
        record_audit(
            BillingAuditLog.Action.ATTACH_PAYMENT_CODE,
            tenant=invoice.tenant,
            actor_type=BillingAuditLog.ActorType.OWNER,
            actor=actor,
            meta={"invoice_id": invoice.pk, "txid": invoice.gateway_charge_id},
        )
    return _outcome(invoice.pk, created=False, code_error=code_error)


def retry_payment_code(
    invoice_id,
    *,
    tenant=None,
    actor: str = "",
    client: Optional[EfiPixClient] = None,
) -> ChargeOutcome:
    """Re-fetch the payment code of an invoice whose charge already exists."""
    invoice = get_invoice(invoice_id, tenant=tenant)
    if not invoice.gateway_charge_id:
        raise InvalidStateError(
            f"Invoice {invoice.pk} has no charge yet.",
            details={"invoice_id": str(invoice.pk)},
        )
    owns_client = client is None
    client = client or EfiPixClient.from_settings()
    try:
        return _refresh_code(client, invoice, actor=actor)
    finally:
        if owns_client:
            client.close()


__all__ = ["ChargeOutcome", "create_charge_for_invoice", "retry_payment_code"]
