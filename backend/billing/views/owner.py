"""Owner billing console: a single POST endpoint dispatching on ``action``."""
from __future__ import annotations

import logging
import time

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.exceptions import (
    AuthenticationError,
    BillingError,
    ConfigurationError,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    ProviderError,
)
from billing.observability.logging import log_billing_event
from billing.observability.metrics import BILLING_REQUEST_COUNT, BILLING_REQUEST_LATENCY
from billing.permissions import BillingPermissionLevel, check_tenant_billing_permission
from billing.serializers import (
    ChangeCycleSerializer,
    CreateChargeSerializer,
    GenerateInvoiceSerializer,
    InvoiceReferenceSerializer,
    InvoiceSerializer,
    OwnerActionSerializer,
    ReasonSerializer,
    TenantSubscriptionSerializer,
)
from billing.services import charges, invoices, subscription_lifecycle
from billing.services.audit import actor_label
from billing.services.efi_pix import check_connection

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_409_CONFLICT,
    ConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthenticationError: status.HTTP_502_BAD_GATEWAY,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
    NetworkError: status.HTTP_504_GATEWAY_TIMEOUT,
}


class BillingMetricsMixin:
    endpoint_label: str = "billing"
    method: str = "POST"

    def _record_request(self, status_code: int) -> None:
        BILLING_REQUEST_COUNT.labels(
            endpoint=self.endpoint_label,
            method=self.method,
            status=str(status_code),
        ).inc()

    def _success_response(self, payload, *, tenant_id=None, message: str, status_code: int = status.HTTP_200_OK):
        self._record_request(status_code)
        log_billing_event(message=message, tenant_id=tenant_id, actor=self._actor())
        return Response({"success": True, **payload}, status=status_code)

    def _error_response(self, *, status_code: int, code: str, message: str, details: dict | None = None,
                        tenant_id=None):
        self._record_request(status_code)
        log_billing_event(
            message=message,
            tenant_id=tenant_id,
            actor=self._actor(),
            level=logging.WARNING,
            extra={"code": code, "details": details or {}},
        )
        payload = {"success": False, "code": code, "error": message, "details": details or {}}
        return Response(payload, status=status_code)

    def _billing_error_response(self, exc: BillingError, *, tenant_id=None):
        status_code = status.HTTP_400_BAD_REQUEST
        for error_class, mapped in ERROR_STATUS.items():
            if isinstance(exc, error_class):
                status_code = mapped
                break
        return self._error_response(
            status_code=status_code,
            code=exc.code,
            message=exc.message or str(exc),
            details=exc.details,
            tenant_id=tenant_id,
        )

    def _validation_error_response(self, errors, *, tenant_id=None):
        return self._error_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="validation_error",
            message="Invalid request.",
            details=errors,
            tenant_id=tenant_id,
        )

    def _actor(self) -> str:
        request = getattr(self, "request", None)
        return actor_label(getattr(request, "user", None))


class OwnerBillingActionView(BillingMetricsMixin, APIView):
    """Execute an owner/admin billing action for one store."""

    endpoint_label = "owner_action"
    http_method_names = ["post"]

    def post(self, request, tenant_id):
        started = time.monotonic()
        tenant, _ = check_tenant_billing_permission(
            user=request.user,
            tenant_id=tenant_id,
            level=BillingPermissionLevel.MANAGE_BILLING,
        )
        tenant_key = str(tenant.pk)

        action_serializer = OwnerActionSerializer(data=request.data)
        if not action_serializer.is_valid():
            return self._validation_error_response(action_serializer.errors, tenant_id=tenant_key)
        action = action_serializer.validated_data["action"]

        handler = getattr(self, f"_handle_{action}")
        try:
            return handler(request, tenant)
        except BillingError as exc:
            logger.info("Billing action %s failed for tenant %s: %s", action, tenant_key, exc.code)
            return self._billing_error_response(exc, tenant_id=tenant_key)
        except ValueError as exc:
            return self._error_response(
                status_code=status.HTTP_400_BAD_REQUEST,
                code="validation_error",
                message=str(exc),
                tenant_id=tenant_key,
            )
        finally:
            BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).observe(
                time.monotonic() - started
            )

    def _validated(self, serializer_class, request):
        serializer = serializer_class(data=request.data)
        if not serializer.is_valid():
            return None, serializer.errors
        return serializer.validated_data, None

    def _handle_test_connection(self, request, tenant):
        check = check_connection()
        payload = {"success": check.success}
        if check.error:
            payload["error"] = check.error
        self._record_request(status.HTTP_200_OK)
        log_billing_event(
            message="Efí connection test",
            tenant_id=str(tenant.pk),
            actor=self._actor(),
            extra={"success": check.success},
        )
        return Response(payload, status=status.HTTP_200_OK)

    def _handle_generate_invoice(self, request, tenant):
        data, errors = self._validated(GenerateInvoiceSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        invoice = invoices.generate_invoice(
            tenant,
            plan=data["plan"],
            billing_cycle=data["billing_cycle"],
            amount=data.get("amount"),
            actor=self._actor(),
        )
        return self._success_response(
            {"invoice": InvoiceSerializer(invoice).data},
            tenant_id=str(tenant.pk),
            message="Invoice generated",
            status_code=status.HTTP_201_CREATED,
        )

    def _charge_payload(self, outcome):
        payload = {
            "txid": outcome.txid,
            "qr_code": outcome.qr_code or None,
            "qr_image": outcome.qr_image or None,
            "invoice_id": str(outcome.invoice.pk),
            "created": outcome.created,
        }
        if outcome.code_error:
            payload["code_error"] = outcome.code_error
        return payload

    def _handle_create_charge(self, request, tenant):
        data, errors = self._validated(CreateChargeSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        outcome = charges.create_charge_for_invoice(
            data["invoice_id"],
            tenant=tenant,
            description=data.get("description", ""),
            amount=data.get("amount"),
            actor=self._actor(),
        )
        return self._success_response(
            self._charge_payload(outcome),
            tenant_id=str(tenant.pk),
            message="PIX charge created" if outcome.created else "PIX payment code refreshed",
        )

    def _handle_retry_payment_code(self, request, tenant):
        data, errors = self._validated(InvoiceReferenceSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        outcome = charges.retry_payment_code(data["invoice_id"], tenant=tenant, actor=self._actor())
        return self._success_response(
            self._charge_payload(outcome),
            tenant_id=str(tenant.pk),
            message="PIX payment code refreshed",
        )

    def _handle_suspend_system(self, request, tenant):
        data, errors = self._validated(ReasonSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        result = subscription_lifecycle.suspend_system(tenant, reason=data.get("reason", ""), actor=self._actor())
        return self._success_response(
            {"changed": result.changed, "status": result.subscription.status},
            tenant_id=str(tenant.pk),
            message="System suspended",
        )

    def _handle_reactivate_system(self, request, tenant):
        result = subscription_lifecycle.reactivate_system(tenant, actor=self._actor())
        return self._success_response(
            {"changed": result.changed, "status": result.subscription.status},
            tenant_id=str(tenant.pk),
            message="System reactivated",
        )

    def _handle_change_cycle(self, request, tenant):
        data, errors = self._validated(ChangeCycleSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        result = subscription_lifecycle.change_cycle(
            tenant,
            data["plan"],
            data["billing_cycle"],
            actor=self._actor(),
        )
        return self._success_response(
            {"subscription": TenantSubscriptionSerializer(result.subscription).data},
            tenant_id=str(tenant.pk),
            message="Billing cycle changed",
        )

    def _handle_cancel_subscription(self, request, tenant):
        data, errors = self._validated(ReasonSerializer, request)
        if errors:
            return self._validation_error_response(errors, tenant_id=str(tenant.pk))
        result = subscription_lifecycle.cancel_subscription(
            tenant,
            reason=data.get("reason", ""),
            actor=self._actor(),
        )
        return self._success_response(
            {"changed": result.changed, "status": result.subscription.status},
            tenant_id=str(tenant.pk),
            message="Subscription canceled",
        )
