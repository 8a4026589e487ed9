"""Efí PIX webhook endpoint for payment confirmations."""
from __future__ import annotations

import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.exceptions import ConfigurationError, MalformedWebhookError, WebhookSignatureError
from billing.observability.metrics import BILLING_REQUEST_COUNT
from billing.services.webhook_reconciler import (
    SIGNATURE_HEADER,
    handle_notification,
    parse_payload,
    payload_hash,
    verify_signature,
)

logger = logging.getLogger(__name__)


def _reply(status_code: int, payload: dict):
    BILLING_REQUEST_COUNT.labels(endpoint="efi_webhook", method="POST", status=str(status_code)).inc()
    return JsonResponse(payload, status=status_code)


@method_decorator(csrf_exempt, name="dispatch")
class EfiWebhookView(APIView):
    """Receive Efí PIX notifications and reconcile them before answering."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        body = request.body
        try:
            verify_signature(
                body,
                signature_header=request.headers.get(SIGNATURE_HEADER),
                query_secret=request.query_params.get("hmac"),
            )
        except ConfigurationError as exc:
            logger.error("Efí webhook configuration error: %s", exc)
            return _reply(500, {"success": False, "code": exc.code, "error": "Webhook is not configured."})
        except WebhookSignatureError as exc:
            logger.warning("Efí webhook authentication failed: %s", exc)
            return _reply(401, {"success": False, "code": exc.code, "error": "Invalid signature."})

        try:
            payload = parse_payload(body)
        except MalformedWebhookError as exc:
            logger.warning("Efí webhook rejected due to malformed payload: %s", exc)
            return _reply(400, {"success": False, "code": exc.code, "error": exc.message})

        if payload.is_ping:
            logger.info("Efí webhook registration ping received.")
            return _reply(200, {"success": True, "results": []})

        body_hash = payload_hash(body)
        results = [handle_notification(notification, body_hash=body_hash) for notification in payload.notifications]
        logger.info(
            "Efí webhook handled %s notification(s): %s",
            len(results),
            ", ".join(f"{result.txid}={result.outcome}" for result in results),
        )
        BILLING_REQUEST_COUNT.labels(endpoint="efi_webhook", method="POST", status="200").inc()
        return Response({"success": True, "results": [result.as_dict() for result in results]}, status=200)
