"""Exception hierarchy shared by the billing services and API layer."""
from __future__ import annotations

from typing import Any, Dict, Optional


class BillingError(RuntimeError):
    """Base error for billing operations."""

    code = "billing_error"
    retryable = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(BillingError):
    """Missing or invalid provider credentials or certificate. Requires an operator fix."""

    code = "configuration_error"


class AuthenticationError(BillingError):
    """The payment provider rejected the client credentials."""

    code = "authentication_error"


class ProviderError(BillingError):
    """A charge or payment-code request was rejected by the provider."""

    code = "provider_error"

    def __init__(self, message: str = "", *, status_code: Optional[int] = None, body: str = "",
                 details: Optional[Dict[str, Any]] = None):
        merged = {"status_code": status_code, "provider_body": body}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.status_code = status_code
        self.body = body


class NetworkError(BillingError):
    """Transport-level failure or timeout talking to the provider."""

    code = "network_error"
    retryable = True


class InvalidStateError(BillingError):
    """A transition was attempted from a status that does not allow it."""

    code = "invalid_state"


class NotFoundError(BillingError):
    """Unknown invoice, subscription, or webhook correlation."""

    code = "not_found"


class WebhookSignatureError(BillingError):
    """Incoming webhook could not be authenticated."""

    code = "invalid_signature"


class MalformedWebhookError(BillingError):
    """Webhook body is not a provider notification."""

    code = "malformed_payload"
