"""Efí PIX API client: authentication, immediate charges and payment codes."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from billing.constants import DEFAULT_CHARGE_EXPIRY_SECONDS
from billing.exceptions import (
    AuthenticationError,
    BillingError,
    NetworkError,
    ProviderError,
)
from billing.observability.metrics import PROVIDER_CALL_LATENCY
from billing.services.efi_credentials import EfiConfig, PixTransport, build_transport

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
_MAX_BODY_IN_ERROR = 2000


@dataclass(frozen=True)
class PixCharge:
    txid: str
    location_id: str = ""
    pix_copy_paste: str = ""
    status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class PaymentCode:
    qr_code: str = ""
    qr_image: str = ""


@dataclass(frozen=True)
class ConnectionCheck:
    success: bool
    error: Optional[str] = None


def format_amount(amount: Union[Decimal, str, int, float]) -> str:
    """Render ``amount`` as the two-decimal string the provider expects ("199.90")."""
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount '{amount}'.") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be positive, got '{amount}'.")
    return str(value.quantize(_CENT, rounding=ROUND_HALF_UP))


class EfiPixClient:
    """
    Thin client over the Efí PIX endpoints.

    Tokens are obtained per operation group and never cached between calls.
    Every request uses the transport timeout; transport failures surface as
    ``NetworkError`` and non-2xx answers as ``AuthenticationError`` or
    ``ProviderError``.
    """

    def __init__(self, transport: PixTransport, config: EfiConfig):
        self.transport = transport
        self.config = config

    @classmethod
    def from_settings(cls) -> "EfiPixClient":
        config = EfiConfig.from_settings()
        return cls(build_transport(config), config)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _request(self, operation: str, method: str, path: str, **kwargs) -> requests.Response:
        started = time.monotonic()
        outcome = "error"
        try:
            response = self.transport.session.request(
                method,
                self.transport.url(path),
                timeout=self.transport.timeout,
                **kwargs,
            )
            outcome = str(response.status_code)
            return response
        except Timeout as exc:
            logger.warning("Efí %s timed out after %ss.", operation, self.transport.timeout)
            raise NetworkError(
                f"Efí {operation} timed out after {self.transport.timeout} seconds.",
                details={"operation": operation},
            ) from exc
        except ConnectionError as exc:
            logger.warning("Efí %s connection failed: %s", operation, exc)
            raise NetworkError(
                f"Could not connect to Efí during {operation}.",
                details={"operation": operation},
            ) from exc
        except RequestException as exc:
            logger.warning("Efí %s request failed: %s", operation, exc)
            raise NetworkError(f"Efí {operation} request failed: {exc}", details={"operation": operation}) from exc
        finally:
            PROVIDER_CALL_LATENCY.labels(operation=operation, outcome=outcome).observe(time.monotonic() - started)

    @staticmethod
    def _json(response: requests.Response, operation: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Efí {operation} returned a non-JSON body.",
                status_code=response.status_code,
                body=response.text[:_MAX_BODY_IN_ERROR],
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                f"Efí {operation} returned an unexpected body.",
                status_code=response.status_code,
                body=response.text[:_MAX_BODY_IN_ERROR],
            )
        return data

    def authenticate(self) -> str:
        response = self._request(
            "authenticate",
            "POST",
            "/oauth/token",
            json={"grant_type": "client_credentials"},
            auth=(self.config.client_id, self.config.client_secret),
        )
        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Efí rejected the client credentials.",
                details={"status_code": response.status_code},
            )
        if not response.ok:
            raise AuthenticationError(
                f"Efí auth failed: {response.status_code}",
                details={"status_code": response.status_code, "provider_body": response.text[:_MAX_BODY_IN_ERROR]},
            )
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise AuthenticationError("Efí auth response did not include an access token.")
        return token

    def _bearer(self, token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token or self.authenticate()}"}

    def create_charge(
        self,
        amount: Union[Decimal, str],
        description: str = "",
        *,
        expiry_seconds: Optional[int] = None,
        token: Optional[str] = None,
    ) -> PixCharge:
        """Create an immediate PIX charge (``POST /v2/cob``)."""
        pix_key = self.config.require_pix_key()
        payload = {
            "calendario": {"expiracao": int(expiry_seconds or self.config.charge_expiry_seconds or DEFAULT_CHARGE_EXPIRY_SECONDS)},
            "valor": {"original": format_amount(amount)},
            "chave": pix_key,
            "infoAdicionais": [{"nome": "Fatura", "valor": (description or "Assinatura")[:200]}],
        }
        headers = self._bearer(token)
        response = self._request("create_charge", "POST", "/v2/cob", json=payload, headers=headers)
        if not response.ok:
            logger.error("Efí charge failed with status %s.", response.status_code)
            raise ProviderError(
                f"Efí charge failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text[:_MAX_BODY_IN_ERROR],
            )

        data = self._json(response, "create_charge")
        txid = data.get("txid")
        if not txid:
            raise ProviderError(
                "Efí accepted the charge but returned no txid.",
                status_code=response.status_code,
                body=response.text[:_MAX_BODY_IN_ERROR],
            )
        location = data.get("loc") or {}
        location_id = location.get("id") if isinstance(location, dict) else None
        return PixCharge(
            txid=str(txid),
            location_id=str(location_id) if location_id is not None else "",
            pix_copy_paste=data.get("pixCopiaECola") or "",
            status=data.get("status") or "",
            raw=data,
        )

    def fetch_payment_code(self, location_id: Union[str, int], *, token: Optional[str] = None) -> PaymentCode:
        """Fetch the copy-paste code and QR image for a charge location."""
        if location_id in (None, ""):
            raise ProviderError("Charge has no location to fetch a payment code from.")
        headers = self._bearer(token)
        response = self._request("fetch_payment_code", "GET", f"/v2/loc/{location_id}/qrcode", headers=headers)
        if not response.ok:
            raise ProviderError(
                f"Efí payment code request failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text[:_MAX_BODY_IN_ERROR],
            )
        data = self._json(response, "fetch_payment_code")
        return PaymentCode(qr_code=data.get("qrcode") or "", qr_image=data.get("imagemQrcode") or "")

    def test_connection(self) -> ConnectionCheck:
        try:
            self.authenticate()
        except BillingError as exc:
            return ConnectionCheck(success=False, error=exc.message or str(exc))
        return ConnectionCheck(success=True)


def check_connection() -> ConnectionCheck:
    """Check credentials against the configured environment, reporting configuration errors as failures."""
    try:
        client = EfiPixClient.from_settings()
    except BillingError as exc:
        return ConnectionCheck(success=False, error=exc.message or str(exc))
    with client:
        return client.test_connection()


__all__ = [
    "ConnectionCheck",
    "EfiPixClient",
    "PaymentCode",
    "PixCharge",
    "format_amount",
    "check_connection",
]
