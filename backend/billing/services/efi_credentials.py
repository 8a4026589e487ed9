"""
Credentials and HTTP transport for the Efí PIX API.

Configuration comes from Django settings (populated from the environment) and
is validated once when it is loaded. The transport is a ``requests.Session``
which, in production, presents the client certificate extracted from the
base64 PEM bundle (mutual TLS). A production transport without a usable
certificate is never built.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import requests
from django.conf import settings

from billing.constants import (
    DEFAULT_CHARGE_EXPIRY_SECONDS,
    EFI_ENVIRONMENT_PRODUCTION,
    EFI_ENVIRONMENT_SANDBOX,
    EFI_ENVIRONMENTS,
    EFI_PRODUCTION_BASE_URL,
    EFI_SANDBOX_BASE_URL,
    SETTING_EFI_ENVIRONMENT,
)
from billing.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_CERTIFICATE_RE = re.compile(r"-----BEGIN CERTIFICATE-----[\s\S]*?-----END CERTIFICATE-----")
_PRIVATE_KEY_RE = re.compile(
    r"-----BEGIN (?:RSA |EC )?PRIVATE KEY-----[\s\S]*?-----END (?:RSA |EC )?PRIVATE KEY-----"
)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class EfiConfig:
    client_id: str
    client_secret: str
    pix_key: str = ""
    certificate_b64: str = ""
    environment: str = EFI_ENVIRONMENT_SANDBOX
    timeout: float = 15.0
    charge_expiry_seconds: int = DEFAULT_CHARGE_EXPIRY_SECONDS
    webhook_secret: str = field(default="", repr=False)

    def __post_init__(self):
        self.validate()

    def __repr__(self):
        return f"EfiConfig(client_id={self.client_id!r}, environment={self.environment!r})"

    @property
    def is_production(self) -> bool:
        return self.environment == EFI_ENVIRONMENT_PRODUCTION

    @property
    def base_url(self) -> str:
        return EFI_PRODUCTION_BASE_URL if self.is_production else EFI_SANDBOX_BASE_URL

    @property
    def has_certificate(self) -> bool:
        return bool(self.certificate_b64 and self.certificate_b64.strip())

    def validate(self) -> None:
        missing = [name for name in ("client_id", "client_secret") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                "Efí credentials are not configured.",
                details={"missing": missing},
            )
        if self.environment not in EFI_ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown Efí environment '{self.environment}'.",
                details={"environment": self.environment},
            )
        if self.timeout <= 0:
            raise ConfigurationError("Efí timeout must be positive.", details={"timeout": self.timeout})

    def require_pix_key(self) -> str:
        if not self.pix_key:
            raise ConfigurationError("Efí PIX key is not configured.", details={"missing": ["pix_key"]})
        return self.pix_key

    @classmethod
    def from_settings(cls, *, environment: Optional[str] = None) -> "EfiConfig":
        """Load and validate the configuration from Django settings.

        The ``efi_environment`` platform setting, when present, takes precedence
        over ``settings.EFI_ENVIRONMENT``.
        """
        if environment is None:
            environment = _resolve_environment()
        return cls(
            client_id=getattr(settings, "EFI_CLIENT_ID", "") or "",
            client_secret=getattr(settings, "EFI_CLIENT_SECRET", "") or "",
            pix_key=getattr(settings, "EFI_PIX_KEY", "") or "",
            certificate_b64=getattr(settings, "EFI_CERT_B64", "") or "",
            environment=(environment or EFI_ENVIRONMENT_SANDBOX).strip().lower(),
            timeout=float(getattr(settings, "EFI_TIMEOUT_SECONDS", 15) or 15),
            charge_expiry_seconds=int(
                getattr(settings, "EFI_CHARGE_EXPIRY_SECONDS", DEFAULT_CHARGE_EXPIRY_SECONDS)
                or DEFAULT_CHARGE_EXPIRY_SECONDS
            ),
            webhook_secret=getattr(settings, "EFI_WEBHOOK_SECRET", "") or "",
        )


def _resolve_environment() -> str:
    from billing.models import PlatformSetting

    default = getattr(settings, "EFI_ENVIRONMENT", EFI_ENVIRONMENT_SANDBOX) or EFI_ENVIRONMENT_SANDBOX
    return PlatformSetting.get_value(SETTING_EFI_ENVIRONMENT, default)


def get_webhook_secret() -> str:
    """Shared secret used to authenticate provider notifications."""
    return getattr(settings, "EFI_WEBHOOK_SECRET", "") or ""


def extract_pem_bundle(certificate_b64: str) -> Tuple[str, str]:
    """Return ``(certificate_chain_pem, private_key_pem)`` from a base64 PEM bundle."""
    cleaned = _WHITESPACE_RE.sub("", certificate_b64 or "")
    if not cleaned:
        raise ConfigurationError("certificate could not be parsed: empty bundle")
    try:
        content = base64.b64decode(cleaned, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"certificate could not be parsed: {exc}") from exc

    certificates = _CERTIFICATE_RE.findall(content)
    if not certificates:
        raise ConfigurationError("certificate could not be parsed: no certificate block found")
    key_match = _PRIVATE_KEY_RE.search(content)
    if not key_match:
        raise ConfigurationError("certificate could not be parsed: no private key block found")

    logger.debug("Extracted %s certificate(s) and a private key from the Efí bundle.", len(certificates))
    return "\n".join(certificates), key_match.group(0)


class PixTransport:
    """HTTP session bound to one provider environment, with an optional client certificate."""

    def __init__(self, *, base_url: str, session: requests.Session, timeout: float,
                 temp_paths: Optional[List[str]] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self._temp_paths = list(temp_paths or [])

    @property
    def uses_client_certificate(self) -> bool:
        return bool(self.session.cert)

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def close(self) -> None:
        self.session.close()
        for path in self._temp_paths:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        self._temp_paths = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def _write_temp_pem(content: str, suffix: str) -> str:
    handle, path = tempfile.mkstemp(prefix="efi-", suffix=suffix)
    with os.fdopen(handle, "w") as stream:
        stream.write(content)
    os.chmod(path, 0o600)
    return path


def build_transport(config: EfiConfig) -> PixTransport:
    """Build the transport for ``config``.

    Sandbox never presents a certificate. Production requires one and fails
    with ``ConfigurationError`` when it is missing or unparseable.
    """
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})

    if not config.is_production:
        if config.has_certificate:
            logger.debug("Sandbox Efí transport ignores the configured client certificate.")
        return PixTransport(base_url=config.base_url, session=session, timeout=config.timeout)

    if not config.has_certificate:
        session.close()
        raise ConfigurationError(
            "A client certificate is required for the production Efí environment.",
            details={"environment": config.environment},
        )

    try:
        cert_pem, key_pem = extract_pem_bundle(config.certificate_b64)
    except ConfigurationError:
        session.close()
        raise

    cert_path = _write_temp_pem(cert_pem, ".crt.pem")
    key_path = _write_temp_pem(key_pem, ".key.pem")
    session.cert = (cert_path, key_path)
    logger.info("Built mutual TLS transport for Efí %s.", config.environment)
    return PixTransport(
        base_url=config.base_url,
        session=session,
        timeout=config.timeout,
        temp_paths=[cert_path, key_path],
    )


__all__ = [
    "EfiConfig",
    "PixTransport",
    "build_transport",
    "extract_pem_bundle",
    "get_webhook_secret",
]
