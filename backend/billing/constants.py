"""Shared billing constants."""
from __future__ import annotations

GATEWAY_EFI = "efi"
PAYMENT_METHOD_PIX = "pix"

BILLING_CYCLE_MONTHLY = "monthly"
BILLING_CYCLE_SEMIANNUAL = "semiannual"
BILLING_CYCLE_ANNUAL = "annual"

# Fixed-day approximation, not calendar-month arithmetic.
CYCLE_LENGTH_DAYS: dict[str, int] = {
    BILLING_CYCLE_MONTHLY: 30,
    BILLING_CYCLE_SEMIANNUAL: 180,
    BILLING_CYCLE_ANNUAL: 365,
}

BILLING_CYCLE_CHOICES = [
    (BILLING_CYCLE_MONTHLY, "Monthly"),
    (BILLING_CYCLE_SEMIANNUAL, "Semiannual"),
    (BILLING_CYCLE_ANNUAL, "Annual"),
]

DEFAULT_CHARGE_EXPIRY_SECONDS = 3600

EFI_SANDBOX_BASE_URL = "https://pix-h.api.efipay.com.br"
EFI_PRODUCTION_BASE_URL = "https://pix.api.efipay.com.br"

EFI_ENVIRONMENT_SANDBOX = "sandbox"
EFI_ENVIRONMENT_PRODUCTION = "production"
EFI_ENVIRONMENTS = frozenset({EFI_ENVIRONMENT_SANDBOX, EFI_ENVIRONMENT_PRODUCTION})

# PlatformSetting key overriding settings.EFI_ENVIRONMENT.
SETTING_EFI_ENVIRONMENT = "efi_environment"

# Provider-side PIX charge statuses that mean the money has settled.
PIX_SETTLED_STATUSES = frozenset({"CONCLUIDA", "PAID", "CONFIRMED"})

# A charge claim older than this is considered abandoned and may be retaken.
CHARGE_CLAIM_TTL_SECONDS = 120
