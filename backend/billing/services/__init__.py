"""Expose commonly used billing services."""

from .access_gate import AccessDecision, check_tenant_access, evaluate_access, is_allowed
from .charges import ChargeOutcome, create_charge_for_invoice, retry_payment_code
from .webhook_reconciler import ReconcileResult, reconcile_pix_payment
