"""Billing API views for the store billing console."""

from .audit import TenantBillingAuditLogViewSet
from .invoices import TenantInvoiceViewSet
from .owner import BillingMetricsMixin, OwnerBillingActionView
from .subscription import TenantAccessView, TenantSubscriptionView
