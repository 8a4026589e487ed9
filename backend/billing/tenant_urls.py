"""URL routes for store-scoped billing console endpoints."""
from django.urls import path

from .views import (
    OwnerBillingActionView,
    TenantAccessView,
    TenantBillingAuditLogViewSet,
    TenantInvoiceViewSet,
    TenantSubscriptionView,
)

urlpatterns = [
    path(
        "tenants/<uuid:tenant_id>/billing/owner/",
        OwnerBillingActionView.as_view(),
        name="tenant-billing-owner",
    ),
    path(
        "tenants/<uuid:tenant_id>/billing/subscription/",
        TenantSubscriptionView.as_view(),
        name="tenant-billing-subscription",
    ),
    path(
        "tenants/<uuid:tenant_id>/billing/invoices/",
        TenantInvoiceViewSet.as_view({"get": "list"}),
        name="tenant-billing-invoices",
    ),
    path(
        "tenants/<uuid:tenant_id>/billing/audit-logs/",
        TenantBillingAuditLogViewSet.as_view({"get": "list"}),
        name="tenant-billing-audit-logs",
    ),
    path(
        "tenants/<uuid:tenant_id>/billing/access/",
        TenantAccessView.as_view(),
        name="tenant-billing-access",
    ),
]
