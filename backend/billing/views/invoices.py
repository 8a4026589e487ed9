"""Invoice list endpoint for the store billing console."""
from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.permissions import IsAuthenticated
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import InvoiceFilter
from billing.models import Invoice
from billing.pagination import BoundedPageNumberPagination
from billing.permissions import BillingPermissionLevel, check_tenant_billing_permission
from billing.serializers import InvoiceSerializer


class TenantInvoiceViewSet(ReadOnlyModelViewSet):
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filter_backends = [DjangoFilterBackend]
    filterset_class = InvoiceFilter

    def get_queryset(self):
        tenant, _ = check_tenant_billing_permission(
            user=self.request.user,
            tenant_id=self.kwargs["tenant_id"],
            level=BillingPermissionLevel.MANAGE_BILLING,
        )
        self.request.tenant = tenant
        return Invoice.objects.filter(tenant=tenant).order_by("-created_at")
