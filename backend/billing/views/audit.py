"""Store billing audit log endpoint."""
from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.permissions import IsAuthenticated
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import BillingAuditLogFilter
from billing.models import BillingAuditLog
from billing.pagination import AuditLogPagination
from billing.permissions import BillingPermissionLevel, check_tenant_billing_permission
from billing.serializers import BillingAuditLogSerializer


class TenantBillingAuditLogViewSet(ReadOnlyModelViewSet):
    serializer_class = BillingAuditLogSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = AuditLogPagination
    filter_backends = [DjangoFilterBackend]
    filterset_class = BillingAuditLogFilter

    def get_queryset(self):
        tenant, _ = check_tenant_billing_permission(
            user=self.request.user,
            tenant_id=self.kwargs["tenant_id"],
            level=BillingPermissionLevel.MANAGE_BILLING,
        )
        self.request.tenant = tenant
        return BillingAuditLog.objects.filter(tenant=tenant).order_by("-created_at", "-id")
