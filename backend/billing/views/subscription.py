"""Tenant subscription snapshot and access decision endpoints."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import TenantSubscription
from billing.permissions import BillingPermissionLevel, check_tenant_billing_permission
from billing.serializers import InvoiceSerializer, TenantSubscriptionSerializer
from billing.services.access_gate import check_tenant_access
from billing.services.invoices import get_pending_invoice


class TenantSubscriptionView(APIView):
    """Current subscription, access decision and pending invoice for the billing console."""

    permission_classes = [IsAuthenticated]

    def get(self, request, tenant_id):
        tenant, _ = check_tenant_billing_permission(
            user=request.user,
            tenant_id=tenant_id,
            level=BillingPermissionLevel.MANAGE_BILLING,
        )
        subscription = TenantSubscription.objects.select_related("plan", "tenant").filter(tenant=tenant).first()
        pending = get_pending_invoice(tenant)
        return Response(
            {
                "success": True,
                "subscription": TenantSubscriptionSerializer(subscription).data if subscription else None,
                "pending_invoice": InvoiceSerializer(pending).data if pending else None,
                "access": check_tenant_access(tenant).as_dict(),
            }
        )


class TenantAccessView(APIView):
    """Access gate decision for any active member of the store."""

    permission_classes = [IsAuthenticated]

    def get(self, request, tenant_id):
        tenant, _ = check_tenant_billing_permission(
            user=request.user,
            tenant_id=tenant_id,
            level=BillingPermissionLevel.VIEW_ACCESS,
        )
        return Response(check_tenant_access(tenant).as_dict())
