"""
Billing Permission Management - tenant billing permission checks

Defines two levels of permissions:
1. VIEW_ACCESS: Read the access decision (any active member of the tenant)
2. MANAGE_BILLING: Operate the billing console (owner or admin role)

Also provides ``HasActiveSubscription``, the DRF permission that storefront
apps add to their tenant back-office views. The billing endpoints in this app
do not use it, so an owner whose access is denied can still pay.
"""
import logging
from enum import Enum
from typing import Optional

from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, NotFound, PermissionDenied
from rest_framework.permissions import BasePermission

from billing.services.access_gate import AccessDecision, check_tenant_access
from tenants.models import Tenant, TenantMembership

logger = logging.getLogger(__name__)


class BillingPermissionLevel(Enum):
    """Billing permission level enumeration"""
    VIEW_ACCESS = "view_access"         # Read the access decision
    MANAGE_BILLING = "manage_billing"   # Owner console actions and billing records


class TenantBillingPermissions:
    """
    Tenant Billing Permission Checker

    The tenant owner always holds every permission; otherwise the active
    membership role decides.
    """

    def __init__(self, user, tenant: Tenant):
        self.user = user
        self.tenant = tenant
        self._membership = None

    @property
    def membership(self) -> Optional[TenantMembership]:
        if self._membership is None:
            self._membership = self.tenant.get_membership(self.user) or False
        return self._membership or None

    def is_owner(self) -> bool:
        return self.tenant.owner_id == getattr(self.user, "pk", None)

    def is_member(self) -> bool:
        return self.is_owner() or self.membership is not None

    def is_elevated(self) -> bool:
        if self.is_owner():
            return True
        membership = self.membership
        return bool(membership and membership.is_elevated)

    def check_permission(self, level: BillingPermissionLevel) -> None:
        """
        Validate the required permission; raise an exception if not granted

        Raises:
            NotAuthenticated: User not logged in
            PermissionDenied: Insufficient permission
        """
        if not self.user or not self.user.is_authenticated:
            raise NotAuthenticated("User not logged in")

        if not self.is_member():
            raise PermissionDenied("You are not a member of this store")

        if level is BillingPermissionLevel.MANAGE_BILLING and not self.is_elevated():
            raise PermissionDenied("Owner or admin role required to manage billing")

        logger.debug(
            "Permission granted: user %s has %s permission for tenant %s",
            self.user.pk,
            level.value,
            self.tenant.pk,
        )


def get_tenant_or_404(tenant_id) -> Tenant:
    try:
        return Tenant.objects.get(pk=tenant_id)
    except (Tenant.DoesNotExist, ValidationError, ValueError):
        raise NotFound("Store does not exist")


def check_tenant_billing_permission(user, tenant_id, level: BillingPermissionLevel):
    """
    Convenience function: check tenant billing permission

    Authentication is checked before the tenant lookup so anonymous callers
    get 401 rather than learning whether a store exists.

    Returns:
        tuple: (tenant object, permission checker object)
    """
    if not user or not user.is_authenticated:
        raise NotAuthenticated("User not logged in")
    tenant = get_tenant_or_404(tenant_id)
    permissions = TenantBillingPermissions(user, tenant)
    permissions.check_permission(level)
    return tenant, permissions


class SubscriptionInactive(APIException):
    """Raised when the tenant's subscription does not grant back-office access."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "The store subscription is not active. Regularize the payment to continue."
    default_code = "subscription_inactive"

    def __init__(self, decision: AccessDecision):
        super().__init__(detail=self.default_detail, code=self.default_code)
        self.decision = decision
        self.detail = {
            "detail": self.default_detail,
            "code": self.default_code,
            "status": decision.status,
            "awaiting_payment": decision.awaiting_payment,
            "reason": decision.reason,
        }


class HasActiveSubscription(BasePermission):
    """Allow the request only while the tenant in ``view.kwargs['tenant_id']`` has access."""

    tenant_kwarg = "tenant_id"

    def has_permission(self, request, view):
        tenant_id = view.kwargs.get(self.tenant_kwarg)
        if tenant_id is None:
            return False
        tenant = get_tenant_or_404(tenant_id)
        decision = check_tenant_access(tenant)
        if not decision.allowed:
            raise SubscriptionInactive(decision)
        request.tenant = tenant
        request.access_decision = decision
        return True
