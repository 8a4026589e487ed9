import uuid

from django.conf import settings
from django.db import models
from django.utils.text import slugify


class Tenant(models.Model):
    """
    Tenant model - the store whose back-office is gated by the platform subscription.

    Every storefront, admin console, and seller portal belongs to exactly one tenant.
    The tenant owner pays the platform subscription; admins act on their behalf.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the tenant"
    )
    name = models.CharField(
        max_length=200,
        help_text="Store name shown in the admin console"
    )
    slug = models.SlugField(
        max_length=200,
        unique=True,
        help_text="URL-safe identifier for the storefront"
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='owned_tenants',
        help_text="User who owns the store and pays the platform subscription"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'tenants_tenant'
        ordering = ['name']

    def __str__(self):
        return f"Tenant<{self.name}>"

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)[:200] or uuid.uuid4().hex
        super().save(*args, **kwargs)

    def get_membership(self, user):
        """Return the active membership of ``user`` or ``None``."""
        if not user or not user.is_authenticated:
            return None
        return self.memberships.filter(user=user, is_active=True).first()


class TenantMembership(models.Model):
    """
    Membership model - user-tenant relationship and role.

    Only owners and admins may operate the billing console; sellers and members
    only consume the access gate.
    """

    ROLE_OWNER = 'owner'
    ROLE_ADMIN = 'admin'
    ROLE_SELLER = 'seller'
    ROLE_MEMBER = 'member'

    ROLE_CHOICES = [
        (ROLE_OWNER, 'Owner'),  # Pays the platform subscription
        (ROLE_ADMIN, 'Administrator'),  # Operates the back-office and billing console
        (ROLE_SELLER, 'Seller'),  # Seller portal only
        (ROLE_MEMBER, 'Member'),
    ]

    ELEVATED_ROLES = frozenset({ROLE_OWNER, ROLE_ADMIN})

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name='memberships',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tenant_memberships',
    )
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        help_text="Role determining access within the tenant"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this membership is currently active"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'tenants_membership'
        ordering = ['tenant', 'role']
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'user'], name='unique_tenant_membership'),
        ]

    def __str__(self):
        return f"TenantMembership<{self.user_id}@{self.tenant_id}:{self.role}>"

    @property
    def is_elevated(self) -> bool:
        return self.is_active and self.role in self.ELEVATED_ROLES
