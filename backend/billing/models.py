"""Billing models for the platform subscription, PIX invoices, audit and webhook logging."""
import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from billing.constants import (
    BILLING_CYCLE_CHOICES,
    BILLING_CYCLE_MONTHLY,
    GATEWAY_EFI,
    PAYMENT_METHOD_PIX,
)
from tenants.models import Tenant


class PlatformSetting(models.Model):
    """Key/value configuration consumed (never written) by the billing core."""

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_platform_setting"
        verbose_name = "Platform setting"
        verbose_name_plural = "Platform settings"
        ordering = ["key"]

    def __str__(self):
        return f"PlatformSetting<{self.key}>"

    @classmethod
    def get_value(cls, key: str, default: str = "") -> str:
        value = cls.objects.filter(key=key).values_list("value", flat=True).first()
        return value if value else default


class Plan(models.Model):
    """Catalog entry priced per billing cycle. Edited from the owner console, read by billing."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    monthly_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
    )
    semiannual_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
    )
    annual_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(0)],
    )
    features = models.JSONField(default=list, blank=True, help_text="List of feature labels for plan cards")
    highlight_badge = models.CharField(max_length=50, blank=True)
    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_plan"
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        ordering = ["sort_order", "monthly_price", "name"]

    def __str__(self):
        return f"Plan<{self.name}>"

    def price_for(self, billing_cycle: str) -> Decimal:
        prices = {
            "monthly": self.monthly_price,
            "semiannual": self.semiannual_price,
            "annual": self.annual_price,
        }
        if billing_cycle not in prices:
            raise ValueError(f"Unknown billing cycle '{billing_cycle}'.")
        return prices[billing_cycle]


class TenantSubscription(models.Model):
    """
    Platform subscription of a tenant - the single record of entitlement.

    One row per tenant (enforced by the one-to-one key). Status and period
    bounds change only through ``billing.services.subscription_lifecycle``.
    """

    class Status(models.TextChoices):
        TRIALING = "trialing", "Trialing"
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past Due"
        SUSPENDED = "suspended", "Suspended"
        CANCELED = "canceled", "Canceled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.OneToOneField(
        Tenant,
        on_delete=models.PROTECT,
        related_name="subscription",
        help_text="Tenant whose back-office this subscription gates",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="subscriptions",
        help_text="Current plan in use",
    )
    billing_cycle = models.CharField(
        max_length=20,
        choices=BILLING_CYCLE_CHOICES,
        default=BILLING_CYCLE_MONTHLY,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    current_period_start = models.DateTimeField(help_text="Start of the paid period")
    current_period_end = models.DateTimeField(help_text="End of the paid period")
    auto_renew = models.BooleanField(default=True)
    cancel_at_period_end = models.BooleanField(default=False)
    gateway = models.CharField(max_length=20, default=GATEWAY_EFI)
    suspended_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_tenant_subscription"
        verbose_name = "Tenant subscription"
        verbose_name_plural = "Tenant subscriptions"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(current_period_end__gte=F("current_period_start")),
                name="subscription_period_end_after_start",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "current_period_end"], name="billing_sub_status_end_idx"),
        ]

    def __str__(self):
        return f"TenantSubscription<{self.tenant_id}:{self.status}>"

    @property
    def is_active(self):
        return self.status in (self.Status.ACTIVE, self.Status.TRIALING)

    @property
    def days_until_renewal(self):
        """Return days remaining until the current period ends."""
        if not self.current_period_end:
            return None
        now = timezone.now()
        if self.current_period_end <= now:
            return 0
        return max((self.current_period_end - now).days, 0)

    def delete(self, *args, **kwargs):
        raise ValidationError("Subscriptions are never deleted; cancel or suspend instead.")


class Invoice(models.Model):
    """One PIX billing attempt for a tenant subscription."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        EXPIRED = "expired", "Expired"
        CANCELED = "canceled", "Canceled"
        REFUNDED = "refunded", "Refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    subscription = models.ForeignKey(
        TenantSubscription,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoices",
        help_text="Subscription the invoice pays for; empty before the first acquisition.",
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    due_at = models.DateTimeField()
    paid_at = models.DateTimeField(null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    payment_method = models.CharField(max_length=20, default=PAYMENT_METHOD_PIX)
    gateway = models.CharField(max_length=20, default=GATEWAY_EFI)
    gateway_charge_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Provider transaction id (txid) of the PIX charge.",
    )
    gateway_location_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Provider location reference used to (re)fetch the payment code.",
    )
    charge_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set while a charge is being requested from the provider.",
    )
    end_to_end_id = models.CharField(max_length=64, blank=True)
    pix_copy_paste = models.TextField(blank=True)
    pix_qrcode = models.TextField(blank=True, help_text="Rendered QR code image (data URI).")
    meta = models.JSONField(default=dict, blank=True, help_text="Plan and billing cycle snapshot.")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_invoice"
        verbose_name = "Invoice"
        verbose_name_plural = "Invoices"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant", "status"], name="billing_invoice_tenant_idx"),
            models.Index(fields=["status", "due_at"], name="billing_invoice_due_idx"),
        ]

    def __str__(self):
        return f"Invoice<{self.id}:{self.status}>"

    @property
    def has_charge(self) -> bool:
        return bool(self.gateway_charge_id)

    @property
    def has_payment_code(self) -> bool:
        return bool(self.pix_copy_paste)

    def delete(self, *args, **kwargs):
        raise ValidationError("Invoices are never deleted.")


class BillingAuditLog(models.Model):
    """Append-only record of every state-changing billing action."""

    class Action(models.TextChoices):
        GENERATE_INVOICE = "generate_invoice", "Generate invoice"
        CREATE_CHARGE = "create_charge", "Create PIX charge"
        ATTACH_PAYMENT_CODE = "attach_payment_code", "Attach payment code"
        PAYMENT_RECEIVED = "payment_received", "Payment received"
        PAYMENT_REJECTED = "payment_rejected", "Payment rejected"
        SUSPEND_SYSTEM = "suspend_system", "Suspend system"
        REACTIVATE_SYSTEM = "reactivate_system", "Reactivate system"
        CANCEL_SUBSCRIPTION = "cancel_subscription", "Cancel subscription"
        CHANGE_BILLING_CYCLE = "change_billing_cycle", "Change billing cycle"
        SUBSCRIPTION_PAST_DUE = "subscription_past_due", "Subscription past due"
        SUBSCRIPTION_SUSPENDED_AUTO = "subscription_suspended_auto", "Subscription suspended automatically"
        INVOICE_EXPIRED = "invoice_expired", "Invoice expired"
        INVOICE_CANCELED = "invoice_canceled", "Invoice canceled"
        INVOICE_REFUNDED = "invoice_refunded", "Invoice refunded"

    class ActorType(models.TextChoices):
        OWNER = "owner", "Owner"
        SYSTEM = "system", "System"
        WEBHOOK = "webhook", "Webhook"

    id = models.BigAutoField(primary_key=True)
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="billing_audit_logs",
    )
    action = models.CharField(max_length=50, choices=Action.choices)
    actor_type = models.CharField(max_length=20, choices=ActorType.choices)
    actor = models.CharField(max_length=255, blank=True, help_text="Username or system component responsible.")
    meta = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_audit_log"
        verbose_name = "Billing audit log"
        verbose_name_plural = "Billing audit logs"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["tenant", "action"], name="billing_audit_tenant_idx"),
        ]

    def save(self, *args, **kwargs):
        if self.pk and BillingAuditLog.objects.filter(pk=self.pk).exists():
            raise ValidationError("BillingAuditLog records are immutable and cannot be updated.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("BillingAuditLog records are immutable and cannot be deleted.")

    def __str__(self):
        return f"BillingAuditLog<{self.tenant_id}:{self.action}>"


class WebhookEventLog(models.Model):
    """Receipt log of provider payment notifications, for diagnostics."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSED = "processed", "Processed"
        IGNORED = "ignored", "Ignored"
        FAILED = "failed", "Failed"

    id = models.BigAutoField(primary_key=True)
    event_id = models.CharField(max_length=255, unique=True, help_text="endToEndId, or txid when absent.")
    txid = models.CharField(max_length=64, blank=True)
    payload_hash = models.CharField(
        max_length=64,
        blank=True,
        help_text="SHA256 of the raw payload for drift detection.",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.RECEIVED)
    detail = models.TextField(blank=True)
    delivery_count = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_webhook_event_log"
        verbose_name = "Webhook event log"
        verbose_name_plural = "Webhook event logs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["txid"], name="webhook_event_txid_idx"),
            models.Index(fields=["status"], name="webhook_event_status_idx"),
        ]

    def __str__(self):
        return f"WebhookEventLog<{self.event_id}:{self.status}>"
