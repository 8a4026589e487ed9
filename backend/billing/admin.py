from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import (
    BillingAuditLog,
    Invoice,
    Plan,
    PlatformSetting,
    TenantSubscription,
    WebhookEventLog,
)


@admin.register(PlatformSetting)
class PlatformSettingAdmin(admin.ModelAdmin):
    list_display = ("key", "value", "updated_at")
    search_fields = ("key",)
    ordering = ("key",)


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Manage the plan catalogue offered to stores."""

    list_display = (
        "name",
        "monthly_price",
        "semiannual_price",
        "annual_price",
        "is_active",
        "sort_order",
    )
    list_filter = ("is_active",)
    search_fields = ("name",)
    ordering = ("sort_order", "name")

    fieldsets = (
        ("Plan", {"fields": ("name", "description", "highlight_badge", "features")}),
        ("Pricing", {"fields": ("monthly_price", "semiannual_price", "annual_price")}),
        ("Visibility", {"fields": ("is_active", "sort_order")}),
    )


@admin.register(TenantSubscription)
class TenantSubscriptionAdmin(admin.ModelAdmin):
    """Inspect store subscriptions. Status changes go through the owner console."""

    list_display = (
        "tenant",
        "plan",
        "billing_cycle",
        "status",
        "current_period_end",
        "auto_renew",
        "cancel_at_period_end",
    )
    list_filter = ("status", "billing_cycle", "auto_renew", "cancel_at_period_end")
    search_fields = ("tenant__name", "tenant__slug", "tenant__owner__username")
    list_select_related = ("tenant", "plan")
    raw_id_fields = ("tenant", "plan")
    readonly_fields = (
        "status",
        "current_period_start",
        "current_period_end",
        "suspended_reason",
        "created_at",
        "updated_at",
    )
    ordering = ("-updated_at",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant",
        "amount",
        "status",
        "due_at",
        "paid_at",
        "gateway_charge_id",
        "subscription_link",
    )
    list_filter = ("status", "gateway", "due_at")
    search_fields = ("id", "tenant__name", "gateway_charge_id", "end_to_end_id")
    list_select_related = ("tenant", "subscription")
    raw_id_fields = ("tenant", "subscription")
    readonly_fields = (
        "status",
        "paid_at",
        "paid_amount",
        "gateway_charge_id",
        "gateway_location_id",
        "charge_requested_at",
        "end_to_end_id",
        "pix_copy_paste",
        "pix_qrcode",
        "created_at",
        "updated_at",
    )
    ordering = ("-created_at",)

    @admin.display(description="Subscription")
    def subscription_link(self, obj):
        if not obj.subscription_id:
            return "-"
        url = reverse("admin:billing_tenantsubscription_change", args=[obj.subscription_id])
        return format_html('<a href="{}">{}</a>', url, obj.subscription_id)


@admin.register(BillingAuditLog)
class BillingAuditLogAdmin(admin.ModelAdmin):
    """Read-only audit trail for billing actions."""

    list_display = ("id", "tenant", "action", "actor_type", "actor", "created_at")
    list_filter = ("action", "actor_type", "created_at")
    search_fields = ("tenant__name", "actor")
    list_select_related = ("tenant",)
    readonly_fields = ("tenant", "action", "actor_type", "actor", "meta", "created_at")
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WebhookEventLog)
class WebhookEventLogAdmin(admin.ModelAdmin):
    list_display = ("event_id", "txid", "status", "delivery_count", "created_at", "processed_at")
    list_filter = ("status", "created_at")
    search_fields = ("event_id", "txid", "payload_hash")
    readonly_fields = (
        "event_id",
        "txid",
        "payload_hash",
        "status",
        "detail",
        "delivery_count",
        "created_at",
        "processed_at",
    )
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False
