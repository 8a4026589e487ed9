"""DRF serializers for the billing console (owner actions, subscription, invoices, audit)."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from billing.constants import BILLING_CYCLE_CHOICES, BILLING_CYCLE_MONTHLY
from billing.models import BillingAuditLog, Invoice, Plan, TenantSubscription

OWNER_ACTIONS = (
    "test_connection",
    "generate_invoice",
    "create_charge",
    "retry_payment_code",
    "suspend_system",
    "reactivate_system",
    "change_cycle",
    "cancel_subscription",
)


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = (
            "id",
            "name",
            "description",
            "monthly_price",
            "semiannual_price",
            "annual_price",
            "features",
            "highlight_badge",
            "is_active",
        )
        read_only_fields = fields


class TenantSubscriptionSerializer(serializers.ModelSerializer):
    """Snapshot of a tenant subscription and its plan."""

    plan = PlanSerializer(read_only=True)
    tenant_id = serializers.UUIDField(source="tenant.id", read_only=True)
    days_until_renewal = serializers.IntegerField(read_only=True)

    class Meta:
        model = TenantSubscription
        fields = (
            "id",
            "tenant_id",
            "plan",
            "billing_cycle",
            "status",
            "current_period_start",
            "current_period_end",
            "auto_renew",
            "cancel_at_period_end",
            "gateway",
            "suspended_reason",
            "days_until_renewal",
            "updated_at",
        )
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    subscription_id = serializers.UUIDField(read_only=True, allow_null=True)
    txid = serializers.CharField(source="gateway_charge_id", read_only=True, allow_null=True)

    class Meta:
        model = Invoice
        fields = (
            "id",
            "subscription_id",
            "amount",
            "status",
            "due_at",
            "paid_at",
            "paid_amount",
            "payment_method",
            "gateway",
            "txid",
            "pix_copy_paste",
            "pix_qrcode",
            "meta",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class BillingAuditLogSerializer(serializers.ModelSerializer):
    tenant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = BillingAuditLog
        fields = (
            "id",
            "tenant_id",
            "action",
            "actor_type",
            "actor",
            "meta",
            "created_at",
        )
        read_only_fields = fields


class OwnerActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=OWNER_ACTIONS)


class PlanLookupMixin:
    def resolve_plan(self, plan_id) -> Optional[Plan]:
        if plan_id is None:
            return None
        plan = Plan.objects.filter(pk=plan_id).first()
        if plan is None:
            raise serializers.ValidationError({"plan_id": _("Plan does not exist.")})
        return plan


class GenerateInvoiceSerializer(PlanLookupMixin, serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"), required=False)
    plan_id = serializers.UUIDField(required=False, allow_null=True)
    billing_cycle = serializers.ChoiceField(choices=BILLING_CYCLE_CHOICES, default=BILLING_CYCLE_MONTHLY)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs["plan"] = self.resolve_plan(attrs.get("plan_id"))
        if attrs.get("amount") is None:
            plan = attrs["plan"]
            if plan is None:
                raise serializers.ValidationError({"amount": _("Provide an amount or a plan.")})
            if plan.price_for(attrs["billing_cycle"]) <= 0:
                raise serializers.ValidationError(
                    {"plan_id": _("The plan has no price for this billing cycle.")}
                )
        return attrs


class CreateChargeSerializer(serializers.Serializer):
    invoice_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"), required=False)
    description = serializers.CharField(required=False, allow_blank=True, max_length=200, default="")


class InvoiceReferenceSerializer(serializers.Serializer):
    invoice_id = serializers.UUIDField()


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class ChangeCycleSerializer(PlanLookupMixin, serializers.Serializer):
    plan_id = serializers.UUIDField()
    billing_cycle = serializers.ChoiceField(choices=BILLING_CYCLE_CHOICES)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs["plan"] = self.resolve_plan(attrs["plan_id"])
        return attrs
