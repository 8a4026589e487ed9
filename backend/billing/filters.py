"""FilterSet definitions for billing endpoints."""
from __future__ import annotations

import django_filters

from billing.models import BillingAuditLog, Invoice


class InvoiceFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")
    due_after = django_filters.DateTimeFilter(field_name="due_at", lookup_expr="gte")
    due_before = django_filters.DateTimeFilter(field_name="due_at", lookup_expr="lte")
    txid = django_filters.CharFilter(field_name="gateway_charge_id")

    class Meta:
        model = Invoice
        fields = ["status", "txid"]


class BillingAuditLogFilter(django_filters.FilterSet):
    action = django_filters.CharFilter(field_name="action", lookup_expr="iexact")
    actor_type = django_filters.CharFilter(field_name="actor_type", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = BillingAuditLog
        fields = ["action", "actor_type"]
