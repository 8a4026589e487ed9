import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models
from django.db.models import F, Q


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("tenants", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PlatformSetting",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=100, unique=True)),
                ("value", models.TextField(blank=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Platform setting",
                "verbose_name_plural": "Platform settings",
                "db_table": "billing_platform_setting",
                "ordering": ["key"],
            },
        ),
        migrations.CreateModel(
            name="Plan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100, unique=True)),
                ("description", models.TextField(blank=True)),
                (
                    "monthly_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "semiannual_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "annual_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "features",
                    models.JSONField(blank=True, default=list, help_text="List of feature labels for plan cards"),
                ),
                ("highlight_badge", models.CharField(blank=True, max_length=50)),
                ("is_active", models.BooleanField(default=True)),
                ("sort_order", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "db_table": "billing_plan",
                "ordering": ["sort_order", "monthly_price", "name"],
            },
        ),
        migrations.CreateModel(
            name="TenantSubscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "billing_cycle",
                    models.CharField(
                        choices=[("monthly", "Monthly"), ("semiannual", "Semiannual"), ("annual", "Annual")],
                        default="monthly",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("trialing", "Trialing"),
                            ("active", "Active"),
                            ("past_due", "Past Due"),
                            ("suspended", "Suspended"),
                            ("canceled", "Canceled"),
                        ],
                        default="active",
                        max_length=20,
                    ),
                ),
                ("current_period_start", models.DateTimeField(help_text="Start of the paid period")),
                ("current_period_end", models.DateTimeField(help_text="End of the paid period")),
                ("auto_renew", models.BooleanField(default=True)),
                ("cancel_at_period_end", models.BooleanField(default=False)),
                ("gateway", models.CharField(default="efi", max_length=20)),
                ("suspended_reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "plan",
                    models.ForeignKey(
                        blank=True,
                        help_text="Current plan in use",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="billing.plan",
                    ),
                ),
                (
                    "tenant",
                    models.OneToOneField(
                        help_text="Tenant whose back-office this subscription gates",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscription",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Tenant subscription",
                "verbose_name_plural": "Tenant subscriptions",
                "db_table": "billing_tenant_subscription",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "current_period_end"], name="billing_sub_status_end_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=Q(current_period_end__gte=F("current_period_start")),
                        name="subscription_period_end_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("paid", "Paid"),
                            ("expired", "Expired"),
                            ("canceled", "Canceled"),
                            ("refunded", "Refunded"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("due_at", models.DateTimeField()),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("paid_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("payment_method", models.CharField(default="pix", max_length=20)),
                ("gateway", models.CharField(default="efi", max_length=20)),
                (
                    "gateway_charge_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider transaction id (txid) of the PIX charge.",
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "gateway_location_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider location reference used to (re)fetch the payment code.",
                        max_length=64,
                    ),
                ),
                ("end_to_end_id", models.CharField(blank=True, max_length=64)),
                ("pix_copy_paste", models.TextField(blank=True)),
                ("pix_qrcode", models.TextField(blank=True, help_text="Rendered QR code image (data URI).")),
                ("meta", models.JSONField(blank=True, default=dict, help_text="Plan and billing cycle snapshot.")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        help_text="Subscription the invoice pays for; empty before the first acquisition.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="billing.tenantsubscription",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice",
                "verbose_name_plural": "Invoices",
                "db_table": "billing_invoice",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant", "status"], name="billing_invoice_tenant_idx"),
                    models.Index(fields=["status", "due_at"], name="billing_invoice_due_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingAuditLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("generate_invoice", "Generate invoice"),
                            ("create_charge", "Create PIX charge"),
                            ("attach_payment_code", "Attach payment code"),
                            ("payment_received", "Payment received"),
                            ("payment_rejected", "Payment rejected"),
                            ("suspend_system", "Suspend system"),
                            ("reactivate_system", "Reactivate system"),
                            ("cancel_subscription", "Cancel subscription"),
                            ("change_billing_cycle", "Change billing cycle"),
                            ("subscription_past_due", "Subscription past due"),
                            ("subscription_suspended_auto", "Subscription suspended automatically"),
                            ("invoice_expired", "Invoice expired"),
                            ("invoice_canceled", "Invoice canceled"),
                            ("invoice_refunded", "Invoice refunded"),
                        ],
                        max_length=50,
                    ),
                ),
                (
                    "actor_type",
                    models.CharField(
                        choices=[("owner", "Owner"), ("system", "System"), ("webhook", "Webhook")],
                        max_length=20,
                    ),
                ),
                (
                    "actor",
                    models.CharField(
                        blank=True,
                        help_text="Username or system component responsible.",
                        max_length=255,
                    ),
                ),
                ("meta", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="billing_audit_logs",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Billing audit log",
                "verbose_name_plural": "Billing audit logs",
                "db_table": "billing_audit_log",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["tenant", "action"], name="billing_audit_tenant_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEventLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "event_id",
                    models.CharField(help_text="endToEndId, or txid when absent.", max_length=255, unique=True),
                ),
                ("txid", models.CharField(blank=True, max_length=64)),
                (
                    "payload_hash",
                    models.CharField(
                        blank=True,
                        help_text="SHA256 of the raw payload for drift detection.",
                        max_length=64,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processed", "Processed"),
                            ("ignored", "Ignored"),
                            ("failed", "Failed"),
                        ],
                        default="received",
                        max_length=20,
                    ),
                ),
                ("detail", models.TextField(blank=True)),
                ("delivery_count", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Webhook event log",
                "verbose_name_plural": "Webhook event logs",
                "db_table": "billing_webhook_event_log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["txid"], name="webhook_event_txid_idx"),
                    models.Index(fields=["status"], name="webhook_event_status_idx"),
                ],
            },
        ),
    ]
