"""
Enforce subscription period expiry

Expires overdue invoices, then moves subscriptions whose paid period ended to
past_due or suspended. Intended for cron when Celery beat is not running.
"""
from django.core.management.base import BaseCommand

from billing.models import Invoice
from billing.services.invoices import expire_overdue_invoices
from billing.services.subscription_lifecycle import enforce_period_expiry


class Command(BaseCommand):

    help = 'Expire overdue invoices and suspend subscriptions whose period ended'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Preview what would change without making changes',
        )
        parser.add_argument(
            '--grace-days',
            type=int,
            default=None,
            help='Past-due grace window in days (defaults to BILLING_PAST_DUE_GRACE_DAYS)',
        )
        parser.add_argument(
            '--skip-invoices',
            action='store_true',
            help='Do not expire overdue invoices',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE - No changes will be made"))

        if not options['skip_invoices']:
            if dry_run:
                from django.utils import timezone

                overdue = Invoice.objects.filter(status=Invoice.Status.PENDING, due_at__lt=timezone.now()).count()
                self.stdout.write(f"Would expire {overdue} overdue invoice(s)")
            else:
                expired = expire_overdue_invoices()
                self.stdout.write(f"Expired {expired} overdue invoice(s)")

        report = enforce_period_expiry(grace_days=options['grace_days'], dry_run=dry_run)
        verb = "Would move" if dry_run else "Moved"
        self.stdout.write(f"Checked {report.checked} expired subscription(s)")
        self.stdout.write(f"{verb} {len(report.past_due)} subscription(s) to past_due")
        self.stdout.write(f"{verb} {len(report.suspended)} subscription(s) to suspended")
        if report.skipped:
            self.stdout.write(self.style.WARNING(f"Skipped {report.skipped} subscription(s)"))

        self.stdout.write(self.style.SUCCESS("Subscription expiry check completed"))
