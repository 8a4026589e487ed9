"""Celery tasks for periodic billing reconciliation."""
from __future__ import annotations

import logging
from typing import Dict

from celery import shared_task
from django.db import OperationalError

from billing.services.invoices import expire_overdue_invoices
from billing.services.subscription_lifecycle import enforce_period_expiry

logger = logging.getLogger(__name__)


@shared_task(queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def expire_overdue_invoices_task() -> int:
    """Expire pending invoices whose due date has passed."""

    expired = expire_overdue_invoices()
    logger.info("Invoice expiry run finished: expired=%s", expired)
    return expired


@shared_task(queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def enforce_subscription_expiry_task() -> Dict[str, int]:
    """Move subscriptions whose paid period ended to past_due or suspended."""

    report = enforce_period_expiry()
    stats = report.as_dict()
    logger.info("Subscription expiry run finished: %s", stats)
    return stats
