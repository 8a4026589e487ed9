import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class BillingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'billing'
    verbose_name = 'Platform billing'

    def ready(self):
        # Register metric collectors once per process.
        from billing.observability import metrics  # noqa: F401

        logger.debug("Billing app ready.")
