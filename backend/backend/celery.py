import os

from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')

app = Celery('storefront_billing')

app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Billing jobs run on their own queue.
app.conf.task_routes = {
    "billing.tasks.expire_overdue_invoices_task": {"queue": "billing"},
    "billing.tasks.enforce_subscription_expiry_task": {"queue": "billing"},
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    timezone='UTC',
    enable_utc=True,

    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
    },
)

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "billing_expire_overdue_invoices_15min": {
        "task": "billing.tasks.expire_overdue_invoices_task",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "billing"},
    },
    "billing_enforce_subscription_expiry_hourly": {
        "task": "billing.tasks.enforce_subscription_expiry_task",
        "schedule": crontab(minute=5),
        "options": {"queue": "billing", "priority": 8},
    },
}
