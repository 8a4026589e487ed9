"""URL routes for provider-facing billing endpoints."""
from django.urls import re_path

from .views_webhook import EfiWebhookView

app_name = "billing"

urlpatterns = [
    # Efí appends "/pix" to the registered webhook URL.
    re_path(r"^webhook/efi(?:/pix)?/?$", EfiWebhookView.as_view(), name="efi-webhook"),
]
