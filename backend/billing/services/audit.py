"""Append-only billing audit trail."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from django.core.serializers.json import DjangoJSONEncoder

from billing.models import BillingAuditLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
WEBHOOK_ACTOR = "efi-webhook"


def _jsonable(meta: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # Decimal, UUID and datetime values are stored as their string forms.
    return json.loads(json.dumps(meta or {}, cls=DjangoJSONEncoder))


def record_audit(
    action: str,
    *,
    tenant=None,
    actor_type: str = BillingAuditLog.ActorType.SYSTEM,
    actor: str = "",
    meta: Optional[Dict[str, Any]] = None,
) -> BillingAuditLog:
    """Write one audit entry. Call inside the transaction of the change it records."""
    entry = BillingAuditLog.objects.create(
        tenant=tenant,
        action=action,
        actor_type=actor_type,
        actor=actor or (SYSTEM_ACTOR if actor_type == BillingAuditLog.ActorType.SYSTEM else ""),
        meta=_jsonable(meta),
    )
    logger.debug("Audit %s recorded for tenant %s.", action, getattr(tenant, "pk", None))
    return entry


def actor_label(user) -> str:
    if user is None or not getattr(user, "is_authenticated", False):
        return ""
    return user.get_username()


__all__ = ["SYSTEM_ACTOR", "WEBHOOK_ACTOR", "actor_label", "record_audit"]
