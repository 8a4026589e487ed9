"""Structured logging helper for billing endpoints and jobs."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def log_billing_event(*, message: str, request_id: Optional[str] = None, tenant_id: Optional[str] = None,
                      actor: Optional[str] = None, level: int = logging.INFO,
                      extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"message": message}
    if request_id:
        payload["request_id"] = request_id
    if tenant_id:
        payload["tenant_id"] = str(tenant_id)
    if actor:
        payload["actor"] = actor
    if extra:
        payload.update(extra)
    logger.log(level, payload)
