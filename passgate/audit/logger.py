"""Audit trail for identity events.

Entries go to a dedicated ``passgate.audit`` structlog logger so they can be routed
separately from application logs. Details are sanitized (sensitive fields stripped,
10KB max) because ceremony payloads can carry key material.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

audit_logger = structlog.get_logger("passgate.audit")

_SENSITIVE_FIELDS = frozenset(
    {
        "secret",
        "token",
        "session",
        "cookie",
        "authorization",
        "challenge",
        "public_key",
        "attestationobject",
        "clientdatajson",
        "signature",
    }
)

_MAX_DETAILS_BYTES = 10_240  # 10KB


def sanitize_details(details: dict[str, Any]) -> str:
    """Strip sensitive fields and enforce size limit."""
    sanitized = {k: v for k, v in details.items() if k.lower() not in _SENSITIVE_FIELDS}
    encoded = json.dumps(sanitized, default=str)
    if len(encoded) > _MAX_DETAILS_BYTES:
        encoded = encoded[:_MAX_DETAILS_BYTES]
    return encoded


def audit(
    *,
    action: str,
    user_id: str = "",
    details: dict[str, Any] | None = None,
    ip_address: str = "",
    request_id: str = "",
) -> None:
    """Record one audit event."""
    audit_logger.info(
        "audit",
        action=action,
        user_id=user_id,
        details=sanitize_details(details or {}),
        ip_address=ip_address,
        request_id=request_id,
    )
