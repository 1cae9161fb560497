from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from railfleet.domain.models import AuditLog


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"


@dataclass(frozen=True)
class Actor:
    # Who performed a mutation, as recorded on audit and history rows.
    email: str | None
    name: str | None = None
    ip_address: str | None = None


SYSTEM_ACTOR = Actor(email="system@railfleet.app", name="System")


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_snapshot(value: Any) -> Any:
    # Recursively scrub credential-like fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_snapshot(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_snapshot(item) for item in value]
    return value


def client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45] or None
    return request.client.host if request.client else None


def record(
    session: AsyncSession,
    *,
    tenant_id: str | None,
    actor: Actor,
    action: str,
    entity_type: str,
    entity_id: str | int | None,
    description: str,
    old_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row on the caller's session.

    The row commits or rolls back together with the business mutation it
    describes; callers own the transaction.
    """
    entry = AuditLog(
        tenant_id=tenant_id,
        user_email=actor.email,
        user_name=actor.name,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_value=sanitize_snapshot(old_value) if old_value is not None else None,
        new_value=sanitize_snapshot(new_value) if new_value is not None else None,
        description=description,
        ip_address=actor.ip_address,
    )
    session.add(entry)
    logger.debug(
        "audit_staged tenant_id=%s action=%s entity_type=%s entity_id=%s",
        tenant_id,
        action,
        entity_type,
        entry.entity_id,
    )
    return entry
