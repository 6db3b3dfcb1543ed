from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog
from app.core.tenant import get_tenant_id


def _json_safe(payload: dict | None) -> dict[str, Any]:
    payload = payload or {}
    try:
        json.dumps(payload)
    except (TypeError, ValueError):
        return {"_payload_error": "non_json", "_payload_repr": repr(payload)}
    return payload


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
    tenant_id: str | None = None,
) -> AuditLog:
    """Record a production change on the caller's session.

    The row commits (or rolls back) with the change it describes.
    """
    row = AuditLog(
        tenant_id=tenant_id or get_tenant_id(),
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=True,
        payload=_json_safe(payload),
    )
    db.add(row)
    return row


def audit_request(
    db: Session,
    *,
    actor: str,
    action: str,
    path: str,
    method: str,
    status_code: int,
    duration_ms: int,
    request_id: str,
    tenant_id: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    row = AuditLog(
        tenant_id=tenant_id,
        actor=actor,
        action=action,
        entity_type="http",
        entity_id=path,
        request_id=request_id,
        method=method,
        status_code=status_code,
        duration_ms=duration_ms,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:256] or None,
        success=200 <= status_code < 400,
        payload={},
    )
    db.add(row)
    return row
