from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Callable

from fastapi import Request, Response

from app.core.tenant import get_tenant_id
from app.core.security import principal_from_token
from app.db.session import SessionLocal
from app.core.audit import audit_request

logger = logging.getLogger(__name__)

# 0 keeps only failed requests in the trail.
AUDIT_ALL_WRITES = os.getenv("AUDIT_ALL_WRITES", "1") not in ("0", "false", "False")

WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-Id") or str(uuid.uuid4())


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _actor(request: Request) -> str:
    authz = request.headers.get("Authorization") or ""
    if not authz.lower().startswith("bearer "):
        return "anonymous"
    principal = principal_from_token(authz.split(" ", 1)[1].strip())
    return principal.username if principal.authenticated else "anonymous"


def _record(request: Request, *, action: str, request_id: str, tenant_id: str, status_code: int, started: float) -> None:
    with SessionLocal() as db:
        audit_request(
            db,
            actor=_actor(request),
            action=action,
            path=request.url.path,
            method=request.method,
            status_code=status_code,
            duration_ms=int((time.perf_counter() - started) * 1000),
            request_id=request_id,
            tenant_id=tenant_id,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        db.commit()


async def audit_http_middleware(request: Request, call_next: Callable) -> Response:
    """Correlation id plus an audit row for every write and every failed request."""
    request_id = _request_id(request)
    tenant_id = get_tenant_id()
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s (request %s)", request.method, request.url.path, request_id)
        _record(request, action="http.exception", request_id=request_id, tenant_id=tenant_id, status_code=500,
                started=started)
        raise

    response.headers["X-Request-Id"] = request_id
    if response.status_code >= 400 or (AUDIT_ALL_WRITES and request.method in WRITE_METHODS):
        if response.status_code >= 400:
            logger.info("%s %s -> %s (request %s)", request.method, request.url.path, response.status_code, request_id)
        _record(request, action="http.request", request_id=request_id, tenant_id=tenant_id,
                status_code=response.status_code, started=started)
    return response
