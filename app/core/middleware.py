from __future__ import annotations
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.tenant import reset_tenant_id, set_tenant_id

class TenantMiddleware(BaseHTTPMiddleware):
    """Scope every request to the tenant named in X-Tenant-Id (or the default tenant)."""

    async def dispatch(self, request: Request, call_next):
        token = set_tenant_id(request.headers.get("X-Tenant-Id"))
        try:
            return await call_next(request)
        finally:
            reset_tenant_id(token)
