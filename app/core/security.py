from __future__ import annotations

import os
from dataclasses import dataclass, field

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from app.core.tenant import get_tenant_id

bearer = HTTPBearer(auto_error=False)

# Tokens come from the plant's identity provider; this service only reads the claims
# to attribute batches, progress and dispatches to a person.
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_ISSUER = os.getenv("JWT_ISSUER", "notebook-iam")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "notebook-production")


@dataclass
class Principal:
    user_id: str | None = None
    username: str = "anonymous"
    tenant_id: str = "default"
    roles: list[str] = field(default_factory=list)  # e.g. planner, floor_supervisor, dispatch

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


def _anonymous() -> Principal:
    return Principal(tenant_id=get_tenant_id())


def principal_from_token(token: str | None) -> Principal:
    """Claims of a bearer token; an absent, expired or forged token reads as anonymous."""
    if not token:
        return _anonymous()
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG], audience=JWT_AUDIENCE, issuer=JWT_ISSUER)
    except JWTError:
        return _anonymous()

    return Principal(
        user_id=claims.get("sub"),
        username=claims.get("email") or claims.get("sub") or "unknown",
        tenant_id=claims.get("tid") or get_tenant_id(),
        roles=sorted(set(claims.get("roles") or [])),
    )


def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Principal:
    return principal_from_token(creds.credentials if creds else None)
