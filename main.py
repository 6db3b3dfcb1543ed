from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from app.core.middleware import TenantMiddleware
from app.core.audit_middleware import audit_http_middleware
from app.db.base import Base
from app.db.session import engine
from app.db import models  # noqa: F401 production, audit and outbox tables

from services.production.api import router as production_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Alembic owns the schema outside local development.
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "1") not in ("0", "false", "False")

app = FastAPI(title="Notebook Production", version="0.1.0")

@app.middleware("http")
async def audit_requests(request, call_next):
    return await audit_http_middleware(request, call_next)

# Outermost, so the audit trail sees the request's tenant.
app.add_middleware(TenantMiddleware)

app.include_router(production_router)

@app.on_event("startup")
async def create_tables():
    if AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
