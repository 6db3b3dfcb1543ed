from __future__ import annotations
from sqlalchemy import String, JSON, Boolean, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

class AuditLog(Base, HasId, HasCreatedAt):
    """Append-only trail of production changes and the HTTP requests that caused them.

    Service rows use entity_type BindingAdvice/JobCard/ProductionBatch; the middleware
    writes entity_type "http" with the request path as entity_id.
    """

    __tablename__ = "sys_audit_log"
    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)  # e.g. batch.create, http.request
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(256), nullable=True)

    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    method: Mapped[str | None] = mapped_column(String(8), nullable=True)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)  # quantities, ranges, stage keys

Index("ix_audit_tenant_time", AuditLog.tenant_id, AuditLog.created_at)
Index("ix_audit_entity", AuditLog.entity_type, AuditLog.entity_id)
