from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId


class OutboxEvent(Base, HasId, HasCreatedAt):
    """Production events waiting for a relay.

    Rows are inserted in the same transaction as the allocation or stage change they
    announce. `aggregate_id` is the binding advice, job card or batch the event is
    about, so a consumer can replay one entity's history in order.
    """

    __tablename__ = "outbox_event"

    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    topic: Mapped[str] = mapped_column(String(128), nullable=False, index=True)  # production.<entity>.<verb>
    aggregate_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # Relay bookkeeping
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


Index("ix_outbox_aggregate_created", OutboxEvent.aggregate_id, OutboxEvent.created_at)
Index("ix_outbox_delivery", OutboxEvent.delivered, OutboxEvent.available_at)
