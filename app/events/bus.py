from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.core.tenant import get_tenant_id
from app.events.outbox import OutboxEvent


def publish(
    db: Session,
    topic: str,
    payload: dict,
    *,
    aggregate_id: str | None = None,
    available_at: datetime | None = None,
) -> OutboxEvent:
    """Queue a production event on the caller's transaction.

    Nothing is committed here: the event becomes visible together with the change it
    describes, or not at all. `aggregate_id` defaults to the payload's "id".
    """
    payload = payload or {}
    evt = OutboxEvent(
        tenant_id=get_tenant_id(),
        topic=topic,
        aggregate_id=aggregate_id or payload.get("id"),
        payload=payload,
        available_at=available_at or datetime.utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    return evt


def pending_events(
    db: Session, *, topic_prefix: str | None = None, aggregate_id: str | None = None, limit: int = 100
) -> list[OutboxEvent]:
    q = db.query(OutboxEvent).filter(OutboxEvent.tenant_id == get_tenant_id(), OutboxEvent.delivered == False)  # noqa: E712
    if topic_prefix:
        q = q.filter(OutboxEvent.topic.startswith(topic_prefix))
    if aggregate_id:
        q = q.filter(OutboxEvent.aggregate_id == aggregate_id)
    return q.order_by(OutboxEvent.created_at.asc()).limit(limit).all()
