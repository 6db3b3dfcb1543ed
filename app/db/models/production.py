from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, JSON, ForeignKey, Index, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt
from services.production.batch_ranges import BatchSlot
from services.production.ranges import BatchRange
from services.production.stages import StageTrack


class BindingAdvice(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "prd_binding_advice"
    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default="pending", nullable=False, index=True)  # pending/in_production/completed/cancelled
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    job_cards: Mapped[list["JobCard"]] = relationship(back_populates="binding_advice", order_by="JobCard.created_at")


class JobCard(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "prd_job_card"
    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    binding_advice_id: Mapped[str] = mapped_column(ForeignKey("prd_binding_advice.id"), nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default="active", nullable=False, index=True)  # active/completed/cancelled
    current_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    current_stage_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stage_allocations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    products: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # [{product_id, product_name, quantity}]
    fully_planned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispatched_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    available_for_dispatch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    binding_advice: Mapped[BindingAdvice] = relationship(back_populates="job_cards")
    batches: Mapped[list["ProductionBatch"]] = relationship(back_populates="job_card", order_by="ProductionBatch.batch_number")

    @property
    def stage_track(self) -> StageTrack:
        return StageTrack.from_allocation_list(self.stage_allocations or [], self.current_stage_index)

    def live_batches(self) -> list["ProductionBatch"]:
        return [b for b in self.batches if b.status != "cancelled"]


class ProductionBatch(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "prd_batch"
    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    job_card_id: Mapped[str] = mapped_column(ForeignKey("prd_job_card.id"), nullable=False, index=True)
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False)
    range_from: Mapped[int | None] = mapped_column(Integer, nullable=True)
    range_to: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="active", nullable=False, index=True)  # active/completed/cancelled
    current_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    current_stage_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stage_progress: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    products: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # [{product_id, product_name, quantity, completed_quantity}]
    dispatched_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    available_for_dispatch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128), default="system", nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    job_card: Mapped[JobCard] = relationship(back_populates="batches")

    __table_args__ = (UniqueConstraint("job_card_id", "batch_number", name="uq_prd_batch_number"),)

    @property
    def range(self) -> BatchRange | None:
        if self.range_from is None or self.range_to is None:
            return None
        return BatchRange(self.range_from, self.range_to)

    @property
    def quantity(self) -> int:
        r = self.range
        return r.quantity if r else 0

    @property
    def stage_track(self) -> StageTrack:
        return StageTrack.from_progress_map(self.stage_progress or {}, self.current_stage_index)

    def slot(self) -> BatchSlot:
        return BatchSlot(self.batch_number, self.range, self.status)


Index("ix_prd_batch_job_range", ProductionBatch.job_card_id, ProductionBatch.range_from)


class Dispatch(Base, HasId, HasCreatedAt):
    __tablename__ = "prd_dispatch"
    tenant_id: Mapped[str] = mapped_column(String(64), default="default", index=True, nullable=False)
    job_card_id: Mapped[str] = mapped_column(ForeignKey("prd_job_card.id"), nullable=False, index=True)
    batch_id: Mapped[str | None] = mapped_column(ForeignKey("prd_batch.id"), nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    dispatched_by: Mapped[str] = mapped_column(String(128), nullable=False)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
