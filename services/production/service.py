from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.tenant import get_tenant_id
from app.db.models.production import BindingAdvice, JobCard, ProductionBatch, Dispatch
from app.events.bus import publish
from services.production.batch_ranges import (
    calculate_remaining_quantity,
    find_range_for_quantity,
    find_range_gaps,
    get_batch_statistics,
    get_next_available_range,
    validate_batch_range,
    validate_complete_coverage,
)
from services.production.quantities import (
    BATCH_PRODUCT,
    BINDING_ADVICE,
    DISPATCH,
    HOLDING_STATUSES,
    JOB_CARD,
    JobCardAllocation,
    QuantityValidation,
    binding_advice_summary,
    calculate_binding_advice_balance,
    calculate_percentage,
    job_card_summary,
    stage_summary,
    validate_quantity_allocation,
)
from services.production.ranges import BatchRange, format_range, quantity_of
from services.production.stages import StageTrack, advance, record_completion, start_tracking

logger = logging.getLogger(__name__)


class ProductionNotFound(LookupError):
    pass


class AllocationRejected(ValueError):
    """An allocation, progress or dispatch request that would break a quantity invariant."""

    def __init__(self, message: str, *, level: str | None = None, max_allowed: int | None = None,
                 suggested_range: BatchRange | None = None):
        super().__init__(message)
        self.message = message
        self.level = level
        self.max_allowed = max_allowed
        self.suggested_range = suggested_range

    @classmethod
    def from_validation(cls, check: QuantityValidation) -> "AllocationRejected":
        return cls(check.message, level=check.level, max_allowed=check.max_allowed)


def _require(check: QuantityValidation) -> None:
    if not check.is_valid:
        raise AllocationRejected.from_validation(check)


# ---- Lookups ----
def get_binding_advice(db: Session, advice_id: str, *, lock: bool = False) -> BindingAdvice:
    q = db.query(BindingAdvice).filter(BindingAdvice.id == advice_id, BindingAdvice.tenant_id == get_tenant_id())
    if lock:
        q = q.with_for_update().populate_existing()
    advice = q.first()
    if not advice:
        raise ProductionNotFound("Binding advice not found")
    return advice


def get_job_card(db: Session, job_card_id: str, *, lock: bool = False) -> JobCard:
    q = db.query(JobCard).filter(JobCard.id == job_card_id, JobCard.tenant_id == get_tenant_id())
    if lock:
        q = q.with_for_update().populate_existing()
    jc = q.first()
    if not jc:
        raise ProductionNotFound("Job card not found")
    return jc


def get_batch(db: Session, batch_id: str, *, lock: bool = False) -> ProductionBatch:
    q = db.query(ProductionBatch).filter(ProductionBatch.id == batch_id, ProductionBatch.tenant_id == get_tenant_id())
    if lock:
        q = q.with_for_update().populate_existing()
    batch = q.first()
    if not batch:
        raise ProductionNotFound("Production batch not found")
    return batch


def lock_job_card_scope(db: Session, job_card_id: str) -> JobCard:
    """Lock the binding advice, then the job card.

    Completion rolls up into both rows, so every writer takes them in this order.
    """
    jc = get_job_card(db, job_card_id)
    get_binding_advice(db, jc.binding_advice_id, lock=True)
    return get_job_card(db, job_card_id, lock=True)


def lock_batch_scope(db: Session, batch_id: str) -> ProductionBatch:
    """Lock advice, job card and batch, parents first, before a change that rolls up."""
    batch = get_batch(db, batch_id)
    lock_job_card_scope(db, batch.job_card_id)
    return get_batch(db, batch_id, lock=True)


# ---- Ledger views ----
def advice_allocations(advice: BindingAdvice) -> list[JobCardAllocation]:
    return [
        JobCardAllocation(job_card_id=jc.id, allocated_quantity=jc.quantity, status=jc.status, allocated_date=jc.created_at)
        for jc in advice.job_cards
    ]


def advice_remaining(advice: BindingAdvice) -> int:
    return calculate_binding_advice_balance(advice.quantity, advice_allocations(advice))


def get_binding_advice_quantity(advice: BindingAdvice) -> dict:
    allocations = advice_allocations(advice)
    summary = binding_advice_summary(advice.quantity, allocations)
    return {
        "binding_advice_id": advice.id,
        "total_quantity": advice.quantity,
        "allocated_to_job_cards": summary.allocated,
        "remaining_balance": summary.remaining,
        "job_card_allocations": [
            {
                "job_card_id": a.job_card_id,
                "allocated_quantity": a.allocated_quantity,
                "status": a.status,
                "allocated_date": a.allocated_date.isoformat() if a.allocated_date else None,
            }
            for a in allocations
        ],
        "summary": summary.to_dict(),
    }


def get_job_card_quantity(jc: JobCard) -> dict:
    slots = [b.slot() for b in jc.batches]
    live = [s for s in slots if s.status != "cancelled"]
    track = jc.stage_track
    if jc.live_batches():
        finished = sum(b.stage_track.finished_quantity for b in jc.live_batches())
    else:
        finished = track.finished_quantity
    # Only the first stage draws on the job card; later stages draw on their predecessor.
    summary = job_card_summary(jc.quantity, track.entries[:1], finished)
    return {
        "job_card_id": jc.id,
        "binding_advice_id": jc.binding_advice_id,
        "total_allocated": jc.quantity,
        "batched_quantity": jc.quantity - calculate_remaining_quantity(jc.quantity, live),
        "unbatched_quantity": calculate_remaining_quantity(jc.quantity, live),
        "remaining_balance": summary.remaining,
        "summary": summary.to_dict(),
        "stages": [stage_summary(e).to_dict() | {"stage_key": e.stage_key} for e in track.entries],
        "batch_statistics": get_batch_statistics(slots),
    }


def _product_balances(jc: JobCard) -> dict[str, int]:
    balances = {p["product_id"]: int(p["quantity"]) for p in (jc.products or [])}
    for batch in jc.live_batches():
        for p in batch.products or []:
            if p["product_id"] in balances:
                balances[p["product_id"]] -= int(p["quantity"])
    return balances


def _product_names(jc: JobCard) -> dict[str, str | None]:
    return {p["product_id"]: p.get("product_name") for p in (jc.products or [])}


def _clean_products(products: Iterable[dict] | None, total: int) -> list[dict]:
    given = list(products or [])
    rows = [dict(p) for p in given if int(p.get("quantity") or 0) != 0]
    if given and not rows:
        raise AllocationRejected("Product quantities must sum to the total quantity")
    seen: set[str] = set()
    for p in rows:
        if p["product_id"] in seen:
            raise AllocationRejected(f"Product {p['product_id']} is listed twice")
        seen.add(p["product_id"])
        if int(p["quantity"]) < 0:
            raise AllocationRejected("Quantity cannot be negative")
    if rows and sum(int(p["quantity"]) for p in rows) != total:
        raise AllocationRejected("Product quantities must sum to the total quantity")
    return rows


def _apply_job_card_track(jc: JobCard, track: StageTrack) -> None:
    jc.stage_allocations = track.to_allocation_list()
    jc.current_stage_index = track.current_index
    jc.current_stage = track.current_stage_key
    jc.progress = track.progress


def _apply_batch_track(batch: ProductionBatch, track: StageTrack) -> None:
    batch.stage_progress = track.to_progress_map()
    batch.current_stage_index = track.current_index
    batch.current_stage = track.current_stage_key


def _job_card_started(jc: JobCard) -> bool:
    track = jc.stage_track
    return track.current_index > 0 or track.current.completed_quantity + track.current.rejected_quantity > 0


# ---- Binding advice ----
def create_binding_advice(db: Session, *, number: str, quantity: int, client_name: str | None = None,
                          meta: dict | None = None, actor: str) -> BindingAdvice:
    if quantity <= 0:
        raise AllocationRejected("Quantity must be greater than 0", level=BINDING_ADVICE)
    advice = BindingAdvice(
        tenant_id=get_tenant_id(),
        number=number,
        client_name=client_name,
        quantity=quantity,
        status="pending",
        meta=meta or {},
    )
    db.add(advice)
    db.flush()
    publish(db, "production.binding_advice.created", {"id": advice.id, "number": advice.number, "quantity": quantity})
    audit(db, actor=actor, action="binding_advice.create", entity_type="BindingAdvice", entity_id=advice.id,
          payload={"quantity": quantity})
    db.commit()
    db.refresh(advice)
    return advice


# ---- Job cards ----
def create_job_card(db: Session, binding_advice_id: str, *, quantity: int, products: list[dict] | None = None,
                    number: str | None = None, actor: str) -> JobCard:
    advice = get_binding_advice(db, binding_advice_id, lock=True)
    if advice.status in ("completed", "cancelled"):
        raise AllocationRejected(f"Binding advice {advice.number} is {advice.status}")

    _require(validate_quantity_allocation(quantity, advice_remaining(advice), BINDING_ADVICE))
    rows = _clean_products(products, quantity)

    track = start_tracking(quantity, {p["product_id"]: int(p["quantity"]) for p in rows} or None)
    jc = JobCard(
        tenant_id=get_tenant_id(),
        binding_advice=advice,
        number=number or f"JC-{advice.number}-{len(advice.job_cards) + 1}",
        quantity=quantity,
        status="active",
        products=[{"product_id": p["product_id"], "product_name": p.get("product_name"), "quantity": int(p["quantity"])}
                  for p in rows],
        dispatched_quantity=0,
        available_for_dispatch=0,
    )
    _apply_job_card_track(jc, track)
    db.add(jc)
    if advice.status == "pending":
        advice.status = "in_production"
    db.flush()

    publish(db, "production.job_card.created", {
        "id": jc.id, "binding_advice_id": advice.id, "quantity": quantity,
        "remaining_balance": advice_remaining(advice),
    })
    audit(db, actor=actor, action="job_card.create", entity_type="JobCard", entity_id=jc.id,
          payload={"binding_advice_id": advice.id, "quantity": quantity})
    db.commit()
    db.refresh(jc)
    return jc


def cancel_job_card(db: Session, job_card_id: str, *, actor: str) -> JobCard:
    jc = lock_job_card_scope(db, job_card_id)
    if jc.status != "active":
        raise AllocationRejected(f"Only active job cards can be cancelled (status is {jc.status})")
    if jc.live_batches():
        raise AllocationRejected("Cancel the job card's batches first")
    if jc.dispatched_quantity > 0:
        raise AllocationRejected("Job card has dispatched units and cannot be cancelled")

    jc.status = "cancelled"
    advice = jc.binding_advice
    db.flush()
    if advice.status == "in_production" and not any(j.status in HOLDING_STATUSES for j in advice.job_cards):
        advice.status = "pending"

    publish(db, "production.job_card.cancelled", {
        "id": jc.id, "binding_advice_id": advice.id, "released_quantity": jc.quantity,
        "remaining_balance": advice_remaining(advice),
    })
    audit(db, actor=actor, action="job_card.cancel", entity_type="JobCard", entity_id=jc.id,
          payload={"released_quantity": jc.quantity})
    db.commit()
    db.refresh(jc)
    return jc


def mark_job_card_planned(db: Session, job_card_id: str, *, actor: str) -> JobCard:
    jc = get_job_card(db, job_card_id, lock=True)
    result = validate_complete_coverage([b.slot() for b in jc.live_batches()], jc.quantity)
    if not result.is_valid:
        raise AllocationRejected(result.error, level=JOB_CARD, suggested_range=result.suggested_range)
    jc.fully_planned = True
    publish(db, "production.job_card.planned", {"id": jc.id, "batches": len(jc.live_batches())})
    audit(db, actor=actor, action="job_card.plan", entity_type="JobCard", entity_id=jc.id)
    db.commit()
    db.refresh(jc)
    return jc


def record_job_card_progress(db: Session, job_card_id: str, *, completed, rejected=None, actor: str) -> JobCard:
    jc = lock_job_card_scope(db, job_card_id)
    if jc.status != "active":
        raise AllocationRejected(f"Job card is {jc.status}")
    if jc.live_batches():
        raise AllocationRejected("Job card is tracked per batch; record progress on its batches")

    track = record_completion(jc.stage_track, completed, rejected)
    _apply_job_card_track(jc, track)
    if track.is_complete:
        jc.status = "completed"
        jc.completed_at = datetime.utcnow()
        jc.available_for_dispatch = track.finished_quantity
        publish(db, "production.job_card.completed", {"id": jc.id, "available_for_dispatch": jc.available_for_dispatch})
        _roll_up_advice(db, jc.binding_advice)

    entry = track.current
    publish(db, "production.job_card.progress", {
        "id": jc.id, "stage": entry.stage_key, "completed": entry.completed_quantity,
        "allocated": entry.allocated_quantity, "can_move_next": entry.can_move_next,
    })
    audit(db, actor=actor, action="job_card.progress", entity_type="JobCard", entity_id=jc.id,
          payload={"stage": entry.stage_key, "completed": entry.completed_quantity, "rejected": entry.rejected_quantity})
    db.commit()
    db.refresh(jc)
    return jc


def advance_job_card_stage(db: Session, job_card_id: str, *, actor: str) -> JobCard:
    jc = get_job_card(db, job_card_id, lock=True)
    if jc.status != "active":
        raise AllocationRejected(f"Job card is {jc.status}")
    if jc.live_batches():
        raise AllocationRejected("Job card is tracked per batch; advance its batches")

    before = jc.stage_track
    track = advance(before)
    _apply_job_card_track(jc, track)
    publish(db, "production.job_card.advanced", {
        "id": jc.id, "from": before.current_stage_key, "to": track.current_stage_key,
        "handed_off": track.current.allocated_quantity,
    })
    audit(db, actor=actor, action="job_card.advance", entity_type="JobCard", entity_id=jc.id,
          payload={"stage": track.current_stage_key})
    db.commit()
    db.refresh(jc)
    return jc


def dispatch_job_card(db: Session, job_card_id: str, *, quantity: int, actor: str) -> Dispatch:
    jc = get_job_card(db, job_card_id, lock=True)
    if jc.live_batches():
        raise AllocationRejected("Job card is tracked per batch; dispatch from its batches")
    _require(validate_quantity_allocation(quantity, jc.available_for_dispatch - jc.dispatched_quantity, DISPATCH))

    jc.dispatched_quantity += quantity
    d = Dispatch(tenant_id=get_tenant_id(), job_card_id=jc.id, batch_id=None, quantity=quantity, dispatched_by=actor)
    db.add(d)
    db.flush()
    publish(db, "production.dispatched", {"dispatch_id": d.id, "job_card_id": jc.id, "quantity": quantity},
            aggregate_id=jc.id)
    audit(db, actor=actor, action="job_card.dispatch", entity_type="JobCard", entity_id=jc.id,
          payload={"quantity": quantity, "dispatch_id": d.id})
    db.commit()
    db.refresh(d)
    return d


# ---- Batches ----
def suggest_batch_range(db: Session, job_card_id: str, requested_quantity: int | None = None) -> dict:
    if requested_quantity is not None and requested_quantity <= 0:
        raise AllocationRejected("Quantity must be greater than 0", level=JOB_CARD)
    jc = get_job_card(db, job_card_id)
    live = [b.slot() for b in jc.live_batches()]
    nxt = get_next_available_range(live, jc.quantity, requested_quantity)
    return {
        "job_card_id": jc.id,
        "total_quantity": jc.quantity,
        "remaining_quantity": calculate_remaining_quantity(jc.quantity, live),
        "next_range": nxt.to_dict() if nxt else None,
        "gaps": [g.to_dict() for g in find_range_gaps(live, jc.quantity)],
    }


def _resolve_range(jc: JobCard, live: list, batch_range: BatchRange | None, quantity: int | None) -> BatchRange:
    """Single creation path: a count-only request becomes the first free range that fits it."""
    if (batch_range is None) == (quantity is None):
        raise AllocationRejected("Provide either a unit range or a quantity for the batch")

    remaining = calculate_remaining_quantity(jc.quantity, live)
    if batch_range is not None:
        result = validate_batch_range(batch_range, live, jc.quantity)
        if not result.is_valid:
            raise AllocationRejected(result.error, level=JOB_CARD, max_allowed=remaining,
                                     suggested_range=result.suggested_range)
        _require(validate_quantity_allocation(quantity_of(batch_range), remaining, JOB_CARD))
        return batch_range

    _require(validate_quantity_allocation(quantity, remaining, JOB_CARD))
    found = find_range_for_quantity(live, jc.quantity, quantity)
    if found is None:
        largest = max(find_range_gaps(live, jc.quantity), key=quantity_of)
        raise AllocationRejected(
            f"No contiguous free range of {quantity} units; largest free range is "
            f"{format_range(largest)} ({quantity_of(largest)} units)",
            level=JOB_CARD,
            max_allowed=quantity_of(largest),
            suggested_range=largest,
        )
    return found


def _batch_products(jc: JobCard, products: list[dict] | None, quantity: int) -> list[dict]:
    if not jc.products:
        if products:
            raise AllocationRejected("Job card has no product breakdown")
        return []

    balances = _product_balances(jc)
    names = _product_names(jc)
    if not products:
        if len(balances) != 1:
            raise AllocationRejected("Product quantities are required for a multi-product job card")
        products = [{"product_id": next(iter(balances)), "quantity": quantity}]

    rows = _clean_products(products, quantity)
    if not rows:
        raise AllocationRejected("Product quantities must sum to the total quantity")
    for p in rows:
        if p["product_id"] not in balances:
            raise AllocationRejected(f"Product {p['product_id']} is not part of this job card")
        check = validate_quantity_allocation(int(p["quantity"]), balances[p["product_id"]], BATCH_PRODUCT)
        if not check.is_valid:
            name = names.get(p["product_id"]) or p["product_id"]
            raise AllocationRejected(f"{name}: {check.message}", level=BATCH_PRODUCT, max_allowed=check.max_allowed)
    return [
        {"product_id": p["product_id"], "product_name": names.get(p["product_id"]), "quantity": int(p["quantity"]),
         "completed_quantity": 0}
        for p in rows
    ]


def create_batch(db: Session, job_card_id: str, *, batch_range: BatchRange | None = None, quantity: int | None = None,
                 products: list[dict] | None = None, notes: str | None = None, actor: str) -> ProductionBatch:
    jc = get_job_card(db, job_card_id, lock=True)
    if jc.status != "active":
        raise AllocationRejected(f"Job card is {jc.status}")
    if _job_card_started(jc):
        raise AllocationRejected("Job card is already tracked as a whole and cannot be split into batches")

    live = [b.slot() for b in jc.live_batches()]
    unit_range = _resolve_range(jc, live, batch_range, quantity)
    qty = quantity_of(unit_range)
    rows = _batch_products(jc, products, qty)

    track = start_tracking(qty, {p["product_id"]: p["quantity"] for p in rows} or None)
    batch = ProductionBatch(
        tenant_id=get_tenant_id(),
        job_card=jc,
        batch_number=max((b.batch_number for b in jc.batches), default=0) + 1,
        range_from=unit_range.start,
        range_to=unit_range.end,
        status="active",
        products=rows,
        dispatched_quantity=0,
        available_for_dispatch=0,
        notes=notes,
        created_by=actor,
    )
    _apply_batch_track(batch, track)
    db.add(batch)
    db.flush()

    publish(db, "production.batch.created", {
        "id": batch.id, "job_card_id": jc.id, "batch_number": batch.batch_number,
        "range": unit_range.to_dict(), "quantity": qty,
    })
    audit(db, actor=actor, action="batch.create", entity_type="ProductionBatch", entity_id=batch.id,
          payload={"job_card_id": jc.id, "range": unit_range.to_dict()})
    db.commit()
    db.refresh(batch)
    return batch


def record_batch_progress(db: Session, batch_id: str, *, completed, rejected=None, actor: str) -> ProductionBatch:
    batch = lock_batch_scope(db, batch_id)
    if batch.status != "active":
        raise AllocationRejected(f"Batch #{batch.batch_number} is {batch.status}")

    track = record_completion(batch.stage_track, completed, rejected)
    _apply_batch_track(batch, track)
    entry = track.current
    if track.is_complete:
        _complete_batch(db, batch, track)

    publish(db, "production.batch.progress", {
        "id": batch.id, "stage": entry.stage_key, "completed": entry.completed_quantity,
        "rejected": entry.rejected_quantity, "allocated": entry.allocated_quantity,
        "can_move_next": entry.can_move_next,
    })
    audit(db, actor=actor, action="batch.progress", entity_type="ProductionBatch", entity_id=batch.id,
          payload={"stage": entry.stage_key, "completed": entry.completed_quantity, "rejected": entry.rejected_quantity})
    db.commit()
    db.refresh(batch)
    return batch


def advance_batch_stage(db: Session, batch_id: str, *, actor: str) -> ProductionBatch:
    batch = get_batch(db, batch_id, lock=True)
    if batch.status != "active":
        raise AllocationRejected(f"Batch #{batch.batch_number} is {batch.status}")

    before = batch.stage_track
    track = advance(before)
    _apply_batch_track(batch, track)
    publish(db, "production.batch.advanced", {
        "id": batch.id, "from": before.current_stage_key, "to": track.current_stage_key,
        "handed_off": track.current.allocated_quantity,
    })
    audit(db, actor=actor, action="batch.advance", entity_type="ProductionBatch", entity_id=batch.id,
          payload={"stage": track.current_stage_key})
    db.commit()
    db.refresh(batch)
    return batch


def cancel_batch(db: Session, batch_id: str, *, actor: str) -> ProductionBatch:
    batch = lock_batch_scope(db, batch_id)
    if batch.status != "active":
        raise AllocationRejected(f"Only active batches can be cancelled (batch #{batch.batch_number} is {batch.status})")
    if batch.dispatched_quantity > 0:
        raise AllocationRejected(f"Batch #{batch.batch_number} has dispatched units")

    batch.status = "cancelled"
    jc = batch.job_card
    jc.fully_planned = False
    db.flush()
    _roll_up_job_card(db, jc)
    publish(db, "production.batch.cancelled", {
        "id": batch.id, "job_card_id": jc.id, "released_range": batch.range.to_dict() if batch.range else None,
    })
    audit(db, actor=actor, action="batch.cancel", entity_type="ProductionBatch", entity_id=batch.id)
    db.commit()
    db.refresh(batch)
    return batch


def dispatch_batch(db: Session, batch_id: str, *, quantity: int, actor: str) -> Dispatch:
    batch = lock_batch_scope(db, batch_id)
    _require(validate_quantity_allocation(quantity, batch.available_for_dispatch - batch.dispatched_quantity, DISPATCH))

    batch.dispatched_quantity += quantity
    d = Dispatch(tenant_id=get_tenant_id(), job_card_id=batch.job_card_id, batch_id=batch.id, quantity=quantity,
                 dispatched_by=actor)
    db.add(d)
    db.flush()
    _roll_up_job_card(db, batch.job_card)
    publish(db, "production.dispatched", {
        "dispatch_id": d.id, "job_card_id": batch.job_card_id, "batch_id": batch.id, "quantity": quantity,
    }, aggregate_id=batch.id)
    audit(db, actor=actor, action="batch.dispatch", entity_type="ProductionBatch", entity_id=batch.id,
          payload={"quantity": quantity, "dispatch_id": d.id})
    db.commit()
    db.refresh(d)
    return d


# ---- Cascade ----
def _complete_batch(db: Session, batch: ProductionBatch, track: StageTrack) -> None:
    """Every stage is done: release the finished units for dispatch and roll up."""
    batch.status = "completed"
    batch.current_stage = "completed"
    batch.completed_at = datetime.utcnow()
    batch.available_for_dispatch = track.finished_quantity
    finished = track.finished_by_product()
    if batch.products:
        batch.products = [{**p, "completed_quantity": finished.get(p["product_id"], 0)} for p in batch.products]
    db.flush()
    publish(db, "production.batch.completed", {
        "id": batch.id, "job_card_id": batch.job_card_id, "available_for_dispatch": batch.available_for_dispatch,
    })
    if batch.available_for_dispatch < batch.quantity:
        logger.info("Batch %s finished %s of %s units", batch.id, batch.available_for_dispatch, batch.quantity)
    _roll_up_job_card(db, batch.job_card)


def _roll_up_job_card(db: Session, jc: JobCard) -> None:
    live = jc.live_batches()
    jc.available_for_dispatch = sum(b.available_for_dispatch for b in live)
    jc.dispatched_quantity = sum(b.dispatched_quantity for b in jc.batches)
    done = [b for b in live if b.status == "completed"]
    jc.progress = calculate_percentage(sum(b.quantity for b in done), jc.quantity)

    if jc.status != "active" or not live or len(done) != len(live):
        return
    if not validate_complete_coverage([b.slot() for b in live], jc.quantity).is_valid:
        return
    jc.status = "completed"
    jc.current_stage = "completed"
    jc.completed_at = datetime.utcnow()
    db.flush()
    publish(db, "production.job_card.completed", {"id": jc.id, "available_for_dispatch": jc.available_for_dispatch})
    _roll_up_advice(db, jc.binding_advice)


def _roll_up_advice(db: Session, advice: BindingAdvice) -> None:
    holding = [j for j in advice.job_cards if j.status in HOLDING_STATUSES]
    if not holding or any(j.status != "completed" for j in holding):
        return
    if advice_remaining(advice) != 0:
        return
    advice.status = "completed"
    publish(db, "production.binding_advice.completed", {"id": advice.id, "quantity": advice.quantity})
