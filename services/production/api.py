from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from app.db.models.production import BindingAdvice, JobCard, ProductionBatch, Dispatch
from app.events.bus import pending_events
from services.production import service
from services.production.schemas import BatchIn, BindingAdviceIn, DispatchIn, JobCardIn, ProgressIn
from services.production.stages import DEFAULT_PRODUCTION_STAGES

router = APIRouter(prefix="/production", tags=["production"])


def _run(fn: Callable, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except service.ProductionNotFound as e:
        raise HTTPException(404, str(e))
    except service.AllocationRejected as e:
        detail = {"error": e.message}
        if e.level:
            detail["level"] = e.level
        if e.max_allowed is not None:
            detail["max_allowed"] = e.max_allowed
        if e.suggested_range is not None:
            detail["suggested_range"] = e.suggested_range.to_dict()
        raise HTTPException(409, detail)
    except ValueError as e:
        # stage rule violations from the tracker
        raise HTTPException(409, {"error": str(e)})


# ---- Serializers ----
def _advice_out(a: BindingAdvice) -> dict:
    return {
        "id": a.id,
        "number": a.number,
        "client_name": a.client_name,
        "quantity": a.quantity,
        "status": a.status,
        "created_at": a.created_at,
        "quantity_tracking": service.get_binding_advice_quantity(a),
    }


def _batch_out(b: ProductionBatch) -> dict:
    return {
        "id": b.id,
        "job_card_id": b.job_card_id,
        "batch_number": b.batch_number,
        "range": b.range.to_dict() if b.range else None,
        "quantity": b.quantity,
        "status": b.status,
        "current_stage": b.current_stage,
        "current_stage_index": b.current_stage_index,
        "stage_progress": b.stage_progress,
        "products": b.products or [],
        "dispatched_quantity": b.dispatched_quantity,
        "available_for_dispatch": b.available_for_dispatch,
        "notes": b.notes,
        "created_by": b.created_by,
        "created_at": b.created_at,
        "completed_at": b.completed_at,
    }


def _job_card_out(jc: JobCard, *, with_batches: bool = True) -> dict:
    out = {
        "id": jc.id,
        "binding_advice_id": jc.binding_advice_id,
        "number": jc.number,
        "quantity": jc.quantity,
        "status": jc.status,
        "current_stage": jc.current_stage,
        "current_stage_index": jc.current_stage_index,
        "progress": jc.progress,
        "stage_allocations": jc.stage_allocations,
        "products": jc.products or [],
        "fully_planned": jc.fully_planned,
        "dispatched_quantity": jc.dispatched_quantity,
        "available_for_dispatch": jc.available_for_dispatch,
        "created_at": jc.created_at,
        "completed_at": jc.completed_at,
    }
    if with_batches:
        out["batches"] = [_batch_out(b) for b in jc.batches]
        out["quantity_tracking"] = service.get_job_card_quantity(jc)
    return out


def _dispatch_out(d: Dispatch) -> dict:
    return {
        "id": d.id,
        "job_card_id": d.job_card_id,
        "batch_id": d.batch_id,
        "quantity": d.quantity,
        "dispatched_by": d.dispatched_by,
        "created_at": d.created_at,
    }


@router.get("/health")
def health():
    return {"ok": True, "service": "production"}


@router.get("/stages")
def list_stages():
    return [{"index": i, "key": s.key, "label": s.label, "description": s.description}
            for i, s in enumerate(DEFAULT_PRODUCTION_STAGES)]


# ---- Binding advice ----
@router.post("/binding-advices")
def create_binding_advice(payload: BindingAdviceIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    a = _run(service.create_binding_advice, db, number=payload.number, quantity=payload.quantity,
             client_name=payload.client_name, meta=payload.meta, actor=principal.username)
    return _advice_out(a)


@router.get("/binding-advices/{advice_id}")
def get_binding_advice(advice_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    a = _run(service.get_binding_advice, db, advice_id)
    out = _advice_out(a)
    out["job_cards"] = [_job_card_out(jc, with_batches=False) for jc in a.job_cards]
    return out


@router.post("/binding-advices/{advice_id}/job-cards")
def create_job_card(advice_id: str, payload: JobCardIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    jc = _run(service.create_job_card, db, advice_id, quantity=payload.quantity, number=payload.number,
              products=[p.model_dump() for p in payload.products], actor=principal.username)
    return _job_card_out(jc)


# ---- Job cards ----
@router.get("/job-cards/{job_card_id}")
def get_job_card(job_card_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _job_card_out(_run(service.get_job_card, db, job_card_id))


@router.post("/job-cards/{job_card_id}/cancel")
def cancel_job_card(job_card_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _job_card_out(_run(service.cancel_job_card, db, job_card_id, actor=principal.username))


@router.get("/job-cards/{job_card_id}/range-gaps")
def range_gaps(job_card_id: str, quantity: int | None = Query(default=None, gt=0), db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _run(service.suggest_batch_range, db, job_card_id, quantity)


@router.post("/job-cards/{job_card_id}/batches")
def create_batch(job_card_id: str, payload: BatchIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    b = _run(
        service.create_batch, db, job_card_id,
        batch_range=payload.range.to_range() if payload.range else None,
        quantity=payload.quantity,
        products=[p.model_dump() for p in payload.products],
        notes=payload.notes,
        actor=principal.username,
    )
    return _batch_out(b)


@router.post("/job-cards/{job_card_id}/plan")
def plan_job_card(job_card_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _job_card_out(_run(service.mark_job_card_planned, db, job_card_id, actor=principal.username))


@router.post("/job-cards/{job_card_id}/progress")
def job_card_progress(job_card_id: str, payload: ProgressIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    jc = _run(service.record_job_card_progress, db, job_card_id, completed=payload.completed_value(),
              rejected=payload.rejected_value(), actor=principal.username)
    return _job_card_out(jc)


@router.post("/job-cards/{job_card_id}/advance")
def job_card_advance(job_card_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _job_card_out(_run(service.advance_job_card_stage, db, job_card_id, actor=principal.username))


@router.post("/job-cards/{job_card_id}/dispatches")
def job_card_dispatch(job_card_id: str, payload: DispatchIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    d = _run(service.dispatch_job_card, db, job_card_id, quantity=payload.quantity, actor=principal.username)
    return _dispatch_out(d)


# ---- Batches ----
@router.get("/batches/{batch_id}")
def get_batch(batch_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _batch_out(_run(service.get_batch, db, batch_id))


@router.post("/batches/{batch_id}/progress")
def batch_progress(batch_id: str, payload: ProgressIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    b = _run(service.record_batch_progress, db, batch_id, completed=payload.completed_value(),
             rejected=payload.rejected_value(), actor=principal.username)
    return _batch_out(b)


@router.post("/batches/{batch_id}/advance")
def batch_advance(batch_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _batch_out(_run(service.advance_batch_stage, db, batch_id, actor=principal.username))


@router.post("/batches/{batch_id}/dispatches")
def batch_dispatch(batch_id: str, payload: DispatchIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    d = _run(service.dispatch_batch, db, batch_id, quantity=payload.quantity, actor=principal.username)
    return _dispatch_out(d)


@router.post("/batches/{batch_id}/cancel")
def cancel_batch(batch_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return _batch_out(_run(service.cancel_batch, db, batch_id, actor=principal.username))


# ---- Events ----
@router.get("/events")
def list_pending_events(aggregate_id: str | None = None, limit: int = Query(default=100, gt=0, le=500),
                        db: Session = Depends(get_db), principal=Depends(get_principal)):
    """Undelivered production events, oldest first, for a relay or an integration poll."""
    return [
        {
            "id": e.id,
            "topic": e.topic,
            "aggregate_id": e.aggregate_id,
            "payload": e.payload or {},
            "attempt_count": e.attempt_count,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in pending_events(db, topic_prefix="production.", aggregate_id=aggregate_id, limit=limit)
    ]
