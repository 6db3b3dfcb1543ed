import pytest

from app.db.models.production import BindingAdvice
from app.db.models.security_audit import AuditLog
from app.events.bus import pending_events
from services.production import service
from services.production.ranges import BatchRange
from services.production.stages import DEFAULT_PRODUCTION_STAGES

ACTOR = "planner@example.com"


def _advice(db, quantity=2000, number="BA-100"):
    return service.create_binding_advice(db, number=number, quantity=quantity, client_name="Lotus Schools", actor=ACTOR)


def _finish_batch(db, batch):
    while not batch.stage_track.is_last:
        batch = service.record_batch_progress(db, batch.id, completed=batch.stage_track.current.allocated_quantity,
                                              actor=ACTOR)
        batch = service.advance_batch_stage(db, batch.id, actor=ACTOR)
    return service.record_batch_progress(db, batch.id, completed=batch.stage_track.current.allocated_quantity,
                                         actor=ACTOR)


def test_job_cards_cannot_oversubscribe_the_advice(db):
    advice = _advice(db, quantity=1000)
    service.create_job_card(db, advice.id, quantity=600, actor=ACTOR)

    with pytest.raises(service.AllocationRejected) as exc:
        service.create_job_card(db, advice.id, quantity=500, actor=ACTOR)
    assert exc.value.message == "Requested quantity (500) exceeds available balance (400)"
    assert exc.value.max_allowed == 400

    service.create_job_card(db, advice.id, quantity=400, actor=ACTOR)
    tracking = service.get_binding_advice_quantity(service.get_binding_advice(db, advice.id))
    assert tracking["remaining_balance"] == 0
    assert tracking["allocated_to_job_cards"] == 1000


def test_cancelling_a_job_card_releases_its_quantity(db):
    advice = _advice(db, quantity=1000)
    jc = service.create_job_card(db, advice.id, quantity=1000, actor=ACTOR)
    service.cancel_job_card(db, jc.id, actor=ACTOR)

    advice = service.get_binding_advice(db, advice.id)
    assert service.advice_remaining(advice) == 1000
    assert advice.status == "pending"


def test_end_to_end_batch_flow(db):
    advice = _advice(db)
    jc = service.create_job_card(db, advice.id, quantity=2000, actor=ACTOR)
    assert jc.number == "JC-BA-100-1"

    b1 = service.create_batch(db, jc.id, batch_range=BatchRange(1, 1000), actor=ACTOR)
    assert b1.batch_number == 1
    assert b1.quantity == 1000

    suggestion = service.suggest_batch_range(db, jc.id)
    assert suggestion["next_range"] == {"from": 1001, "to": 2000}
    b2 = service.create_batch(db, jc.id, batch_range=BatchRange(1001, 2000), actor=ACTOR)
    assert b2.batch_number == 2

    b1 = service.record_batch_progress(db, b1.id, completed=1000, actor=ACTOR)
    assert b1.stage_progress["designing"]["can_move_next"] is True
    b1 = service.advance_batch_stage(db, b1.id, actor=ACTOR)
    assert b1.current_stage == "procurement"
    assert b1.stage_progress["procurement"]["allocated_quantity"] == 1000

    for stage in DEFAULT_PRODUCTION_STAGES[1:]:
        assert b1.current_stage == stage.key
        b1 = service.record_batch_progress(db, b1.id, completed=1000, actor=ACTOR)
        if b1.status == "active":
            b1 = service.advance_batch_stage(db, b1.id, actor=ACTOR)
    assert b1.status == "completed"
    assert all(s["status"] == "completed" for s in b1.stage_progress.values())
    assert b1.available_for_dispatch == 1000

    service.dispatch_batch(db, b1.id, quantity=1000, actor=ACTOR)
    b1 = service.get_batch(db, b1.id)
    assert b1.dispatched_quantity == b1.available_for_dispatch == 1000

    jc = service.get_job_card(db, jc.id)
    assert jc.status == "active"
    assert jc.dispatched_quantity == 1000
    assert jc.progress == 50


def test_overlapping_batch_is_rejected_with_suggestion(db):
    advice = _advice(db, quantity=1000)
    jc = service.create_job_card(db, advice.id, quantity=1000, actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(1, 100), actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(101, 200), actor=ACTOR)

    with pytest.raises(service.AllocationRejected) as exc:
        service.create_batch(db, jc.id, batch_range=BatchRange(150, 250), actor=ACTOR)
    assert "overlaps with existing batch #2 (101-200)" in exc.value.message
    assert exc.value.suggested_range == BatchRange(201, 301)


def test_count_only_batch_takes_first_fitting_gap(db):
    advice = _advice(db, quantity=1000)
    jc = service.create_job_card(db, advice.id, quantity=1000, actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(51, 100), actor=ACTOR)

    batch = service.create_batch(db, jc.id, quantity=200, actor=ACTOR)
    assert batch.range == BatchRange(101, 300)

    small = service.create_batch(db, jc.id, quantity=50, actor=ACTOR)
    assert small.range == BatchRange(1, 50)

    with pytest.raises(service.AllocationRejected) as exc:
        service.create_batch(db, jc.id, quantity=800, actor=ACTOR)
    assert exc.value.max_allowed == 700


def test_fragmented_space_reports_largest_gap(db):
    advice = _advice(db, quantity=300)
    jc = service.create_job_card(db, advice.id, quantity=300, actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(101, 200), actor=ACTOR)

    with pytest.raises(service.AllocationRejected) as exc:
        service.create_batch(db, jc.id, quantity=150, actor=ACTOR)
    assert exc.value.suggested_range == BatchRange(1, 100)
    assert "largest free range is 1-100" in exc.value.message


def test_cancelled_batch_frees_its_range(db):
    advice = _advice(db, quantity=300)
    jc = service.create_job_card(db, advice.id, quantity=300, actor=ACTOR)
    batch = service.create_batch(db, jc.id, batch_range=BatchRange(1, 300), actor=ACTOR)
    service.cancel_batch(db, batch.id, actor=ACTOR)

    again = service.create_batch(db, jc.id, batch_range=BatchRange(1, 300), actor=ACTOR)
    assert again.batch_number == 2


def test_planning_requires_full_coverage(db):
    advice = _advice(db, quantity=300)
    jc = service.create_job_card(db, advice.id, quantity=300, actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(1, 100), actor=ACTOR)
    service.create_batch(db, jc.id, batch_range=BatchRange(201, 300), actor=ACTOR)

    with pytest.raises(service.AllocationRejected) as exc:
        service.mark_job_card_planned(db, jc.id, actor=ACTOR)
    assert exc.value.message == "Gap between batch #1 (ends at 100) and batch #2 (starts at 201)"

    service.create_batch(db, jc.id, quantity=100, actor=ACTOR)
    assert service.mark_job_card_planned(db, jc.id, actor=ACTOR).fully_planned


def test_partial_yield_flows_to_dispatch_and_completes_the_cascade(db):
    advice = _advice(db, quantity=500)
    jc = service.create_job_card(db, advice.id, quantity=500, actor=ACTOR)
    batch = service.create_batch(db, jc.id, quantity=500, actor=ACTOR)

    batch = service.record_batch_progress(db, batch.id, completed=480, rejected=20, actor=ACTOR)
    batch = service.advance_batch_stage(db, batch.id, actor=ACTOR)
    assert batch.stage_progress["procurement"]["allocated_quantity"] == 480

    batch = _finish_batch(db, batch)
    assert batch.status == "completed"
    assert batch.available_for_dispatch == 480

    jc = service.get_job_card(db, jc.id)
    assert jc.status == "completed"
    assert jc.available_for_dispatch == 480
    assert service.get_binding_advice(db, advice.id).status == "completed"

    with pytest.raises(service.AllocationRejected):
        service.dispatch_batch(db, batch.id, quantity=481, actor=ACTOR)
    service.dispatch_batch(db, batch.id, quantity=300, actor=ACTOR)
    service.dispatch_batch(db, batch.id, quantity=180, actor=ACTOR)
    with pytest.raises(service.AllocationRejected) as exc:
        service.dispatch_batch(db, batch.id, quantity=1, actor=ACTOR)
    assert exc.value.max_allowed == 0


def test_stage_cannot_advance_before_it_is_complete(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    batch = service.create_batch(db, jc.id, quantity=100, actor=ACTOR)
    service.record_batch_progress(db, batch.id, completed=60, actor=ACTOR)

    with pytest.raises(ValueError) as exc:
        service.advance_batch_stage(db, batch.id, actor=ACTOR)
    assert "Completed: 60/100" in str(exc.value)


def test_multi_product_batches_respect_product_balances(db):
    advice = _advice(db, quantity=300)
    jc = service.create_job_card(
        db, advice.id, quantity=300,
        products=[{"product_id": "NB-A5", "product_name": "A5 ruled", "quantity": 200},
                  {"product_id": "NB-A4", "product_name": "A4 plain", "quantity": 100}],
        actor=ACTOR,
    )
    with pytest.raises(service.AllocationRejected):
        service.create_batch(db, jc.id, quantity=150, actor=ACTOR)

    batch = service.create_batch(db, jc.id, quantity=150,
                                 products=[{"product_id": "NB-A5", "quantity": 100},
                                           {"product_id": "NB-A4", "quantity": 50}],
                                 actor=ACTOR)
    assert batch.stage_progress["designing"]["products"][0]["allocated_quantity"] == 100

    with pytest.raises(service.AllocationRejected) as exc:
        service.create_batch(db, jc.id, quantity=150,
                             products=[{"product_id": "NB-A5", "quantity": 50},
                                       {"product_id": "NB-A4", "quantity": 100}],
                             actor=ACTOR)
    assert exc.value.message.startswith("A4 plain: Requested quantity (100) exceeds available balance (50)")


def test_job_card_level_tracking_excludes_batches(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    service.record_job_card_progress(db, jc.id, completed=40, actor=ACTOR)

    with pytest.raises(service.AllocationRejected):
        service.create_batch(db, jc.id, quantity=10, actor=ACTOR)

    jc = service.record_job_card_progress(db, jc.id, completed=100, actor=ACTOR)
    jc = service.advance_job_card_stage(db, jc.id, actor=ACTOR)
    assert jc.current_stage == "procurement"
    assert jc.progress == 14


def test_batched_job_card_refuses_job_card_level_progress(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    service.create_batch(db, jc.id, quantity=100, actor=ACTOR)
    with pytest.raises(service.AllocationRejected):
        service.record_job_card_progress(db, jc.id, completed=100, actor=ACTOR)
    with pytest.raises(service.AllocationRejected):
        service.dispatch_job_card(db, jc.id, quantity=1, actor=ACTOR)


def test_mutations_write_events_and_audit_rows(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    service.create_batch(db, jc.id, quantity=100, actor=ACTOR)

    topics = {e.topic for e in pending_events(db, topic_prefix="production.")}
    assert {"production.binding_advice.created", "production.job_card.created", "production.batch.created"} <= topics
    actions = {row.action for row in db.query(AuditLog).all()}
    assert {"binding_advice.create", "job_card.create", "batch.create"} <= actions


def test_lookups_are_tenant_scoped(db):
    from app.core.tenant import reset_tenant_id, set_tenant_id

    advice = _advice(db, quantity=100)
    token = set_tenant_id("other-plant")
    try:
        with pytest.raises(service.ProductionNotFound):
            service.get_binding_advice(db, advice.id)
    finally:
        reset_tenant_id(token)
    assert db.get(BindingAdvice, advice.id).tenant_id == "default"


def test_events_are_keyed_by_the_entity_they_describe(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    batch = service.create_batch(db, jc.id, quantity=100, actor=ACTOR)
    service.record_batch_progress(db, batch.id, completed=100, actor=ACTOR)

    topics = {e.topic for e in pending_events(db, aggregate_id=batch.id)}
    assert topics == {"production.batch.created", "production.batch.progress"}


def test_job_card_level_tracking_completes_and_dispatches(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)

    while not jc.stage_track.is_last:
        jc = service.record_job_card_progress(db, jc.id, completed=jc.stage_track.current.allocated_quantity,
                                              actor=ACTOR)
        jc = service.advance_job_card_stage(db, jc.id, actor=ACTOR)
    jc = service.record_job_card_progress(db, jc.id, completed=90, rejected=10, actor=ACTOR)

    assert jc.status == "completed"
    assert jc.available_for_dispatch == 90
    assert jc.progress == 100
    assert service.get_binding_advice(db, advice.id).status == "completed"
    assert service.get_job_card_quantity(jc)["summary"]["completed"] == 90

    d = service.dispatch_job_card(db, jc.id, quantity=90, actor=ACTOR)
    assert d.batch_id is None
    assert service.get_job_card(db, jc.id).dispatched_quantity == 90
    with pytest.raises(service.AllocationRejected) as exc:
        service.dispatch_job_card(db, jc.id, quantity=1, actor=ACTOR)
    assert exc.value.max_allowed == 0


def test_dispatched_batch_cannot_be_cancelled(db):
    advice = _advice(db, quantity=40)
    jc = service.create_job_card(db, advice.id, quantity=40, actor=ACTOR)
    batch = _finish_batch(db, service.create_batch(db, jc.id, quantity=40, actor=ACTOR))
    service.dispatch_batch(db, batch.id, quantity=10, actor=ACTOR)

    with pytest.raises(service.AllocationRejected):
        service.cancel_batch(db, batch.id, actor=ACTOR)
    batch = service.get_batch(db, batch.id)
    assert batch.status == "completed"
    assert batch.dispatched_quantity == 10


def test_batch_writes_lock_parents_before_the_batch(db, monkeypatch):
    advice = _advice(db, quantity=40)
    jc = service.create_job_card(db, advice.id, quantity=40, actor=ACTOR)
    batch = _finish_batch(db, service.create_batch(db, jc.id, quantity=40, actor=ACTOR))

    locked = []

    def recording(name, fn):
        def wrapper(db, entity_id, *, lock=False):
            if lock:
                locked.append(name)
            return fn(db, entity_id, lock=lock)
        return wrapper

    for name in ("get_binding_advice", "get_job_card", "get_batch"):
        monkeypatch.setattr(service, name, recording(name, getattr(service, name)))

    service.dispatch_batch(db, batch.id, quantity=5, actor=ACTOR)
    assert locked == ["get_binding_advice", "get_job_card", "get_batch"]


def test_suggestion_rejects_non_positive_quantity(db):
    advice = _advice(db, quantity=100)
    jc = service.create_job_card(db, advice.id, quantity=100, actor=ACTOR)
    with pytest.raises(service.AllocationRejected) as exc:
        service.suggest_batch_range(db, jc.id, 0)
    assert exc.value.message == "Quantity must be greater than 0"


def test_all_zero_product_breakdown_is_rejected(db):
    advice = _advice(db, quantity=100)
    with pytest.raises(service.AllocationRejected) as exc:
        service.create_job_card(db, advice.id, quantity=100,
                                products=[{"product_id": "NB-A5", "quantity": 0}], actor=ACTOR)
    assert exc.value.message == "Product quantities must sum to the total quantity"
