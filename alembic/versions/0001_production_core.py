"""production allocation core: binding advice, job cards, batches, dispatches + audit/outbox

Revision ID: 0001_production_core
Revises:
Create Date: 2026-10-19T09:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_production_core"
down_revision = None
branch_labels = None
depends_on = None


def _stamps():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "prd_binding_advice",
        *_stamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("number", sa.String(length=64), nullable=False),
        sa.Column("client_name", sa.String(length=256), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_prd_binding_advice_tenant_id", "prd_binding_advice", ["tenant_id"])
    op.create_index("ix_prd_binding_advice_number", "prd_binding_advice", ["number"])
    op.create_index("ix_prd_binding_advice_status", "prd_binding_advice", ["status"])

    op.create_table(
        "prd_job_card",
        *_stamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("binding_advice_id", sa.String(length=36), sa.ForeignKey("prd_binding_advice.id"), nullable=False),
        sa.Column("number", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="active"),
        sa.Column("current_stage", sa.String(length=64), nullable=False),
        sa.Column("current_stage_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stage_allocations", sa.JSON(), nullable=False),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.Column("fully_planned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dispatched_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_for_dispatch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_prd_job_card_tenant_id", "prd_job_card", ["tenant_id"])
    op.create_index("ix_prd_job_card_binding_advice_id", "prd_job_card", ["binding_advice_id"])
    op.create_index("ix_prd_job_card_number", "prd_job_card", ["number"])
    op.create_index("ix_prd_job_card_status", "prd_job_card", ["status"])

    op.create_table(
        "prd_batch",
        *_stamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("job_card_id", sa.String(length=36), sa.ForeignKey("prd_job_card.id"), nullable=False),
        sa.Column("batch_number", sa.Integer(), nullable=False),
        sa.Column("range_from", sa.Integer(), nullable=True),
        sa.Column("range_to", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="active"),
        sa.Column("current_stage", sa.String(length=64), nullable=False),
        sa.Column("current_stage_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stage_progress", sa.JSON(), nullable=False),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.Column("dispatched_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_for_dispatch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False, server_default="system"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("job_card_id", "batch_number", name="uq_prd_batch_number"),
    )
    op.create_index("ix_prd_batch_tenant_id", "prd_batch", ["tenant_id"])
    op.create_index("ix_prd_batch_job_card_id", "prd_batch", ["job_card_id"])
    op.create_index("ix_prd_batch_status", "prd_batch", ["status"])
    op.create_index("ix_prd_batch_job_range", "prd_batch", ["job_card_id", "range_from"])

    op.create_table(
        "prd_dispatch",
        *_stamps(),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("job_card_id", sa.String(length=36), sa.ForeignKey("prd_job_card.id"), nullable=False),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("prd_batch.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("dispatched_by", sa.String(length=128), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_prd_dispatch_tenant_id", "prd_dispatch", ["tenant_id"])
    op.create_index("ix_prd_dispatch_job_card_id", "prd_dispatch", ["job_card_id"])
    op.create_index("ix_prd_dispatch_batch_id", "prd_dispatch", ["batch_id"])

    op.create_table(
        "sys_audit_log",
        *_stamps(),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=256), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("method", sa.String(length=8), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sys_audit_log_tenant_id", "sys_audit_log", ["tenant_id"])
    op.create_index("ix_sys_audit_log_actor", "sys_audit_log", ["actor"])
    op.create_index("ix_sys_audit_log_action", "sys_audit_log", ["action"])
    op.create_index("ix_sys_audit_log_request_id", "sys_audit_log", ["request_id"])
    op.create_index("ix_audit_tenant_time", "sys_audit_log", ["tenant_id", "created_at"])
    op.create_index("ix_audit_entity", "sys_audit_log", ["entity_type", "entity_id"])

    op.create_table(
        "outbox_event",
        *_stamps(),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, server_default="default"),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("aggregate_id", sa.String(length=36), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_tenant_id", "outbox_event", ["tenant_id"])
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_event_aggregate_id", "outbox_event", ["aggregate_id"])
    op.create_index("ix_outbox_aggregate_created", "outbox_event", ["aggregate_id", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])


def downgrade():
    op.drop_table("outbox_event")
    op.drop_table("sys_audit_log")
    op.drop_table("prd_dispatch")
    op.drop_table("prd_batch")
    op.drop_table("prd_job_card")
    op.drop_table("prd_binding_advice")
