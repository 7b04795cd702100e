"""Agent registry, plugin instances/state, event queue and run audit tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ai_agent_registry",
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("allowed_tools_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("default_config_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("slug"),
    )
    op.create_index("ix_ai_agent_registry_is_active", "ai_agent_registry", ["is_active"])

    op.create_table(
        "ai_plugin_instances",
        sa.Column("instance_id", sa.String(), nullable=False),
        sa.Column("business_id", sa.String(), nullable=False),
        sa.Column("agent_slug", sa.String(), nullable=True),
        sa.Column("config_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("instance_id"),
    )
    op.create_index(
        "ix_ai_plugin_instances_business_id",
        "ai_plugin_instances",
        ["business_id"],
    )
    op.create_index("ix_ai_plugin_instances_agent_slug", "ai_plugin_instances", ["agent_slug"])

    op.create_table(
        "ai_plugin_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plugin_instance_id", sa.String(), nullable=False),
        sa.Column("state_key", sa.String(), nullable=False, server_default="default"),
        sa.Column("state_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["plugin_instance_id"],
            ["ai_plugin_instances.instance_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plugin_instance_id", "state_key", name="uq_ai_plugin_state_key"),
    )
    op.create_index(
        "ix_ai_plugin_state_plugin_instance_id",
        "ai_plugin_state",
        ["plugin_instance_id"],
    )

    op.create_table(
        "ai_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("business_id", sa.String(), nullable=False),
        sa.Column("plugin_instance_id", sa.String(), nullable=True),
        sa.Column("intent", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("dedupe_key", sa.String(), nullable=True),
        sa.Column("target_agent", sa.String(), nullable=True),
        sa.Column("parent_event_id", sa.String(), nullable=True),
        sa.Column("chain_depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("claim_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(), nullable=True),
        sa.Column("claimed_run_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["plugin_instance_id"],
            ["ai_plugin_instances.instance_id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("event_id"),
        sa.CheckConstraint("length(trim(intent)) > 0", name="ck_ai_events_intent_nonempty"),
    )
    op.create_index("ix_ai_events_business_id", "ai_events", ["business_id"])
    op.create_index("ix_ai_events_plugin_instance_id", "ai_events", ["plugin_instance_id"])
    op.create_index("ix_ai_events_intent", "ai_events", ["intent"])
    op.create_index("ix_ai_events_parent_event_id", "ai_events", ["parent_event_id"])
    op.create_index("ix_ai_events_status", "ai_events", ["status"])
    op.create_index("ix_ai_events_claimed_run_id", "ai_events", ["claimed_run_id"])
    op.create_index("idx_ai_events_claim", "ai_events", ["status", "locked_at", "created_at"])
    op.create_index(
        "idx_ai_events_dedupe",
        "ai_events",
        ["business_id", "dedupe_key", "created_at"],
    )

    op.create_table(
        "ai_runs",
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("business_id", sa.String(), nullable=False),
        sa.Column("plugin_instance_id", sa.String(), nullable=True),
        sa.Column("agent_slug", sa.String(), nullable=True),
        sa.Column("runner_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input_payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("output_payload_json", sa.Text(), nullable=True),
        sa.Column("tool_calls_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["ai_events.event_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_ai_runs_event_id", "ai_runs", ["event_id"])
    op.create_index("ix_ai_runs_business_id", "ai_runs", ["business_id"])
    op.create_index("ix_ai_runs_status", "ai_runs", ["status"])
    op.create_index("idx_ai_runs_event_time", "ai_runs", ["event_id", "created_at"])


def downgrade() -> None:
    op.drop_table("ai_runs")
    op.drop_table("ai_events")
    op.drop_table("ai_plugin_state")
    op.drop_table("ai_plugin_instances")
    op.drop_table("ai_agent_registry")
