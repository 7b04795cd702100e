"""SQLModel ORM tables for the agent runner store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class AgentDefinitionRow(SQLModel, table=True):
    __tablename__ = "ai_agent_registry"  # type: ignore[bad-override]

    slug: str = Field(primary_key=True)
    name: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    system_prompt: str = Field(sa_column=Column(Text, nullable=False))
    allowed_tools_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    default_config_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PluginInstanceRow(SQLModel, table=True):
    __tablename__ = "ai_plugin_instances"  # type: ignore[bad-override]

    instance_id: str = Field(primary_key=True)
    business_id: str = Field(index=True)
    agent_slug: str | None = Field(default=None, index=True)
    config_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    is_enabled: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PluginStateRow(SQLModel, table=True):
    __tablename__ = "ai_plugin_state"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("plugin_instance_id", "state_key", name="uq_ai_plugin_state_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    plugin_instance_id: str = Field(
        sa_column=Column(
            ForeignKey("ai_plugin_instances.instance_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    state_key: str = Field(default="default")
    state_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentEventRow(SQLModel, table=True):
    __tablename__ = "ai_events"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_ai_events_claim", "status", "locked_at", "created_at"),
        Index("idx_ai_events_dedupe", "business_id", "dedupe_key", "created_at"),
    )

    event_id: str = Field(primary_key=True)
    business_id: str = Field(index=True)
    plugin_instance_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("ai_plugin_instances.instance_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    intent: str = Field(index=True)
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    dedupe_key: str | None = None
    target_agent: str | None = None
    parent_event_id: str | None = Field(default=None, index=True)
    chain_depth: int = Field(default=0)
    status: str = Field(index=True)
    claim_count: int = Field(default=0)
    locked_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    locked_by: str | None = None
    claimed_run_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    processed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )


class AgentRunRow(SQLModel, table=True):
    __tablename__ = "ai_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_runs_event_time", "event_id", "created_at"),)

    run_id: str = Field(primary_key=True)
    event_id: str = Field(
        sa_column=Column(
            ForeignKey("ai_events.event_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    business_id: str = Field(index=True)
    plugin_instance_id: str | None = None
    agent_slug: str | None = None
    runner_id: str
    status: str = Field(index=True)
    input_payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    output_payload_json: str | None = Field(default=None, sa_column=Column(Text))
    tool_calls_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    tokens_used: int | None = None
    latency_ms: int | None = None
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )


class CrmLeadRow(SQLModel, table=True):
    __tablename__ = "crm_leads"  # type: ignore[bad-override]

    lead_id: str = Field(primary_key=True)
    business_id: str = Field(index=True)
    name: str | None = None
    email: str | None = Field(default=None, index=True)
    title: str
    status: str = Field(default="new", index=True)
    intent: str | None = None
    metadata_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BookingRow(SQLModel, table=True):
    __tablename__ = "bookings"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_bookings_business_slot_confirmed",
            "business_id",
            "starts_at",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    booking_id: str = Field(primary_key=True)
    business_id: str = Field(index=True)
    starts_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ends_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    customer_name: str | None = None
    customer_email: str | None = None
    status: str = Field(default="confirmed", index=True)
    source_event_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TeamNotificationRow(SQLModel, table=True):
    __tablename__ = "team_notifications"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    business_id: str = Field(index=True)
    channel: str = Field(default="email")
    message: str = Field(sa_column=Column(Text, nullable=False))
    details_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    source_event_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
