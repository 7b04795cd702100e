"""Persistent event queue, run audit and plugin state repository."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import and_, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from agent_runner.runner.models import (
    AgentDefinition,
    AgentDefinitionWrite,
    EnqueueResult,
    EventCreate,
    EventDetails,
    EventStatus,
    EventView,
    PluginInstanceView,
    PluginInstanceWrite,
    PluginStateView,
    RunFinish,
    RunStart,
    RunStatus,
    RunView,
    ToolCallResult,
)
from agent_runner.storage.alembic_runner import upgrade_head
from agent_runner.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_list,
    load_json_object,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_runner.storage.sqlmodel_models import (
    AgentDefinitionRow,
    AgentEventRow,
    AgentRunRow,
    PluginInstanceRow,
    PluginStateRow,
)

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TIMEOUT = timedelta(minutes=5)
DEFAULT_DEDUPE_WINDOW = timedelta(hours=1)
TERMINAL_EVENT_STATUSES = (EventStatus.COMPLETED, EventStatus.FAILED)


class EventRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT,
        dedupe_window: timedelta = DEFAULT_DEDUPE_WINDOW,
    ) -> None:
        if lease_timeout.total_seconds() <= 0:
            raise ValueError("lease_timeout must be > 0")
        self.db_path = db_path
        self.lease_timeout = lease_timeout
        self.dedupe_window = dedupe_window
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- enqueue ----------------------------------------------------------

    def enqueue_event(self, payload: EventCreate) -> EnqueueResult:
        """Insert a pending event; skips disabled plugin instances and duplicates."""

        intent = payload.intent.strip()
        if not intent:
            raise ValueError("intent is required and cannot be empty")
        business_id = payload.business_id.strip()
        if not business_id:
            raise ValueError("business_id is required")

        now = utc_now()
        event_id = payload.event_id or str(uuid4())
        with Session(self.engine) as session:
            if payload.plugin_instance_id is not None:
                instance = session.exec(
                    select(PluginInstanceRow).where(
                        PluginInstanceRow.instance_id == payload.plugin_instance_id,
                        PluginInstanceRow.business_id == business_id,
                    ),
                ).one_or_none()
                if instance is None:
                    raise LookupError(
                        f"Plugin instance not found: {payload.plugin_instance_id}",
                    )
                if not instance.is_enabled:
                    logger.info(
                        "Plugin instance disabled, skipping enqueue (instance=%s intent=%s)",
                        payload.plugin_instance_id,
                        intent,
                    )
                    return EnqueueResult(
                        event=None,
                        skipped=True,
                        reason="Plugin instance is disabled",
                    )

            if payload.dedupe_key:
                threshold = to_db_datetime(now - self.dedupe_window)
                existing = session.exec(
                    select(AgentEventRow)
                    .where(
                        AgentEventRow.business_id == business_id,
                        AgentEventRow.dedupe_key == payload.dedupe_key,
                        col(AgentEventRow.created_at) >= threshold,
                    )
                    .limit(1),
                ).one_or_none()
                if existing is not None:
                    logger.info(
                        "Duplicate event within dedupe window, skipping (key=%s existing=%s)",
                        payload.dedupe_key,
                        existing.event_id,
                    )
                    return EnqueueResult(
                        event=None,
                        skipped=True,
                        reason="Duplicate event within dedupe window",
                        existing_event_id=existing.event_id,
                    )

            row = AgentEventRow(
                event_id=event_id,
                business_id=business_id,
                plugin_instance_id=payload.plugin_instance_id,
                intent=intent,
                payload_json=dump_json(payload.payload),
                dedupe_key=payload.dedupe_key,
                target_agent=payload.target_agent,
                parent_event_id=payload.parent_event_id,
                chain_depth=payload.chain_depth,
                status=EventStatus.PENDING.value,
                claim_count=0,
                created_at=to_db_datetime(now),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.debug("Event enqueued: event_id=%s intent=%s", event_id, intent)
            return EnqueueResult(event=_to_event_view(row))

    # -- claim / lease ----------------------------------------------------

    def claim_next_event(self, *, runner_id: str) -> EventView | None:
        """Atomically claim the oldest pending or lease-expired event.

        Candidate selection and the status flip are one UPDATE statement, so two
        runners racing for the same row (fresh or stale lease) cannot both win.
        On SQLite the FOR UPDATE SKIP LOCKED hint compiles away and the database
        write lock serializes the statement.
        """

        now = utc_now()
        lease_threshold = to_db_datetime(now - self.lease_timeout)
        claimable = or_(
            col(AgentEventRow.status) == EventStatus.PENDING.value,
            and_(
                col(AgentEventRow.status) == EventStatus.PROCESSING.value,
                col(AgentEventRow.locked_at) < lease_threshold,
            ),
        )
        candidate = (
            select(AgentEventRow.event_id)
            .where(claimable)
            .order_by(col(AgentEventRow.created_at).asc(), col(AgentEventRow.event_id).asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        with Session(self.engine) as session:
            claimed_id = session.exec(
                sa_update(AgentEventRow)
                .where(col(AgentEventRow.event_id) == candidate, claimable)
                .values(
                    status=EventStatus.PROCESSING.value,
                    locked_at=to_db_datetime(now),
                    locked_by=runner_id,
                    claim_count=col(AgentEventRow.claim_count) + 1,
                )
                .returning(col(AgentEventRow.event_id))
                .execution_options(synchronize_session=False),
            ).scalar_one_or_none()
            if claimed_id is None:
                session.rollback()
                return None
            session.commit()

            claimed = self._get_event_row(session=session, event_id=claimed_id)
            if claimed.claim_count > 1:
                logger.warning(
                    "Reclaimed event after lease expiry: event_id=%s claim_count=%d runner=%s",
                    claimed.event_id,
                    claimed.claim_count,
                    runner_id,
                )
            return _to_event_view(claimed)

    def claim_event(self, *, event_id: str, runner_id: str) -> EventView | None:
        """Force-claim one event by id, bypassing the pending/stale filter.

        The lease takeover is a single UPDATE that bumps ``claim_count``, so
        concurrent force-claims serialize on the write lock and each observes
        a distinct count; the last one holds the lease. Returns None when the
        event does not exist.
        """

        now = utc_now()
        with Session(self.engine) as session:
            claim_count = session.exec(
                sa_update(AgentEventRow)
                .where(col(AgentEventRow.event_id) == event_id)
                .values(
                    status=EventStatus.PROCESSING.value,
                    locked_at=to_db_datetime(now),
                    locked_by=runner_id,
                    claim_count=col(AgentEventRow.claim_count) + 1,
                )
                .returning(col(AgentEventRow.claim_count))
                .execution_options(synchronize_session=False),
            ).scalar_one_or_none()
            if claim_count is None:
                session.rollback()
                return None
            claimed = _to_event_view(self._get_event_row(session=session, event_id=event_id))
            session.commit()
            if claim_count > 1:
                logger.info(
                    "Force-claimed event: event_id=%s claim_count=%d runner=%s",
                    event_id,
                    claim_count,
                    runner_id,
                )
            return claimed

    def finalize_event(
        self,
        *,
        event_id: str,
        runner_id: str,
        status: EventStatus,
        run_id: str,
    ) -> bool:
        """Move a processing event held by this runner to a terminal state."""

        if status not in TERMINAL_EVENT_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status}")

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentEventRow)
                .where(
                    col(AgentEventRow.event_id) == event_id,
                    col(AgentEventRow.status) == EventStatus.PROCESSING.value,
                    col(AgentEventRow.locked_by) == runner_id,
                )
                .values(
                    status=status.value,
                    processed_at=to_db_datetime(now),
                    claimed_run_id=run_id,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning(
                    "Event lease lost before finalization: event_id=%s runner=%s run_id=%s",
                    event_id,
                    runner_id,
                    run_id,
                )
                return False
            session.commit()
            return True

    # -- runs -------------------------------------------------------------

    def create_run(self, payload: RunStart) -> RunView:
        """Create the processing run row and link it to its event."""

        now = utc_now()
        run_id = str(uuid4())
        with Session(self.engine) as session:
            row = AgentRunRow(
                run_id=run_id,
                event_id=payload.event_id,
                business_id=payload.business_id,
                plugin_instance_id=payload.plugin_instance_id,
                runner_id=payload.runner_id,
                status=RunStatus.PROCESSING.value,
                input_payload_json=dump_json(payload.input_payload),
                tool_calls_json="[]",
                created_at=to_db_datetime(now),
            )
            session.add(row)
            session.exec(
                sa_update(AgentEventRow)
                .where(
                    col(AgentEventRow.event_id) == payload.event_id,
                    col(AgentEventRow.locked_by) == payload.runner_id,
                )
                .values(claimed_run_id=run_id),
            )
            session.commit()
            session.refresh(row)
            return _to_run_view(row)

    def finish_run(self, *, run_id: str, payload: RunFinish) -> bool:
        """Finalize a processing run exactly once."""

        if payload.status == RunStatus.PROCESSING:
            raise ValueError("Run finalization requires a terminal status.")

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentRunRow)
                .where(
                    col(AgentRunRow.run_id) == run_id,
                    col(AgentRunRow.status) == RunStatus.PROCESSING.value,
                )
                .values(
                    status=payload.status.value,
                    agent_slug=payload.agent_slug,
                    output_payload_json=(
                        dump_json(payload.output_payload)
                        if payload.output_payload is not None
                        else None
                    ),
                    tool_calls_json=dump_json(
                        [call.to_payload() for call in payload.tool_calls],
                    ),
                    latency_ms=payload.latency_ms,
                    tokens_used=payload.tokens_used,
                    error_message=payload.error_message,
                    completed_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_run(self, *, run_id: str) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentRunRow).where(AgentRunRow.run_id == run_id),
            ).one_or_none()
        if row is None:
            return None
        return _to_run_view(row)

    def list_runs(
        self,
        *,
        event_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[RunView]:
        """List recent runs, newest first."""

        with Session(self.engine) as session:
            statement = select(AgentRunRow).order_by(col(AgentRunRow.created_at).desc())
            if event_id is not None:
                statement = statement.where(AgentRunRow.event_id == event_id)
            if status is not None:
                statement = statement.where(AgentRunRow.status == status.value)
            rows = session.exec(statement.limit(limit)).all()
        return [_to_run_view(row) for row in rows]

    # -- inspection -------------------------------------------------------

    def get_event(self, *, event_id: str) -> EventView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentEventRow).where(AgentEventRow.event_id == event_id),
            ).one_or_none()
        if row is None:
            return None
        return _to_event_view(row)

    def get_event_details(self, *, event_id: str) -> EventDetails | None:
        """Return event with its run history."""

        with Session(self.engine) as session:
            row = session.exec(
                select(AgentEventRow).where(AgentEventRow.event_id == event_id),
            ).one_or_none()
            if row is None:
                return None
            run_rows = session.exec(
                select(AgentRunRow)
                .where(AgentRunRow.event_id == event_id)
                .order_by(col(AgentRunRow.created_at).asc()),
            ).all()
        return EventDetails(
            event=_to_event_view(row),
            runs=[_to_run_view(run_row) for run_row in run_rows],
        )

    def list_events(
        self,
        *,
        status: EventStatus | None = None,
        business_id: str | None = None,
        limit: int = 50,
    ) -> list[EventView]:
        """List recent events, optionally filtered by status and tenant."""

        with Session(self.engine) as session:
            statement = select(AgentEventRow).order_by(col(AgentEventRow.created_at).desc())
            if status is not None:
                statement = statement.where(AgentEventRow.status == status.value)
            if business_id is not None:
                statement = statement.where(AgentEventRow.business_id == business_id)
            rows = session.exec(statement.limit(limit)).all()
        return [_to_event_view(row) for row in rows]

    # -- agent registry storage -------------------------------------------

    def upsert_agent_definition(self, payload: AgentDefinitionWrite) -> AgentDefinition:
        """Create or replace one agent definition."""

        slug = payload.slug.strip()
        if not slug:
            raise ValueError("Agent slug must not be empty.")
        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(AgentDefinitionRow).where(AgentDefinitionRow.slug == slug),
            ).one_or_none()
            if row is None:
                row = AgentDefinitionRow(
                    slug=slug,
                    name=payload.name,
                    system_prompt=payload.system_prompt,
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
            row.name = payload.name
            row.description = payload.description
            row.system_prompt = payload.system_prompt
            row.allowed_tools_json = dump_json(sorted(set(payload.allowed_tools)))
            row.default_config_json = dump_json(payload.default_config)
            row.is_active = payload.is_active
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_agent_definition(row)

    def get_agent_definition(self, slug: str) -> AgentDefinition | None:
        """Return an agent definition regardless of its active flag."""

        with Session(self.engine) as session:
            row = session.exec(
                select(AgentDefinitionRow).where(AgentDefinitionRow.slug == slug),
            ).one_or_none()
        if row is None:
            return None
        return _to_agent_definition(row)

    def list_agent_definitions(self, *, active_only: bool = False) -> list[AgentDefinition]:
        with Session(self.engine) as session:
            statement = select(AgentDefinitionRow).order_by(col(AgentDefinitionRow.slug).asc())
            if active_only:
                statement = statement.where(col(AgentDefinitionRow.is_active).is_(True))
            rows = session.exec(statement).all()
        return [_to_agent_definition(row) for row in rows]

    # -- plugin instances and state ---------------------------------------

    def upsert_plugin_instance(self, payload: PluginInstanceWrite) -> PluginInstanceView:
        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(PluginInstanceRow).where(
                    PluginInstanceRow.instance_id == payload.instance_id,
                ),
            ).one_or_none()
            if row is None:
                row = PluginInstanceRow(
                    instance_id=payload.instance_id,
                    business_id=payload.business_id,
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
            elif row.business_id != payload.business_id:
                raise RuntimeError(
                    f"Plugin instance {payload.instance_id} belongs to another business.",
                )
            row.agent_slug = payload.agent_slug
            row.config_json = dump_json(payload.config)
            row.is_enabled = payload.is_enabled
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_plugin_instance_view(row)

    def get_plugin_instance(self, instance_id: str) -> PluginInstanceView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PluginInstanceRow).where(PluginInstanceRow.instance_id == instance_id),
            ).one_or_none()
        if row is None:
            return None
        return _to_plugin_instance_view(row)

    def upsert_plugin_state(
        self,
        *,
        plugin_instance_id: str,
        state_key: str,
        state: dict[str, object],
        merge: bool = False,
    ) -> PluginStateView:
        """Replace (or shallow-merge into) the state stored under one key."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(PluginStateRow).where(
                    PluginStateRow.plugin_instance_id == plugin_instance_id,
                    PluginStateRow.state_key == state_key,
                ),
            ).one_or_none()
            if row is None:
                row = PluginStateRow(
                    plugin_instance_id=plugin_instance_id,
                    state_key=state_key,
                    state_json=dump_json(state),
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
            else:
                merged = {**load_json_object(row.state_json), **state} if merge else state
                row.state_json = dump_json(merged)
                row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_plugin_state_view(row)

    def get_plugin_state(
        self,
        *,
        plugin_instance_id: str,
        state_key: str = "latest_analysis",
    ) -> PluginStateView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PluginStateRow).where(
                    PluginStateRow.plugin_instance_id == plugin_instance_id,
                    PluginStateRow.state_key == state_key,
                ),
            ).one_or_none()
        if row is None:
            return None
        return _to_plugin_state_view(row)

    def _get_event_row(self, *, session: Session, event_id: str) -> AgentEventRow:
        row = session.exec(
            select(AgentEventRow).where(AgentEventRow.event_id == event_id),
        ).one_or_none()
        if row is None:
            raise RuntimeError(f"Event not found: {event_id}")
        return row


def _to_event_view(row: AgentEventRow) -> EventView:
    return EventView(
        event_id=row.event_id,
        business_id=row.business_id,
        plugin_instance_id=row.plugin_instance_id,
        intent=row.intent,
        payload=load_json_object(row.payload_json),
        dedupe_key=row.dedupe_key,
        target_agent=row.target_agent,
        parent_event_id=row.parent_event_id,
        chain_depth=row.chain_depth,
        status=EventStatus(row.status),
        claim_count=row.claim_count,
        locked_at=optional_utc(row.locked_at),
        locked_by=row.locked_by,
        claimed_run_id=row.claimed_run_id,
        created_at=to_utc_aware_datetime(row.created_at),
        processed_at=optional_utc(row.processed_at),
    )


def _to_run_view(row: AgentRunRow) -> RunView:
    output_payload = (
        load_json_object(row.output_payload_json) if row.output_payload_json is not None else None
    )
    return RunView(
        run_id=row.run_id,
        event_id=row.event_id,
        business_id=row.business_id,
        plugin_instance_id=row.plugin_instance_id,
        agent_slug=row.agent_slug,
        runner_id=row.runner_id,
        status=RunStatus(row.status),
        input_payload=load_json_object(row.input_payload_json),
        output_payload=output_payload,
        tool_calls=[
            ToolCallResult.from_payload(item)
            for item in load_json_list(row.tool_calls_json)
            if isinstance(item, dict)
        ],
        tokens_used=row.tokens_used,
        latency_ms=row.latency_ms,
        error_message=row.error_message,
        created_at=to_utc_aware_datetime(row.created_at),
        completed_at=optional_utc(row.completed_at),
    )


def _to_agent_definition(row: AgentDefinitionRow) -> AgentDefinition:
    return AgentDefinition(
        slug=row.slug,
        name=row.name,
        system_prompt=row.system_prompt,
        allowed_tools=frozenset(
            tool for tool in load_json_list(row.allowed_tools_json) if isinstance(tool, str)
        ),
        default_config=load_json_object(row.default_config_json),
        is_active=row.is_active,
        description=row.description,
    )


def _to_plugin_instance_view(row: PluginInstanceRow) -> PluginInstanceView:
    return PluginInstanceView(
        instance_id=row.instance_id,
        business_id=row.business_id,
        agent_slug=row.agent_slug,
        config=load_json_object(row.config_json),
        is_enabled=row.is_enabled,
    )


def _to_plugin_state_view(row: PluginStateRow) -> PluginStateView:
    return PluginStateView(
        plugin_instance_id=row.plugin_instance_id,
        state_key=row.state_key,
        state=load_json_object(row.state_json),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
