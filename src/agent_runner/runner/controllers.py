"""Controllers for agent runner CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from agent_runner.config import Settings
from agent_runner.runner.agent_catalog import default_agent_definitions
from agent_runner.runner.agents import AgentRegistry
from agent_runner.runner.backend import EchoModel, HttpReasoningModel, ReasoningModel
from agent_runner.runner.models import EventCreate, EventStatus, PluginInstanceWrite
from agent_runner.runner.repository import EventRepository
from agent_runner.runner.worker import AgentRunner, default_runner_id
from agent_runner.tools import TenantStore, build_default_tool_registry


@dataclass(slots=True)
class EnqueueEventCommand:
    """CLI input for event enqueue."""

    db_path: Path | None
    intent: str
    business_id: str
    payload_json: str
    plugin_instance_id: str | None
    dedupe_key: str | None
    target_agent: str | None


@dataclass(slots=True)
class ListEventsCommand:
    db_path: Path | None
    status: str | None
    business_id: str | None
    limit: int


@dataclass(slots=True)
class InspectEventCommand:
    db_path: Path | None
    event_id: str


@dataclass(slots=True)
class RunOnceCommand:
    """CLI input for a single runner invocation."""

    db_path: Path | None
    event_id: str | None


@dataclass(slots=True)
class RunLoopCommand:
    db_path: Path | None
    max_events: int | None
    max_idle_polls: int


@dataclass(slots=True)
class SeedAgentsCommand:
    db_path: Path | None


@dataclass(slots=True)
class ListAgentsCommand:
    db_path: Path | None
    active_only: bool


@dataclass(slots=True)
class RegisterPluginCommand:
    """CLI input for plugin instance registration."""

    db_path: Path | None
    instance_id: str
    business_id: str
    agent_slug: str | None
    disabled: bool


@dataclass(slots=True)
class ShowStateCommand:
    db_path: Path | None
    plugin_instance_id: str
    state_key: str


class AgentRunnerCliController:
    """Coordinates queue, runner, registry and state CLI operations."""

    def enqueue_event(self, command: EnqueueEventCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        payload = _parse_payload(command.payload_json)
        with _repository(settings) as repository:
            outcome = repository.enqueue_event(
                EventCreate(
                    intent=command.intent,
                    business_id=command.business_id,
                    payload=payload,
                    plugin_instance_id=command.plugin_instance_id,
                    dedupe_key=command.dedupe_key,
                    target_agent=command.target_agent,
                ),
            )

        if outcome.event is None:
            line = f"Enqueue skipped: {outcome.reason}"
            if outcome.existing_event_id is not None:
                line += f" existing_event_id={outcome.existing_event_id}"
            return [line]
        return [
            "Event enqueued: "
            f"event_id={outcome.event.event_id} intent={outcome.event.intent} "
            f"status={outcome.event.status.value}",
        ]

    def list_events(self, command: ListEventsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = EventStatus(command.status.strip().lower()) if command.status else None
        with _repository(settings) as repository:
            events = repository.list_events(
                status=status,
                business_id=command.business_id,
                limit=command.limit,
            )

        lines = [f"Events: {len(events)}"]
        for event in events:
            lines.append(
                f"  {event.event_id} intent={event.intent} status={event.status.value} "
                f"business={event.business_id} claims={event.claim_count} "
                f"created_at={event.created_at.isoformat()}",
            )
        return lines

    def inspect_event(self, command: InspectEventCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_event_details(event_id=command.event_id)
        if details is None:
            return [f"Event not found: {command.event_id}"]

        event = details.event
        lines = [
            f"Event: {event.event_id}",
            f"Intent: {event.intent}",
            f"Business: {event.business_id}",
            f"Plugin instance: {event.plugin_instance_id or '-'}",
            f"Status: {event.status.value}",
            f"Locked by: {event.locked_by or '-'}",
            f"Claimed run: {event.claimed_run_id or '-'}",
            f"Target agent: {event.target_agent or '-'}",
            f"Parent event: {event.parent_event_id or '-'} (depth {event.chain_depth})",
            f"Payload: {json.dumps(event.payload, ensure_ascii=False, sort_keys=True)}",
            f"Runs: {len(details.runs)}",
        ]
        for run in details.runs:
            lines.append(
                f"  {run.run_id} status={run.status.value} agent={run.agent_slug or '-'} "
                f"runner={run.runner_id} tool_calls={len(run.tool_calls)} "
                f"latency_ms={run.latency_ms if run.latency_ms is not None else '-'} "
                f"error={run.error_message or '-'}",
            )
            for call in run.tool_calls:
                outcome = "ok" if call.success else f"error={call.error}"
                lines.append(f"    {call.tool} {outcome}")
        return lines

    def run_once(self, command: RunOnceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_runner()
        with _repository(settings) as repository, _runner(settings, repository) as runner:
            result = runner.run_once(event_id=command.event_id)
        return [json.dumps(result.to_payload(), ensure_ascii=False, indent=2, sort_keys=True)]

    def run_loop(self, command: RunLoopCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_runner()
        with _repository(settings) as repository, _runner(settings, repository) as runner:
            summary = runner.run_loop(
                max_events=command.max_events,
                max_idle_polls=command.max_idle_polls,
            )
        return [
            "Runner summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]

    def seed_agents(self, command: SeedAgentsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        definitions = default_agent_definitions(orchestrator_slug=settings.runner.orchestrator_slug)
        with _repository(settings) as repository:
            for definition in definitions:
                repository.upsert_agent_definition(definition)
        return [f"Agents seeded: {len(definitions)}"]

    def list_agents(self, command: ListAgentsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            agents = repository.list_agent_definitions(active_only=command.active_only)

        lines = [f"Agents: {len(agents)}"]
        for agent in agents:
            tools = ",".join(sorted(agent.allowed_tools)) or "-"
            lines.append(
                f"  {agent.slug} name={agent.name!r} active={agent.is_active} tools={tools}",
            )
        return lines

    def register_plugin(self, command: RegisterPluginCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            instance = repository.upsert_plugin_instance(
                PluginInstanceWrite(
                    instance_id=command.instance_id,
                    business_id=command.business_id,
                    agent_slug=command.agent_slug,
                    is_enabled=not command.disabled,
                ),
            )
        return [
            "Plugin instance registered: "
            f"instance_id={instance.instance_id} business={instance.business_id} "
            f"enabled={instance.is_enabled}",
        ]

    def show_state(self, command: ShowStateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            state = repository.get_plugin_state(
                plugin_instance_id=command.plugin_instance_id,
                state_key=command.state_key,
            )
        if state is None:
            return [f"No state: instance={command.plugin_instance_id} key={command.state_key}"]
        return [
            f"State: instance={state.plugin_instance_id} key={state.state_key} "
            f"updated_at={state.updated_at.isoformat()}",
            json.dumps(state.state, ensure_ascii=False, indent=2, sort_keys=True),
        ]


def _parse_payload(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"Payload is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")
    return payload


@contextmanager
def _repository(settings: Settings) -> Iterator[EventRepository]:
    repository = EventRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.storage.sqlite_busy_timeout_ms,
        lease_timeout=timedelta(seconds=settings.runner.lease_timeout_seconds),
        dedupe_window=timedelta(seconds=settings.runner.dedupe_window_seconds),
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _runner(settings: Settings, repository: EventRepository) -> Iterator[AgentRunner]:
    model: ReasoningModel
    http_model: HttpReasoningModel | None = None
    if settings.model.backend == "echo":
        model = EchoModel()
    else:
        http_model = HttpReasoningModel(
            url=settings.model.url,
            model=settings.model.model,
            api_key=settings.model.api_key,
            timeout_seconds=settings.model.timeout_seconds,
        )
        model = http_model

    runner = AgentRunner(
        repository=repository,
        agents=AgentRegistry(
            repository,
            default_agent=settings.runner.default_agent,
            orchestrator_slug=settings.runner.orchestrator_slug,
        ),
        tools=build_default_tool_registry(
            repository=repository,
            store=TenantStore(repository.engine),
            max_chain_depth=settings.runner.max_chain_depth,
        ),
        model=model,
        runner_id=settings.runner.runner_id or default_runner_id(),
        max_chain_depth=settings.runner.max_chain_depth,
        poll_interval_seconds=settings.runner.poll_interval_seconds,
    )
    try:
        yield runner
    finally:
        if http_model is not None:
            http_model.close()
