from __future__ import annotations

import json
from typing import Any

import allure
import httpx
import pytest

from agent_runner.runner.agent_catalog import default_agent_definitions
from agent_runner.runner.agents import AgentRegistry
from agent_runner.runner.backend import (
    HttpReasoningModel,
    ModelFailureKind,
    ModelInvocationError,
    ModelRequest,
)
from agent_runner.runner.contracts import ModelDecision, parse_model_decision
from agent_runner.runner.models import (
    EventCreate,
    EventStatus,
    PluginInstanceWrite,
    RunStatus,
)
from agent_runner.runner.repository import EventRepository
from agent_runner.runner.worker import AgentRunner
from agent_runner.tools import TenantStore, ToolContext, ToolId, ToolRegistry, build_default_tool_registry

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("Runner"),
]


class ScriptedModel:
    """Returns queued decisions (or raises queued errors) in order."""

    def __init__(self, *outcomes: dict[str, Any] | Exception, tokens_used: int = 21) -> None:
        self.outcomes = list(outcomes)
        self.tokens_used = tokens_used
        self.requests: list[ModelRequest] = []

    def invoke(self, request: ModelRequest) -> ModelDecision:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return parse_model_decision(json.dumps(outcome), tokens_used=self.tokens_used)


def _seed_agents(repository: EventRepository) -> None:
    for definition in default_agent_definitions():
        repository.upsert_agent_definition(definition)


def _runner(
    repository: EventRepository,
    model: ScriptedModel | HttpReasoningModel,
    *,
    tools: ToolRegistry | None = None,
    runner_id: str = "runner-a",
) -> AgentRunner:
    return AgentRunner(
        repository=repository,
        agents=AgentRegistry(repository),
        tools=tools
        or build_default_tool_registry(repository=repository, store=TenantStore(repository.engine)),
        model=model,
        runner_id=runner_id,
        poll_interval_seconds=0,
    )


def _enqueue(repository: EventRepository, intent: str = "contact.submit", **kwargs) -> str:
    outcome = repository.enqueue_event(
        EventCreate(
            intent=intent,
            business_id="biz-1",
            payload=kwargs.pop("payload", {"name": "Ada", "email": "ada@example.com"}),
            **kwargs,
        ),
    )
    assert outcome.event is not None
    return outcome.event.event_id


def test_contact_submit_creates_lead_and_records_run(repository: EventRepository) -> None:
    _seed_agents(repository)
    received: list[tuple[dict[str, Any], ToolContext]] = []

    def create_lead(payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        received.append((payload, context))
        return {"leadId": "L1", "success": True}

    tools = ToolRegistry()
    tools.register(ToolId.CRM_LEAD_CREATE, create_lead)
    event_id = _enqueue(repository)
    model = ScriptedModel(
        {
            "score": 72,
            "stage": "warm",
            "proposedToolCalls": [
                {"tool": "crm.lead.create", "payload": {"name": "Ada", "email": "ada@example.com"}},
            ],
        },
    )

    result = _runner(repository, model, tools=tools).run_once()

    payload = result.to_payload()
    assert payload["status"] == "completed"
    assert payload["eventId"] == event_id
    assert payload["agent"] == "lead_qualifier"
    assert payload["toolCalls"] == [
        {"tool": "crm.lead.create", "success": True, "result": {"leadId": "L1", "success": True}},
    ]
    assert received[0][1].business_id == "biz-1"
    assert received[0][1].event_id == event_id
    assert model.requests[0].user_message() == {
        "intent": "contact.submit",
        "name": "Ada",
        "email": "ada@example.com",
    }

    details = repository.get_event_details(event_id=event_id)
    assert details is not None
    assert details.event.status == EventStatus.COMPLETED
    assert details.event.claimed_run_id == result.run_id
    assert details.event.processed_at is not None
    [run] = details.runs
    assert run.status == RunStatus.COMPLETED
    assert run.agent_slug == "lead_qualifier"
    assert run.runner_id == "runner-a"
    assert run.input_payload["intent"] == "contact.submit"
    assert run.output_payload is not None
    assert run.output_payload["score"] == 72
    assert run.tool_calls[0].result == {"leadId": "L1", "success": True}
    assert run.tokens_used == 21
    assert run.latency_ms is not None


def test_model_timeout_fails_event_and_run_without_tool_calls(repository: EventRepository) -> None:
    _seed_agents(repository)
    event_id = _enqueue(repository)
    model = ScriptedModel(
        ModelInvocationError("LLM call timed out: read timeout", kind=ModelFailureKind.TIMEOUT),
    )

    result = _runner(repository, model).run_once()

    assert result.status == "failed"
    assert result.tool_calls == []
    assert result.error == "LLM call timed out: read timeout"
    details = repository.get_event_details(event_id=event_id)
    assert details is not None
    assert details.event.status == EventStatus.FAILED
    [run] = details.runs
    assert run.status == RunStatus.FAILED
    assert run.error_message == "LLM call timed out: read timeout"
    assert run.tool_calls == []
    assert run.completed_at is not None


def test_partial_tool_failures_do_not_fail_the_run(repository: EventRepository) -> None:
    _seed_agents(repository)
    store = TenantStore(repository.engine)
    event_id = _enqueue(repository)
    model = ScriptedModel(
        {
            "proposedToolCalls": [
                {"tool": "crm.lead.create", "payload": {"email": "ada@example.com"}},
                {"tool": "pipeline.stage.set", "payload": {"stage": "warm"}},
                {"tool": "calendar.book", "payload": {"startsAt": "2026-11-02T10:00:00+00:00"}},
                {"tool": "shell.exec", "payload": {"cmd": "rm -rf /"}},
            ],
        },
    )

    result = _runner(repository, model).run_once()

    assert result.status == "completed"
    assert [(call.tool, call.success, call.error) for call in result.tool_calls] == [
        ("crm.lead.create", True, None),
        ("pipeline.stage.set", False, "pipeline.stage.set requires leadId"),
        ("calendar.book", False, "not authorized"),
        ("shell.exec", False, "unknown tool"),
    ]
    assert len(store.list_leads(business_id="biz-1")) == 1
    assert store.list_bookings(business_id="biz-1") == []
    event = repository.get_event(event_id=event_id)
    assert event is not None
    assert event.status == EventStatus.COMPLETED


def test_reprocessing_by_id_creates_new_run_and_keeps_old_one(
    repository: EventRepository,
) -> None:
    _seed_agents(repository)
    event_id = _enqueue(repository)
    model = ScriptedModel({"notes": "first"}, {"notes": "second"})
    runner = _runner(repository, model)

    first = runner.run_once()
    second = runner.run_once(event_id=event_id)

    assert first.run_id != second.run_id
    details = repository.get_event_details(event_id=event_id)
    assert details is not None
    assert [run.output_payload for run in details.runs] == [{"notes": "first"}, {"notes": "second"}]
    assert all(run.status == RunStatus.COMPLETED for run in details.runs)
    assert details.event.claimed_run_id == second.run_id
    assert details.event.claim_count == 2


def test_latest_analysis_state_is_written_for_plugin_instance(
    repository: EventRepository,
) -> None:
    _seed_agents(repository)
    repository.upsert_plugin_instance(PluginInstanceWrite(instance_id="pi-1", business_id="biz-1"))
    event_id = _enqueue(repository, plugin_instance_id="pi-1")
    model = ScriptedModel(
        {"score": 90, "tags": ["vip"], "stage": "hot", "outcome": "qualified", "notes": "call now"},
    )

    _runner(repository, model).run_once()

    state = repository.get_plugin_state(plugin_instance_id="pi-1")
    assert state is not None
    assert state.state["score"] == 90
    assert state.state["tags"] == ["vip"]
    assert state.state["stage"] == "hot"
    assert state.state["outcome"] == "qualified"
    assert state.state["action"] is None
    assert state.state["notes"] == "call now"
    assert state.state["lastEventId"] == event_id
    assert "lastProcessedAt" in state.state


def test_idle_results_when_nothing_to_claim(repository: EventRepository) -> None:
    runner = _runner(repository, ScriptedModel())

    assert runner.run_once().to_payload() == {"status": "idle", "message": "No pending events"}
    missing = runner.run_once(event_id="missing").to_payload()
    assert missing == {"status": "idle", "message": "Event not claimable: missing"}


def test_chain_rule_enqueues_follow_up_event(repository: EventRepository) -> None:
    _seed_agents(repository)
    event_id = _enqueue(repository)
    model = ScriptedModel({"stage": "hot_lead"}, {"action": "send_email"})
    runner = _runner(repository, model)

    first = runner.run_once()
    follow_up = runner.run_once()

    assert first.chained_event_id is not None
    child = repository.get_event(event_id=first.chained_event_id)
    assert child is not None
    assert child.parent_event_id == event_id
    assert child.target_agent == "auto_responder"
    assert child.chain_depth == 1
    assert follow_up.event_id == child.event_id
    assert follow_up.agent == "auto_responder"


def test_unexpected_error_marks_run_and_event_failed(repository: EventRepository) -> None:
    _seed_agents(repository)
    event_id = _enqueue(repository)
    runner = _runner(repository, ScriptedModel(RuntimeError("store exploded")))

    with pytest.raises(RuntimeError, match="store exploded"):
        runner.run_once()

    details = repository.get_event_details(event_id=event_id)
    assert details is not None
    assert details.event.status == EventStatus.FAILED
    assert details.runs[0].status == RunStatus.FAILED
    assert details.runs[0].error_message == "store exploded"


def test_run_loop_drains_queue(repository: EventRepository) -> None:
    _seed_agents(repository)
    for _ in range(3):
        _enqueue(repository)
    model = ScriptedModel(
        {"notes": "ok"},
        ModelInvocationError("No content in LLM response", kind=ModelFailureKind.MISSING_CONTENT),
        {"notes": "ok"},
    )

    summary = _runner(repository, model).run_loop(max_idle_polls=1)

    assert summary.processed == 3
    assert summary.completed == 2
    assert summary.failed == 1
    assert summary.idle_polls == 1


def test_loosely_typed_http_decision_still_runs_tools(repository: EventRepository) -> None:
    _seed_agents(repository)
    event_id = _enqueue(repository)
    decision = {
        "score": "80",
        "tags": "hot",
        "stage": 3,
        "proposedToolCalls": [
            {"tool": "crm.lead.create", "payload": {"name": "Ada", "email": "ada@example.com"}},
            {"payload": {"orphan": True}},
        ],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": json.dumps(decision)}}],
                "usage": {"total_tokens": 30},
            },
        )

    with HttpReasoningModel(
        url="https://llm.example.com/v1/chat/completions",
        model="test-model",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
    ) as model:
        result = _runner(repository, model).run_once()

    assert result.status == "completed"
    assert [(call.tool, call.success) for call in result.tool_calls] == [("crm.lead.create", True)]
    assert len(TenantStore(repository.engine).list_leads(business_id="biz-1")) == 1
    run = repository.get_run(run_id=result.run_id)
    assert run is not None
    assert run.output_payload == decision
    assert run.tokens_used == 30
    event = repository.get_event(event_id=event_id)
    assert event is not None
    assert event.status == EventStatus.COMPLETED


def test_failure_after_tools_keeps_executed_calls_on_run(
    repository: EventRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_agents(repository)
    repository.upsert_plugin_instance(PluginInstanceWrite(instance_id="pi-1", business_id="biz-1"))
    event_id = _enqueue(repository, plugin_instance_id="pi-1")

    def locked(**kwargs: Any) -> None:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repository, "upsert_plugin_state", locked)
    model = ScriptedModel(
        {"proposedToolCalls": [{"tool": "crm.lead.create", "payload": {"email": "ada@example.com"}}]},
    )

    with pytest.raises(RuntimeError, match="database is locked"):
        _runner(repository, model).run_once()

    details = repository.get_event_details(event_id=event_id)
    assert details is not None
    assert details.event.status == EventStatus.FAILED
    [run] = details.runs
    assert run.status == RunStatus.FAILED
    assert run.error_message == "database is locked"
    assert [(call.tool, call.success) for call in run.tool_calls] == [("crm.lead.create", True)]
    assert "leadId" in (run.tool_calls[0].result or {})
    assert len(TenantStore(repository.engine).list_leads(business_id="biz-1")) == 1


def test_run_loop_can_restart_after_stop_request(repository: EventRepository) -> None:
    _seed_agents(repository)
    _enqueue(repository)
    runner = _runner(repository, ScriptedModel({"notes": "ok"}))
    runner._stop_requested = True

    summary = runner.run_loop(max_idle_polls=1)

    assert summary.processed == 1
    assert summary.completed == 1
