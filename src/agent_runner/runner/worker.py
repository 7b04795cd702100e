"""Runner that processes queued agent events one at a time."""

from __future__ import annotations

import logging
import os
import signal
import socket
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from agent_runner.runner.agents import AgentRegistry, ResolvedAgent
from agent_runner.runner.backend import ModelInvocationError, ModelRequest, ReasoningModel
from agent_runner.runner.chaining import select_next_agent
from agent_runner.runner.contracts import ModelDecision
from agent_runner.runner.models import (
    EventCreate,
    EventStatus,
    EventView,
    RunFinish,
    RunStart,
    RunStatus,
    RunView,
    ToolCallResult,
)
from agent_runner.runner.repository import EventRepository
from agent_runner.storage.common import utc_now
from agent_runner.tools.registry import ToolContext, ToolRegistry, execute_tool_calls

logger = logging.getLogger(__name__)

LATEST_ANALYSIS_KEY = "latest_analysis"
NO_PENDING_EVENTS = "No pending events"


def default_runner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass(slots=True)
class RunnerResult:
    """Outcome of one ``run_once`` invocation."""

    status: str
    event_id: str | None = None
    run_id: str | None = None
    agent: str | None = None
    result: dict[str, Any] | None = None
    tool_calls: list[ToolCallResult] = field(default_factory=list)
    latency_ms: int | None = None
    error: str | None = None
    message: str | None = None
    chained_event_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON summary; absent fields are omitted."""

        payload: dict[str, Any] = {"status": self.status}
        if self.event_id is not None:
            payload["eventId"] = self.event_id
        if self.run_id is not None:
            payload["runId"] = self.run_id
        if self.agent is not None:
            payload["agent"] = self.agent
        if self.result is not None:
            payload["result"] = self.result
        if self.event_id is not None:
            payload["toolCalls"] = [call.to_payload() for call in self.tool_calls]
        if self.latency_ms is not None:
            payload["latencyMs"] = self.latency_ms
        if self.error is not None:
            payload["error"] = self.error
        if self.message is not None:
            payload["message"] = self.message
        if self.chained_event_id is not None:
            payload["chainedEventId"] = self.chained_event_id
        return payload


@dataclass(slots=True)
class RunnerLoopSummary:
    """Aggregate loop counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    idle_polls: int = 0


class AgentRunner:
    """Claim an event, resolve its agent, reason, act, and record the run."""

    def __init__(
        self,
        *,
        repository: EventRepository,
        agents: AgentRegistry,
        tools: ToolRegistry,
        model: ReasoningModel,
        runner_id: str,
        max_chain_depth: int = 5,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.repository = repository
        self.agents = agents
        self.tools = tools
        self.model = model
        self.runner_id = runner_id
        self.max_chain_depth = max_chain_depth
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False

    def run_once(self, event_id: str | None = None) -> RunnerResult:
        """Process at most one event; ``event_id`` forces that specific event."""

        if event_id is None:
            event = self.repository.claim_next_event(runner_id=self.runner_id)
            if event is None:
                return RunnerResult(status="idle", message=NO_PENDING_EVENTS)
        else:
            event = self.repository.claim_event(event_id=event_id, runner_id=self.runner_id)
            if event is None:
                return RunnerResult(status="idle", message=f"Event not claimable: {event_id}")

        started = time.monotonic()
        logger.info(
            "Claimed event: event_id=%s intent=%s claim_count=%d runner=%s",
            event.event_id,
            event.intent,
            event.claim_count,
            self.runner_id,
        )
        run = self.repository.create_run(
            RunStart(
                event_id=event.event_id,
                business_id=event.business_id,
                plugin_instance_id=event.plugin_instance_id,
                runner_id=self.runner_id,
                input_payload={"intent": event.intent, **event.payload},
            ),
        )
        agent_slug: str | None = None
        executed: list[ToolCallResult] = []
        try:
            resolved = self.agents.resolve(event)
            agent_slug = resolved.slug
            return self._process(
                event=event,
                run=run,
                resolved=resolved,
                started=started,
                executed=executed,
            )
        except Exception as error:
            logger.exception(
                "Runner failed unexpectedly: event_id=%s run_id=%s",
                event.event_id,
                run.run_id,
            )
            self._record_failure(
                event=event,
                run=run,
                agent_slug=agent_slug,
                error_message=str(error) or error.__class__.__name__,
                tool_calls=executed,
                started=started,
            )
            raise

    def run_loop(
        self,
        *,
        max_events: int | None = None,
        max_idle_polls: int = 1,
    ) -> RunnerLoopSummary:
        """Run until the queue is idle ``max_idle_polls`` times or ``max_events`` processed."""

        aggregate = RunnerLoopSummary()
        consecutive_idle = 0
        self._stop_requested = False
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_events is not None and aggregate.processed >= max_events:
                    return aggregate

                result = self.run_once()
                if result.status == "idle":
                    aggregate.idle_polls += 1
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                consecutive_idle = 0
                aggregate.processed += 1
                if result.status == "completed":
                    aggregate.completed += 1
                else:
                    aggregate.failed += 1

    def _process(
        self,
        *,
        event: EventView,
        run: RunView,
        resolved: ResolvedAgent,
        started: float,
        executed: list[ToolCallResult],
    ) -> RunnerResult:
        """Reason and act; ``executed`` collects tool results as they complete."""

        logger.debug(
            "Resolved agent: event_id=%s agent=%s reason=%s",
            event.event_id,
            resolved.slug,
            resolved.reason.value,
        )
        try:
            decision = self.model.invoke(
                ModelRequest(
                    system_prompt=resolved.system_prompt,
                    intent=event.intent,
                    payload=event.payload,
                ),
            )
        except ModelInvocationError as error:
            logger.warning(
                "Model invocation failed: event_id=%s kind=%s error=%s",
                event.event_id,
                error.kind.value,
                error,
            )
            latency_ms = self._record_failure(
                event=event,
                run=run,
                agent_slug=resolved.slug,
                error_message=str(error),
                tool_calls=[],
                started=started,
            )
            return RunnerResult(
                status="failed",
                event_id=event.event_id,
                run_id=run.run_id,
                agent=resolved.slug,
                latency_ms=latency_ms,
                error=str(error),
            )

        executed.extend(
            execute_tool_calls(
                self.tools,
                decision.proposed_tool_calls,
                allowed_tools=resolved.allowed_tools,
                context=ToolContext(
                    business_id=event.business_id,
                    plugin_instance_id=event.plugin_instance_id,
                    event_id=event.event_id,
                    chain_depth=event.chain_depth,
                ),
            ),
        )

        if event.plugin_instance_id is not None:
            self.repository.upsert_plugin_state(
                plugin_instance_id=event.plugin_instance_id,
                state_key=LATEST_ANALYSIS_KEY,
                state={
                    **decision.analysis_snapshot(),
                    "lastProcessedAt": utc_now().isoformat(),
                    "lastEventId": event.event_id,
                },
            )

        chained_event_id = self._follow_chain(event=event, resolved=resolved, decision=decision)

        latency_ms = _elapsed_ms(started)
        lease_held = self.repository.finalize_event(
            event_id=event.event_id,
            runner_id=self.runner_id,
            status=EventStatus.COMPLETED,
            run_id=run.run_id,
        )
        self.repository.finish_run(
            run_id=run.run_id,
            payload=RunFinish(
                status=RunStatus.COMPLETED,
                agent_slug=resolved.slug,
                output_payload=decision.raw,
                tool_calls=list(executed),
                latency_ms=latency_ms,
                tokens_used=decision.tokens_used,
            ),
        )
        logger.info(
            "Event completed: event_id=%s agent=%s tool_calls=%d latency_ms=%d",
            event.event_id,
            resolved.slug,
            len(executed),
            latency_ms,
        )
        return RunnerResult(
            status="completed",
            event_id=event.event_id,
            run_id=run.run_id,
            agent=resolved.slug,
            result=decision.raw,
            tool_calls=list(executed),
            latency_ms=latency_ms,
            message=None if lease_held else "Event lease was reclaimed by another runner",
            chained_event_id=chained_event_id,
        )

    def _follow_chain(
        self,
        *,
        event: EventView,
        resolved: ResolvedAgent,
        decision: ModelDecision,
    ) -> str | None:
        next_agent = select_next_agent(
            self.agents.orchestrator_config().chain_rules,
            agent_slug=resolved.slug,
            decision=decision.raw,
        )
        if next_agent is None:
            return None
        if event.chain_depth + 1 > self.max_chain_depth:
            logger.warning(
                "Chain depth limit reached, not chaining %s -> %s (event=%s)",
                resolved.slug,
                next_agent,
                event.event_id,
            )
            return None
        outcome = self.repository.enqueue_event(
            EventCreate(
                intent=event.intent,
                business_id=event.business_id,
                payload=event.payload,
                plugin_instance_id=event.plugin_instance_id,
                target_agent=next_agent,
                parent_event_id=event.event_id,
                chain_depth=event.chain_depth + 1,
            ),
        )
        if outcome.event is None:
            logger.info("Chained event skipped: %s", outcome.reason)
            return None
        return outcome.event.event_id

    def _record_failure(
        self,
        *,
        event: EventView,
        run: RunView,
        agent_slug: str | None,
        error_message: str,
        tool_calls: list[ToolCallResult],
        started: float,
    ) -> int:
        latency_ms = _elapsed_ms(started)
        self.repository.finalize_event(
            event_id=event.event_id,
            runner_id=self.runner_id,
            status=EventStatus.FAILED,
            run_id=run.run_id,
        )
        self.repository.finish_run(
            run_id=run.run_id,
            payload=RunFinish(
                status=RunStatus.FAILED,
                agent_slug=agent_slug,
                output_payload=None,
                tool_calls=tool_calls,
                latency_ms=latency_ms,
                tokens_used=None,
                error_message=error_message,
            ),
        )
        return latency_ms

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Stop requested by %s, finishing current event", name)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
