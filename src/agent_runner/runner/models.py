"""Domain models for the agent event queue, runs and registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventStatus(str, Enum):
    """Durable event lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Run audit record states."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResolutionReason(str, Enum):
    """How the runner arrived at the agent that handled an event."""

    TARGET = "target"
    PLUGIN_INSTANCE = "plugin_instance"
    ROUTING = "routing"
    DEFAULT = "default"
    FALLBACK_INACTIVE = "fallback_inactive"
    BUILTIN = "builtin"


@dataclass(slots=True)
class EventCreate:
    """Input payload for enqueuing an event."""

    intent: str
    business_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    plugin_instance_id: str | None = None
    dedupe_key: str | None = None
    target_agent: str | None = None
    parent_event_id: str | None = None
    chain_depth: int = 0
    event_id: str | None = None


@dataclass(slots=True)
class EventView:
    """Readable event view for runner and CLI logic."""

    event_id: str
    business_id: str
    plugin_instance_id: str | None
    intent: str
    payload: dict[str, Any]
    dedupe_key: str | None
    target_agent: str | None
    parent_event_id: str | None
    chain_depth: int
    status: EventStatus
    claim_count: int
    locked_at: datetime | None
    locked_by: str | None
    claimed_run_id: str | None
    created_at: datetime
    processed_at: datetime | None


@dataclass(slots=True)
class EnqueueResult:
    """Outcome of an enqueue request; skipped enqueues carry the reason."""

    event: EventView | None
    skipped: bool = False
    reason: str | None = None
    existing_event_id: str | None = None


@dataclass(slots=True)
class ToolCallResult:
    """One executed (or refused) tool call, embedded in a run record."""

    tool: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"tool": self.tool, "success": self.success}
        if self.success:
            payload["result"] = self.result or {}
        else:
            payload["error"] = self.error or "unknown error"
        return payload

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> ToolCallResult:
        result = raw.get("result")
        error = raw.get("error")
        return cls(
            tool=str(raw.get("tool", "")),
            success=bool(raw.get("success")),
            result=result if isinstance(result, dict) else None,
            error=error if isinstance(error, str) else None,
        )


@dataclass(slots=True)
class RunStart:
    """Input to create the processing run row right after a claim."""

    event_id: str
    business_id: str
    plugin_instance_id: str | None
    runner_id: str
    input_payload: dict[str, Any]


@dataclass(slots=True)
class RunFinish:
    """Input to finalize one run row."""

    status: RunStatus
    agent_slug: str | None
    output_payload: dict[str, Any] | None
    tool_calls: list[ToolCallResult]
    latency_ms: int
    tokens_used: int | None
    error_message: str | None = None


@dataclass(slots=True)
class RunView:
    """Stored run audit record."""

    run_id: str
    event_id: str
    business_id: str
    plugin_instance_id: str | None
    agent_slug: str | None
    runner_id: str
    status: RunStatus
    input_payload: dict[str, Any]
    output_payload: dict[str, Any] | None
    tool_calls: list[ToolCallResult]
    tokens_used: int | None
    latency_ms: int | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None


@dataclass(slots=True)
class EventDetails:
    """Event with its run history, oldest first."""

    event: EventView
    runs: list[RunView]


@dataclass(slots=True)
class AgentDefinitionWrite:
    """Payload for creating/updating an agent definition."""

    slug: str
    name: str
    system_prompt: str
    allowed_tools: tuple[str, ...] = ()
    default_config: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    is_active: bool = True


@dataclass(slots=True)
class AgentDefinition:
    """Agent configuration as read by the runner."""

    slug: str
    name: str
    system_prompt: str
    allowed_tools: frozenset[str]
    default_config: dict[str, Any]
    is_active: bool
    description: str | None = None


@dataclass(slots=True)
class PluginInstanceWrite:
    """Payload for registering a stateful plugin instance."""

    instance_id: str
    business_id: str
    agent_slug: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    is_enabled: bool = True


@dataclass(slots=True)
class PluginInstanceView:
    instance_id: str
    business_id: str
    agent_slug: str | None
    config: dict[str, Any]
    is_enabled: bool


@dataclass(slots=True)
class PluginStateView:
    """Stored state snapshot for one plugin instance + key."""

    plugin_instance_id: str
    state_key: str
    state: dict[str, Any]
    updated_at: datetime
