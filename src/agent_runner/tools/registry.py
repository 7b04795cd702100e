"""Closed tool registry and authorized sequential execution."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from agent_runner.runner.contracts import ProposedToolCall
from agent_runner.runner.models import ToolCallResult

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_ERROR = "unknown tool"
NOT_AUTHORIZED_ERROR = "not authorized"


class ToolId(str, Enum):
    """Every tool identifier the runner can dispatch."""

    CRM_LEAD_CREATE = "crm.lead.create"
    NOTIFY_TEAM = "notify.team"
    PIPELINE_STAGE_SET = "pipeline.stage.set"
    STATE_PATCH = "state.patch"
    CALENDAR_CHECK = "calendar.check"
    CALENDAR_BOOK = "calendar.book"
    AGENT_ROUTE = "agent.route"
    AGENT_INVOKE = "agent.invoke"


class ToolExecutionError(RuntimeError):
    """Handler-level failure recorded on the tool call result."""


@dataclass(slots=True, frozen=True)
class ToolContext:
    """What a handler may know about the event it acts for."""

    business_id: str
    plugin_instance_id: str | None
    event_id: str
    chain_depth: int = 0


ToolHandler = Callable[[dict[str, Any], ToolContext], dict[str, Any]]


class ToolRegistry:
    """Mapping from ``ToolId`` to handler; ids outside the enum are rejected."""

    def __init__(self) -> None:
        self._handlers: dict[ToolId, ToolHandler] = {}

    def register(self, tool_id: ToolId | str, handler: ToolHandler) -> None:
        try:
            key = ToolId(tool_id)
        except ValueError as error:
            raise ValueError(f"Unknown tool identifier: {tool_id}") from error
        self._handlers[key] = handler

    def get(self, tool: str) -> ToolHandler | None:
        try:
            key = ToolId(tool)
        except ValueError:
            return None
        return self._handlers.get(key)

    def tool_ids(self) -> list[str]:
        return sorted(tool_id.value for tool_id in self._handlers)


def execute_tool_calls(
    registry: ToolRegistry,
    calls: Iterable[ProposedToolCall],
    *,
    allowed_tools: frozenset[str],
    context: ToolContext,
) -> list[ToolCallResult]:
    """Run proposed calls in order; one failing call never stops the rest.

    The allow-list comes from the resolved agent definition, not from the model.
    """

    results: list[ToolCallResult] = []
    for call in calls:
        handler = registry.get(call.tool)
        if handler is None:
            logger.warning("Unknown tool proposed: tool=%s event=%s", call.tool, context.event_id)
            results.append(ToolCallResult(tool=call.tool, success=False, error=UNKNOWN_TOOL_ERROR))
            continue
        if call.tool not in allowed_tools:
            logger.warning(
                "Tool not authorized for agent: tool=%s event=%s",
                call.tool,
                context.event_id,
            )
            results.append(
                ToolCallResult(tool=call.tool, success=False, error=NOT_AUTHORIZED_ERROR),
            )
            continue
        try:
            result = handler(call.payload, context)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Tool call failed: tool=%s event=%s error=%s",
                call.tool,
                context.event_id,
                error,
            )
            results.append(
                ToolCallResult(
                    tool=call.tool,
                    success=False,
                    error=str(error) or error.__class__.__name__,
                ),
            )
            continue
        results.append(ToolCallResult(tool=call.tool, success=True, result=result))
    return results
