"""Capability-restricted tools the runner executes on behalf of agents."""

from agent_runner.tools.handlers import build_default_tool_registry
from agent_runner.tools.registry import (
    NOT_AUTHORIZED_ERROR,
    UNKNOWN_TOOL_ERROR,
    ToolContext,
    ToolExecutionError,
    ToolId,
    ToolRegistry,
    execute_tool_calls,
)
from agent_runner.tools.store import SlotConflictError, TenantStore

__all__ = [
    "NOT_AUTHORIZED_ERROR",
    "UNKNOWN_TOOL_ERROR",
    "SlotConflictError",
    "TenantStore",
    "ToolContext",
    "ToolExecutionError",
    "ToolId",
    "ToolRegistry",
    "build_default_tool_registry",
    "execute_tool_calls",
]
