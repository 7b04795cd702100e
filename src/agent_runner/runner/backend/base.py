"""Reasoning model interface for the runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from agent_runner.runner.contracts import ModelDecision


class ModelFailureKind(str, Enum):
    """Failure classes reported by model adapters."""

    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MISSING_CONTENT = "missing_content"
    INVALID_JSON = "invalid_json"
    INVALID_SHAPE = "invalid_shape"


class ModelInvocationError(RuntimeError):
    """Model call failed; fatal to the current run."""

    def __init__(self, message: str, *, kind: ModelFailureKind) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(slots=True)
class ModelRequest:
    """Inputs for one reasoning call."""

    system_prompt: str
    intent: str
    payload: dict[str, Any] = field(default_factory=dict)

    def user_message(self) -> dict[str, Any]:
        """User message body: the intent merged with the event payload."""

        return {"intent": self.intent, **self.payload}


class ReasoningModel(Protocol):
    """Protocol implemented by model adapters."""

    def invoke(self, request: ModelRequest) -> ModelDecision:
        """Send one request and return the parsed decision."""
