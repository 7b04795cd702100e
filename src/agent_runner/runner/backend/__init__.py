"""Reasoning model backends."""

from agent_runner.runner.backend.base import (
    ModelFailureKind,
    ModelInvocationError,
    ModelRequest,
    ReasoningModel,
)
from agent_runner.runner.backend.echo_model import EchoModel
from agent_runner.runner.backend.http_model import HttpReasoningModel

__all__ = [
    "EchoModel",
    "HttpReasoningModel",
    "ModelFailureKind",
    "ModelInvocationError",
    "ModelRequest",
    "ReasoningModel",
]
