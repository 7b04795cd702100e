"""Offline deterministic model for local smoke runs."""

from __future__ import annotations

import json

from agent_runner.runner.backend.base import ModelFailureKind, ModelInvocationError, ModelRequest
from agent_runner.runner.contracts import DecisionParseError, ModelDecision, parse_model_decision


class EchoModel:
    """Echo the event back as a decision.

    Tool calls listed under ``proposedToolCalls`` in the event payload are
    proposed verbatim, which lets smoke runs exercise the tool registry without
    a real model.
    """

    def invoke(self, request: ModelRequest) -> ModelDecision:
        message = request.user_message()
        decision = {
            "score": 0,
            "tags": [request.intent],
            "stage": "new",
            "outcome": "echo",
            "action": "none",
            "notes": f"echo of {request.intent}",
            "proposedToolCalls": message.get("proposedToolCalls", []),
        }
        try:
            return parse_model_decision(json.dumps(decision), tokens_used=0)
        except DecisionParseError as error:
            raise ModelInvocationError(str(error), kind=ModelFailureKind(error.kind)) from error
