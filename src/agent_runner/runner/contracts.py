"""Structured decision contract returned by the reasoning model."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class DecisionParseError(ValueError):
    """Model content could not be parsed into a decision."""

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(slots=True)
class ProposedToolCall:
    """One side-effecting action proposed by the model."""

    tool: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModelDecision:
    """Model decision; every field may be absent."""

    score: float | None = None
    tags: list[str] | None = None
    stage: str | None = None
    outcome: str | None = None
    notes: str | None = None
    action: str | None = None
    proposed_tool_calls: list[ProposedToolCall] = field(default_factory=list)
    tokens_used: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def analysis_snapshot(self) -> dict[str, Any]:
        """Decision fields kept in plugin state, absent ones as null."""

        return {
            "score": self.score,
            "tags": list(self.tags) if self.tags is not None else None,
            "stage": self.stage,
            "outcome": self.outcome,
            "action": self.action,
            "notes": self.notes,
        }


def parse_model_decision(content: str, *, tokens_used: int | None = None) -> ModelDecision:
    """Parse model message content (a JSON object) into ``ModelDecision``.

    Only unparsable JSON or a non-object root is an error. Optional fields
    with an unexpected type become None and malformed tool call entries are
    skipped; both are logged.
    """

    try:
        raw = json.loads(content)
    except json.JSONDecodeError as error:
        raise DecisionParseError("Invalid JSON response from LLM", kind="invalid_json") from error
    if not isinstance(raw, dict):
        raise DecisionParseError("LLM response must be a JSON object", kind="invalid_shape")

    return ModelDecision(
        score=_score(raw.get("score")),
        tags=_tags(raw.get("tags")),
        stage=_text(raw, "stage"),
        outcome=_text(raw, "outcome"),
        notes=_text(raw, "notes"),
        action=_text(raw, "action"),
        proposed_tool_calls=_parse_tool_calls(raw.get("proposedToolCalls")),
        tokens_used=tokens_used,
        raw=raw,
    )


def _score(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, int | float) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            logger.warning("Ignoring non-numeric decision.score: %r", value)
            return None
        if math.isfinite(parsed):
            return parsed
    logger.warning("Ignoring decision.score of unexpected value: %r", value)
    return None


def _tags(value: object) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        logger.warning("Ignoring decision.tags of type %s", type(value).__name__)
        return None
    tags = [tag for tag in value if isinstance(tag, str)]
    if len(tags) != len(value):
        logger.warning("Dropped %d non-string decision.tags entries", len(value) - len(tags))
    return tags


def _text(raw: dict[str, Any], name: str) -> str | None:
    value = raw.get(name)
    if value is None or isinstance(value, str):
        return value
    logger.warning("Ignoring decision.%s of type %s", name, type(value).__name__)
    return None


def _parse_tool_calls(value: object) -> list[ProposedToolCall]:
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Ignoring decision.proposedToolCalls of type %s", type(value).__name__)
        return []
    calls: list[ProposedToolCall] = []
    for index, item in enumerate(value):
        tool = item.get("tool") if isinstance(item, dict) else None
        payload = item.get("payload") if isinstance(item, dict) else None
        if payload is None:
            payload = {}
        if not isinstance(tool, str) or not tool.strip() or not isinstance(payload, dict):
            logger.warning("Skipping malformed decision.proposedToolCalls[%d]: %r", index, item)
            continue
        calls.append(ProposedToolCall(tool=tool.strip(), payload=payload))
    return calls
