"""Orchestrator chain rules: follow-up agent selection from a decision."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class ChainRule:
    """``{agent, when: {field, equals}, then}``; ``then`` may be null."""

    agent: str
    field: str
    equals: Any
    then: str | None


def parse_chain_rules(raw: object) -> list[ChainRule]:
    """Parse ``chainRules``; malformed entries are rejected."""

    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("chainRules must be an array")
    rules: list[ChainRule] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"chainRules[{index}] must be an object")
        agent = item.get("agent")
        when = item.get("when")
        then = item.get("then")
        if not isinstance(agent, str) or not agent:
            raise ValueError(f"chainRules[{index}].agent must be a non-empty string")
        if not isinstance(when, dict) or not isinstance(when.get("field"), str):
            raise ValueError(f"chainRules[{index}].when.field must be a string")
        if then is not None and not isinstance(then, str):
            raise ValueError(f"chainRules[{index}].then must be a string or null")
        rules.append(
            ChainRule(agent=agent, field=when["field"], equals=when.get("equals"), then=then),
        )
    return rules


def select_next_agent(
    rules: list[ChainRule],
    *,
    agent_slug: str,
    decision: dict[str, Any],
) -> str | None:
    """First rule for ``agent_slug`` whose condition matches and has a target."""

    for rule in rules:
        if rule.agent != agent_slug or rule.then is None:
            continue
        if rule.field in decision and decision[rule.field] == rule.equals:
            return rule.then
    return None
