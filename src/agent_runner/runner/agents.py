"""Agent resolution: event -> agent slug, system prompt and tool allow-list."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from agent_runner.runner.chaining import ChainRule, parse_chain_rules
from agent_runner.runner.models import (
    AgentDefinition,
    EventView,
    PluginInstanceView,
    ResolutionReason,
)

logger = logging.getLogger(__name__)

DEFAULT_AGENT_SLUG = "lead_qualifier"
ORCHESTRATOR_SLUG = "orchestrator"
BUILTIN_AGENT_SLUG = "builtin"
BUILTIN_SYSTEM_PROMPT = "You are a helpful assistant. Respond with JSON."


class AgentDefinitionSource(Protocol):
    """Read access to stored agent definitions."""

    def get_agent_definition(self, slug: str) -> AgentDefinition | None: ...

    def get_plugin_instance(self, instance_id: str) -> PluginInstanceView | None: ...


@dataclass(slots=True, frozen=True)
class ResolvedAgent:
    """Agent chosen for one event."""

    slug: str
    system_prompt: str
    allowed_tools: frozenset[str]
    reason: ResolutionReason
    requested_slug: str


@dataclass(slots=True)
class OrchestratorConfig:
    """Routing map and chain rules from the orchestrator definition."""

    routing: dict[str, str] = field(default_factory=dict)
    chain_rules: list[ChainRule] = field(default_factory=list)

    @classmethod
    def from_default_config(cls, config: dict[str, Any]) -> OrchestratorConfig:
        raw_routing = config.get("routing", {})
        routing = (
            {
                str(intent): slug
                for intent, slug in raw_routing.items()
                if isinstance(slug, str) and slug.strip()
            }
            if isinstance(raw_routing, dict)
            else {}
        )
        return cls(routing=routing, chain_rules=parse_chain_rules(config.get("chainRules")))


class AgentRegistry:
    """Resolve the agent for an event; never raises for missing agents."""

    def __init__(
        self,
        source: AgentDefinitionSource,
        *,
        default_agent: str = DEFAULT_AGENT_SLUG,
        orchestrator_slug: str = ORCHESTRATOR_SLUG,
    ) -> None:
        self.source = source
        self.default_agent = default_agent
        self.orchestrator_slug = orchestrator_slug

    def orchestrator_config(self) -> OrchestratorConfig:
        definition = self.source.get_agent_definition(self.orchestrator_slug)
        if definition is None or not definition.is_active:
            return OrchestratorConfig()
        try:
            return OrchestratorConfig.from_default_config(definition.default_config)
        except ValueError as error:
            logger.warning("Ignoring invalid orchestrator config: %s", error)
            return OrchestratorConfig()

    def resolve(self, event: EventView) -> ResolvedAgent:
        """Target agent, plugin instance binding, orchestrator routing, then the default."""

        requested, reason = self._requested_agent(event)

        definition = self._active_definition(requested)
        if definition is None and requested != self.default_agent:
            logger.warning(
                "Agent %s missing or inactive, falling back to %s (event=%s)",
                requested,
                self.default_agent,
                event.event_id,
            )
            definition = self._active_definition(self.default_agent)
            reason = ResolutionReason.FALLBACK_INACTIVE

        if definition is None:
            logger.warning(
                "No active agent definition for %s, using built-in prompt (event=%s)",
                requested,
                event.event_id,
            )
            return ResolvedAgent(
                slug=BUILTIN_AGENT_SLUG,
                system_prompt=BUILTIN_SYSTEM_PROMPT,
                allowed_tools=frozenset(),
                reason=ResolutionReason.BUILTIN,
                requested_slug=requested,
            )
        return ResolvedAgent(
            slug=definition.slug,
            system_prompt=definition.system_prompt,
            allowed_tools=definition.allowed_tools,
            reason=reason,
            requested_slug=requested,
        )

    def _requested_agent(self, event: EventView) -> tuple[str, ResolutionReason]:
        if event.target_agent:
            return event.target_agent, ResolutionReason.TARGET
        bound = self._bound_agent(event)
        if bound:
            return bound, ResolutionReason.PLUGIN_INSTANCE
        routed = self.orchestrator_config().routing.get(event.intent)
        if routed:
            return routed, ResolutionReason.ROUTING
        return self.default_agent, ResolutionReason.DEFAULT

    def _bound_agent(self, event: EventView) -> str | None:
        if event.plugin_instance_id is None:
            return None
        instance = self.source.get_plugin_instance(event.plugin_instance_id)
        if instance is None or instance.business_id != event.business_id:
            return None
        return instance.agent_slug or None

    def _active_definition(self, slug: str) -> AgentDefinition | None:
        definition = self.source.get_agent_definition(slug)
        if definition is None or not definition.is_active:
            return None
        return definition
