from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

import allure

from agent_runner.runner.agent_catalog import default_agent_definitions
from agent_runner.runner.agents import BUILTIN_SYSTEM_PROMPT, AgentRegistry
from agent_runner.runner.chaining import ChainRule, parse_chain_rules, select_next_agent
from agent_runner.runner.models import (
    AgentDefinition,
    AgentDefinitionWrite,
    EventStatus,
    EventView,
    PluginInstanceView,
    PluginInstanceWrite,
    ResolutionReason,
)
from agent_runner.runner.repository import EventRepository

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("Agent Routing"),
]


class InMemoryAgents:
    def __init__(
        self,
        *definitions: AgentDefinition,
        instances: tuple[PluginInstanceView, ...] = (),
    ) -> None:
        self.definitions = {definition.slug: definition for definition in definitions}
        self.instances = {instance.instance_id: instance for instance in instances}

    def get_agent_definition(self, slug: str) -> AgentDefinition | None:
        return self.definitions.get(slug)

    def get_plugin_instance(self, instance_id: str) -> PluginInstanceView | None:
        return self.instances.get(instance_id)


def _agent(slug: str, *tools: str, active: bool = True, config: dict | None = None) -> AgentDefinition:
    return AgentDefinition(
        slug=slug,
        name=slug,
        system_prompt=f"prompt for {slug}",
        allowed_tools=frozenset(tools),
        default_config=config or {},
        is_active=active,
    )


def _event(
    intent: str,
    *,
    target_agent: str | None = None,
    plugin_instance_id: str | None = None,
) -> EventView:
    return EventView(
        event_id="evt-1",
        business_id="biz-1",
        plugin_instance_id=plugin_instance_id,
        intent=intent,
        payload={},
        dedupe_key=None,
        target_agent=target_agent,
        parent_event_id=None,
        chain_depth=0,
        status=EventStatus.PROCESSING,
        claim_count=1,
        locked_at=None,
        locked_by="runner-a",
        claimed_run_id=None,
        created_at=datetime(2026, 10, 19, tzinfo=UTC),
        processed_at=None,
    )


ORCHESTRATOR = _agent(
    "orchestrator",
    "agent.route",
    config={"routing": {"quote.request": "quote_agent", "booking.create": "booking_agent"}},
)


def test_routing_map_selects_agent_for_intent() -> None:
    registry = AgentRegistry(
        InMemoryAgents(ORCHESTRATOR, _agent("quote_agent", "notify.team"), _agent("lead_qualifier")),
    )

    resolved = registry.resolve(_event("quote.request"))

    assert resolved.slug == "quote_agent"
    assert resolved.reason == ResolutionReason.ROUTING
    assert resolved.allowed_tools == frozenset({"notify.team"})


def test_unrouted_intent_uses_default_agent() -> None:
    registry = AgentRegistry(InMemoryAgents(ORCHESTRATOR, _agent("lead_qualifier", "crm.lead.create")))

    resolved = registry.resolve(_event("newsletter.subscribe"))

    assert resolved.slug == "lead_qualifier"
    assert resolved.reason == ResolutionReason.DEFAULT


def test_inactive_routed_agent_falls_back_to_default() -> None:
    registry = AgentRegistry(
        InMemoryAgents(
            ORCHESTRATOR,
            _agent("booking_agent", "calendar.book", active=False),
            _agent("lead_qualifier", "crm.lead.create"),
        ),
    )

    resolved = registry.resolve(_event("booking.create"))

    assert resolved.slug == "lead_qualifier"
    assert resolved.requested_slug == "booking_agent"
    assert resolved.reason == ResolutionReason.FALLBACK_INACTIVE
    assert "calendar.book" not in resolved.allowed_tools


def test_missing_default_uses_builtin_prompt_with_no_tools() -> None:
    registry = AgentRegistry(InMemoryAgents())

    resolved = registry.resolve(_event("contact.submit"))

    assert resolved.reason == ResolutionReason.BUILTIN
    assert resolved.system_prompt == BUILTIN_SYSTEM_PROMPT
    assert resolved.allowed_tools == frozenset()


def test_target_agent_overrides_routing() -> None:
    registry = AgentRegistry(
        InMemoryAgents(ORCHESTRATOR, _agent("auto_responder", "notify.team"), _agent("quote_agent")),
    )

    resolved = registry.resolve(_event("quote.request", target_agent="auto_responder"))

    assert resolved.slug == "auto_responder"
    assert resolved.reason == ResolutionReason.TARGET


def test_invalid_chain_rules_do_not_break_routing() -> None:
    broken = replace(
        ORCHESTRATOR,
        default_config={"routing": {"quote.request": "quote_agent"}, "chainRules": "oops"},
    )
    registry = AgentRegistry(InMemoryAgents(broken, _agent("lead_qualifier")))

    resolved = registry.resolve(_event("quote.request"))

    assert resolved.slug == "lead_qualifier"
    assert registry.orchestrator_config().chain_rules == []


def test_chain_rules_pick_first_matching_rule_with_target() -> None:
    rules = parse_chain_rules(
        [
            {"agent": "spam_guard", "when": {"field": "outcome", "equals": "blocked"}, "then": None},
            {"agent": "lead_qualifier", "when": {"field": "stage", "equals": "hot_lead"}, "then": "auto_responder"},
        ],
    )

    assert rules[1] == ChainRule(
        agent="lead_qualifier",
        field="stage",
        equals="hot_lead",
        then="auto_responder",
    )
    assert select_next_agent(rules, agent_slug="lead_qualifier", decision={"stage": "hot_lead"}) == (
        "auto_responder"
    )
    assert select_next_agent(rules, agent_slug="lead_qualifier", decision={"stage": "cold"}) is None
    assert select_next_agent(rules, agent_slug="spam_guard", decision={"outcome": "blocked"}) is None


def test_seeded_catalog_resolves_through_repository(repository: EventRepository) -> None:
    for definition in default_agent_definitions():
        repository.upsert_agent_definition(definition)
    repository.upsert_agent_definition(
        AgentDefinitionWrite(
            slug="quote_agent",
            name="Quote Agent",
            system_prompt="disabled",
            is_active=False,
        ),
    )
    registry = AgentRegistry(repository)
    orchestrator = repository.get_agent_definition("orchestrator")
    assert orchestrator is not None
    assert set(orchestrator.default_config) == {"routing", "chainRules"}

    assert registry.resolve(_event("booking.create")).slug == "booking_agent"
    fallback = registry.resolve(_event("quote.request"))
    assert fallback.slug == "lead_qualifier"
    assert fallback.reason == ResolutionReason.FALLBACK_INACTIVE
    assert fallback.allowed_tools == frozenset(
        {"crm.lead.create", "notify.team", "pipeline.stage.set", "state.patch"},
    )
    assert [agent.slug for agent in repository.list_agent_definitions(active_only=True)] == [
        "auto_responder",
        "booking_agent",
        "cta_optimizer",
        "intent_router",
        "lead_qualifier",
        "orchestrator",
        "spam_guard",
    ]


def _instance(agent_slug: str | None, *, business_id: str = "biz-1") -> PluginInstanceView:
    return PluginInstanceView(
        instance_id="pi-1",
        business_id=business_id,
        agent_slug=agent_slug,
        config={},
        is_enabled=True,
    )


def test_plugin_instance_binding_wins_over_routing() -> None:
    registry = AgentRegistry(
        InMemoryAgents(
            ORCHESTRATOR,
            _agent("cta_optimizer", "state.patch"),
            _agent("quote_agent"),
            _agent("lead_qualifier"),
            instances=(_instance("cta_optimizer"),),
        ),
    )

    resolved = registry.resolve(_event("quote.request", plugin_instance_id="pi-1"))

    assert resolved.slug == "cta_optimizer"
    assert resolved.reason == ResolutionReason.PLUGIN_INSTANCE
    assert resolved.allowed_tools == frozenset({"state.patch"})


def test_target_agent_overrides_plugin_instance_binding() -> None:
    registry = AgentRegistry(
        InMemoryAgents(
            _agent("cta_optimizer"),
            _agent("auto_responder"),
            instances=(_instance("cta_optimizer"),),
        ),
    )

    resolved = registry.resolve(
        _event("contact.submit", target_agent="auto_responder", plugin_instance_id="pi-1"),
    )

    assert resolved.slug == "auto_responder"
    assert resolved.reason == ResolutionReason.TARGET


def test_unbound_or_foreign_plugin_instance_falls_through_to_routing() -> None:
    agents = (ORCHESTRATOR, _agent("quote_agent"), _agent("cta_optimizer"), _agent("lead_qualifier"))
    unbound = AgentRegistry(InMemoryAgents(*agents, instances=(_instance(None),)))
    foreign = AgentRegistry(
        InMemoryAgents(*agents, instances=(_instance("cta_optimizer", business_id="biz-2"),)),
    )

    for registry in (unbound, foreign):
        resolved = registry.resolve(_event("quote.request", plugin_instance_id="pi-1"))
        assert resolved.slug == "quote_agent"
        assert resolved.reason == ResolutionReason.ROUTING


def test_inactive_bound_agent_falls_back_to_default(repository: EventRepository) -> None:
    for definition in default_agent_definitions():
        repository.upsert_agent_definition(definition)
    repository.upsert_agent_definition(
        AgentDefinitionWrite(
            slug="cta_optimizer",
            name="CTA Optimizer",
            system_prompt="disabled",
            is_active=False,
        ),
    )
    repository.upsert_plugin_instance(
        PluginInstanceWrite(instance_id="pi-1", business_id="biz-1", agent_slug="booking_agent"),
    )
    repository.upsert_plugin_instance(
        PluginInstanceWrite(instance_id="pi-2", business_id="biz-1", agent_slug="cta_optimizer"),
    )
    registry = AgentRegistry(repository)

    bound = registry.resolve(_event("contact.submit", plugin_instance_id="pi-1"))
    inactive = registry.resolve(_event("contact.submit", plugin_instance_id="pi-2"))

    assert bound.slug == "booking_agent"
    assert bound.reason == ResolutionReason.PLUGIN_INSTANCE
    assert inactive.slug == "lead_qualifier"
    assert inactive.requested_slug == "cta_optimizer"
    assert inactive.reason == ResolutionReason.FALLBACK_INACTIVE
