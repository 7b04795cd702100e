"""Built-in agent pack loaded by ``agent-runner agents seed``."""

from __future__ import annotations

from agent_runner.runner.models import AgentDefinitionWrite

_JSON_ONLY = "Output exactly one JSON object. No markdown, no code fences, no commentary."

_DECISION_SCHEMA = """Decision fields (all optional):
{
  "score": 0-100,
  "tags": ["tag"],
  "stage": "string",
  "outcome": "string",
  "action": "string",
  "notes": "string",
  "proposedToolCalls": [{"tool": "tool.id", "payload": {}}]
}"""


def _prompt(role: str, focus: list[str]) -> str:
    lines = [role, "", "Consider:"]
    lines.extend(f"- {item}" for item in focus)
    lines.extend(["", _JSON_ONLY, "", _DECISION_SCHEMA])
    return "\n".join(lines)


ORCHESTRATOR_ROUTING = {
    "contact.submit": "lead_qualifier",
    "newsletter.subscribe": "lead_qualifier",
    "booking.create": "booking_agent",
    "quote.request": "quote_agent",
    "lead.capture": "lead_qualifier",
}

ORCHESTRATOR_CHAIN_RULES = [
    {"agent": "lead_qualifier", "when": {"field": "stage", "equals": "hot_lead"}, "then": "auto_responder"},
    {"agent": "quote_agent", "when": {"field": "outcome", "equals": "complete"}, "then": "auto_responder"},
    {"agent": "spam_guard", "when": {"field": "outcome", "equals": "blocked"}, "then": None},
]


def default_agent_definitions(*, orchestrator_slug: str = "orchestrator") -> list[AgentDefinitionWrite]:
    """Agent definitions for the standard lead/quote/booking flows."""

    return [
        AgentDefinitionWrite(
            slug=orchestrator_slug,
            name="Orchestrator",
            description="Routes intents to specialized agents.",
            system_prompt=_prompt(
                "You route an intent and payload to the agent that should handle it.",
                ["Deterministic routing rules", "Urgency of the request"],
            ),
            allowed_tools=("agent.route", "agent.invoke"),
            default_config={
                "routing": dict(ORCHESTRATOR_ROUTING),
                "chainRules": [dict(rule) for rule in ORCHESTRATOR_CHAIN_RULES],
            },
        ),
        AgentDefinitionWrite(
            slug="spam_guard",
            name="Spam Guard",
            description="Flags spam submissions before business agents see them.",
            system_prompt=_prompt(
                "You are a spam detection agent. Set outcome to pass, review or blocked.",
                ["Email domain patterns", "Link density and suspicious phrases"],
            ),
            allowed_tools=("state.patch",),
            default_config={"blockThreshold": 0.8, "reviewThreshold": 0.5},
        ),
        AgentDefinitionWrite(
            slug="lead_qualifier",
            name="Lead Qualifier",
            description="Scores and qualifies inbound leads.",
            system_prompt=_prompt(
                "You are a lead qualification agent. Score and categorize incoming leads; "
                "use stage cold, warm, hot_lead or disqualified.",
                [
                    "Contact information completeness",
                    "Message intent and urgency",
                    "Budget and timeline signals",
                ],
            ),
            allowed_tools=("crm.lead.create", "notify.team", "pipeline.stage.set", "state.patch"),
            default_config={"hotLeadThreshold": 80, "notifyOnHot": True},
        ),
        AgentDefinitionWrite(
            slug="quote_agent",
            name="Quote Agent",
            description="Handles quote requests.",
            system_prompt=_prompt(
                "You are a quote agent. Set outcome to complete, needs_info or escalate.",
                ["Scope and quantity", "Timeline requirements"],
            ),
            allowed_tools=("crm.lead.create", "notify.team", "state.patch"),
            default_config={"defaultCurrency": "USD", "escalateAbove": 10_000},
        ),
        AgentDefinitionWrite(
            slug="auto_responder",
            name="Auto Responder",
            description="Prepares follow-up messages for qualified leads.",
            system_prompt=_prompt(
                "You are an auto-response agent. Choose an action and draft the follow-up.",
                ["Lead score and stage", "Original inquiry content"],
            ),
            allowed_tools=("notify.team", "state.patch"),
            default_config={"maxDelayMinutes": 60},
        ),
        AgentDefinitionWrite(
            slug="cta_optimizer",
            name="CTA Optimizer",
            description="Suggests call-to-action improvements.",
            system_prompt=_prompt(
                "You are a CTA optimization agent.",
                ["Current CTA text and placement", "Page context"],
            ),
            allowed_tools=("state.patch",),
            default_config={"minConfidence": 0.7},
        ),
        AgentDefinitionWrite(
            slug="intent_router",
            name="Intent Router",
            description="Fallback router for unrecognized intents.",
            system_prompt=_prompt(
                "You classify unclear intents and route them with agent.route.",
                ["Known intent categories", "Confidence of the classification"],
            ),
            allowed_tools=("agent.route", "state.patch"),
            default_config={"reviewThreshold": 0.6},
        ),
        AgentDefinitionWrite(
            slug="booking_agent",
            name="Booking Agent",
            description="Handles appointment scheduling.",
            system_prompt=_prompt(
                "You are a booking agent. Check availability before booking a slot.",
                ["Requested time and duration", "Alternatives when the slot is taken"],
            ),
            allowed_tools=("calendar.check", "calendar.book", "notify.team", "state.patch"),
            default_config={"defaultDuration": 30},
        ),
    ]
