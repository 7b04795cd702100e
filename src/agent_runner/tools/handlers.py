"""Built-in tool handlers wired to the tenant store and the event queue."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from agent_runner.runner.models import EventCreate
from agent_runner.runner.repository import EventRepository
from agent_runner.tools.registry import ToolContext, ToolExecutionError, ToolId, ToolRegistry
from agent_runner.tools.store import TenantStore

logger = logging.getLogger(__name__)

DEFAULT_LEAD_INTENT = "contact.submit"
DEFAULT_STATE_KEY = "default"
DEFAULT_BOOKING_MINUTES = 30
DEFAULT_MAX_CHAIN_DEPTH = 5


class DefaultToolHandlers:
    """Handlers for every ``ToolId``; see ``build_default_tool_registry``."""

    def __init__(
        self,
        *,
        repository: EventRepository,
        store: TenantStore,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    ) -> None:
        self.repository = repository
        self.store = store
        self.max_chain_depth = max_chain_depth

    def create_lead(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        name = _optional_str(payload, "name")
        email = _optional_str(payload, "email")
        lead_id = self.store.create_lead(
            business_id=context.business_id,
            title=f"Lead: {name or email or 'Unknown'}",
            name=name,
            email=email,
            intent=_optional_str(payload, "intent") or DEFAULT_LEAD_INTENT,
            metadata={
                "score": payload.get("score"),
                "source": "ai_agent",
                "eventId": context.event_id,
            },
        )
        return {"leadId": lead_id, "success": True}

    def notify_team(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        message = _optional_str(payload, "message")
        if not message:
            raise ToolExecutionError("notify.team requires message")
        details = {key: value for key, value in payload.items() if key not in {"message", "channel"}}
        notification_id = self.store.add_notification(
            business_id=context.business_id,
            message=message,
            channel=_optional_str(payload, "channel") or "email",
            details=details,
            source_event_id=context.event_id,
        )
        return {"notificationId": notification_id, "success": True}

    def set_pipeline_stage(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        lead_id = _optional_str(payload, "leadId")
        if not lead_id:
            raise ToolExecutionError("pipeline.stage.set requires leadId")
        stage = _optional_str(payload, "stage")
        if not stage:
            raise ToolExecutionError("pipeline.stage.set requires stage")
        lead = self.store.set_lead_stage(
            business_id=context.business_id,
            lead_id=lead_id,
            stage=stage,
        )
        return {"leadId": lead.lead_id, "stage": lead.status, "success": True}

    def patch_state(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        if context.plugin_instance_id is None:
            return {"skipped": True, "reason": "No plugin instance"}
        state_key = _optional_str(payload, "stateKey") or DEFAULT_STATE_KEY
        patch = payload.get("patch")
        if patch is None:
            patch = {key: value for key, value in payload.items() if key != "stateKey"}
        if not isinstance(patch, dict):
            raise ToolExecutionError("state.patch patch must be an object")
        self.repository.upsert_plugin_state(
            plugin_instance_id=context.plugin_instance_id,
            state_key=state_key,
            state=patch,
            merge=True,
        )
        return {"stateKey": state_key, "success": True}

    def check_calendar(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        starts_at, ends_at = _slot_from_payload(payload)
        available = self.store.is_slot_free(
            business_id=context.business_id,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        return {
            "available": available,
            "startsAt": starts_at.isoformat(),
            "endsAt": ends_at.isoformat(),
        }

    def book_calendar(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        starts_at, ends_at = _slot_from_payload(payload)
        booking = self.store.book_slot(
            business_id=context.business_id,
            starts_at=starts_at,
            ends_at=ends_at,
            customer_name=_optional_str(payload, "customerName"),
            customer_email=_optional_str(payload, "customerEmail"),
            source_event_id=context.event_id,
        )
        return {
            "bookingId": booking.booking_id,
            "startsAt": booking.starts_at.isoformat(),
            "endsAt": booking.ends_at.isoformat(),
            "success": True,
        }

    def route_to_agent(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        return self._enqueue_child(ToolId.AGENT_ROUTE, payload, context)

    def invoke_agent(self, payload: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        return self._enqueue_child(ToolId.AGENT_INVOKE, payload, context)

    def _enqueue_child(
        self,
        tool_id: ToolId,
        payload: dict[str, Any],
        context: ToolContext,
    ) -> dict[str, Any]:
        target = _optional_str(payload, "agent") or _optional_str(payload, "targetAgent")
        if not target:
            raise ToolExecutionError(f"{tool_id.value} requires agent")
        chain_depth = context.chain_depth + 1
        if chain_depth > self.max_chain_depth:
            raise ToolExecutionError(
                f"Max chain depth {self.max_chain_depth} exceeded",
            )
        child_payload = payload.get("payload", {})
        if not isinstance(child_payload, dict):
            raise ToolExecutionError(f"{tool_id.value} payload must be an object")

        outcome = self.repository.enqueue_event(
            EventCreate(
                intent=_optional_str(payload, "intent") or tool_id.value,
                business_id=context.business_id,
                payload=child_payload,
                plugin_instance_id=context.plugin_instance_id,
                target_agent=target,
                parent_event_id=context.event_id,
                chain_depth=chain_depth,
            ),
        )
        if outcome.event is None:
            return {"skipped": True, "reason": outcome.reason}
        logger.info(
            "Child event enqueued: parent=%s child=%s agent=%s depth=%d",
            context.event_id,
            outcome.event.event_id,
            target,
            chain_depth,
        )
        return {
            "eventId": outcome.event.event_id,
            "targetAgent": target,
            "chainDepth": chain_depth,
        }


def build_default_tool_registry(
    *,
    repository: EventRepository,
    store: TenantStore,
    max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
) -> ToolRegistry:
    """Registry with every built-in handler registered."""

    handlers = DefaultToolHandlers(
        repository=repository,
        store=store,
        max_chain_depth=max_chain_depth,
    )
    registry = ToolRegistry()
    registry.register(ToolId.CRM_LEAD_CREATE, handlers.create_lead)
    registry.register(ToolId.NOTIFY_TEAM, handlers.notify_team)
    registry.register(ToolId.PIPELINE_STAGE_SET, handlers.set_pipeline_stage)
    registry.register(ToolId.STATE_PATCH, handlers.patch_state)
    registry.register(ToolId.CALENDAR_CHECK, handlers.check_calendar)
    registry.register(ToolId.CALENDAR_BOOK, handlers.book_calendar)
    registry.register(ToolId.AGENT_ROUTE, handlers.route_to_agent)
    registry.register(ToolId.AGENT_INVOKE, handlers.invoke_agent)
    return registry


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ToolExecutionError(f"{key} must be a string")
    return value.strip() or None


def _slot_from_payload(payload: dict[str, Any]) -> tuple[datetime, datetime]:
    raw_start = _optional_str(payload, "startsAt")
    if not raw_start:
        raise ToolExecutionError("startsAt is required")
    try:
        starts_at = datetime.fromisoformat(raw_start)
    except ValueError as error:
        raise ToolExecutionError(f"Invalid startsAt: {raw_start}") from error
    if starts_at.tzinfo is None:
        starts_at = starts_at.replace(tzinfo=UTC)

    duration = payload.get("durationMinutes", DEFAULT_BOOKING_MINUTES)
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise ToolExecutionError("durationMinutes must be a positive integer")
    return starts_at, starts_at + timedelta(minutes=duration)
