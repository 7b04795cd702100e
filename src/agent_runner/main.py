"""CLI entrypoint for agent-runner."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_runner import __version__
from agent_runner.config import SUPPORTED_LOG_LEVELS
from agent_runner.runner.controllers import (
    AgentRunnerCliController,
    EnqueueEventCommand,
    InspectEventCommand,
    ListAgentsCommand,
    ListEventsCommand,
    RegisterPluginCommand,
    RunLoopCommand,
    RunOnceCommand,
    SeedAgentsCommand,
    ShowStateCommand,
)
from agent_runner.runner.worker import LATEST_ANALYSIS_KEY

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentRunnerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-runner")
def agent_runner() -> None:
    """Asynchronous agent task runner CLI."""

    level = os.getenv("AGENT_RUNNER_LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=level if level in SUPPORTED_LOG_LEVELS else "INFO",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_runner.group()
def events() -> None:
    """Event queue commands."""


@events.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--intent", required=True, help="Event intent, for example contact.submit.")
@click.option("--business-id", required=True, help="Tenant id.")
@click.option("--payload", "payload_json", default="{}", show_default=True, help="JSON object.")
@click.option("--plugin-instance-id", default=None, help="Optional plugin instance id.")
@click.option("--dedupe-key", default=None, help="Skip if the same key was seen recently.")
@click.option("--target-agent", default=None, help="Bypass routing and use this agent slug.")
def events_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    intent: str,
    business_id: str,
    payload_json: str,
    plugin_instance_id: str | None,
    dedupe_key: str | None,
    target_agent: str | None,
) -> None:
    """Insert one pending event."""

    _emit_lines(
        _run_command(
            lambda: CONTROLLER.enqueue_event(
                EnqueueEventCommand(
                    db_path=db_path,
                    intent=intent,
                    business_id=business_id,
                    payload_json=payload_json,
                    plugin_instance_id=plugin_instance_id,
                    dedupe_key=dedupe_key,
                    target_agent=target_agent,
                ),
            ),
        ),
    )


@events.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--business-id", default=None, help="Optional tenant filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max events to print.",
)
def events_list(
    db_path: Path | None,
    status: str | None,
    business_id: str | None,
    limit: int,
) -> None:
    """List recent events."""

    _emit_lines(
        CONTROLLER.list_events(
            ListEventsCommand(
                db_path=db_path,
                status=status,
                business_id=business_id,
                limit=limit,
            ),
        ),
    )


@events.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--event-id", required=True, help="Event id.")
def events_inspect(db_path: Path | None, event_id: str) -> None:
    """Inspect one event with its run history."""

    _emit_lines(CONTROLLER.inspect_event(InspectEventCommand(db_path=db_path, event_id=event_id)))


@agent_runner.group()
def run() -> None:
    """Runner commands."""


@run.command("once")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--event-id", default=None, help="Process this event regardless of its status.")
def run_once(db_path: Path | None, event_id: str | None) -> None:
    """Claim and process at most one event; print the JSON summary."""

    _emit_lines(
        _run_command(
            lambda: CONTROLLER.run_once(RunOnceCommand(db_path=db_path, event_id=event_id)),
        ),
    )


@run.command("loop")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-events",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed events.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before exiting.",
)
def run_loop(db_path: Path | None, max_events: int | None, max_idle_polls: int) -> None:
    """Process events until the queue stays idle."""

    _emit_lines(
        _run_command(
            lambda: CONTROLLER.run_loop(
                RunLoopCommand(
                    db_path=db_path,
                    max_events=max_events,
                    max_idle_polls=max_idle_polls,
                ),
            ),
        ),
    )


@agent_runner.group()
def agents() -> None:
    """Agent registry commands."""


@agents.command("seed")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def agents_seed(db_path: Path | None) -> None:
    """Load the built-in agent pack (orchestrator routing included)."""

    _emit_lines(CONTROLLER.seed_agents(SeedAgentsCommand(db_path=db_path)))


@agents.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--active-only", is_flag=True, default=False, help="Hide inactive agents.")
def agents_list(db_path: Path | None, active_only: bool) -> None:
    """List agent definitions."""

    _emit_lines(CONTROLLER.list_agents(ListAgentsCommand(db_path=db_path, active_only=active_only)))


@agent_runner.group()
def plugins() -> None:
    """Plugin instance commands."""


@plugins.command("register")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--instance-id", required=True, help="Plugin instance id.")
@click.option("--business-id", required=True, help="Owning tenant id.")
@click.option("--agent", "agent_slug", default=None, help="Agent slug bound to the instance.")
@click.option("--disabled", is_flag=True, default=False, help="Register as disabled.")
def plugins_register(
    db_path: Path | None,
    instance_id: str,
    business_id: str,
    agent_slug: str | None,
    disabled: bool,
) -> None:
    """Create or update a plugin instance."""

    _emit_lines(
        _run_command(
            lambda: CONTROLLER.register_plugin(
                RegisterPluginCommand(
                    db_path=db_path,
                    instance_id=instance_id,
                    business_id=business_id,
                    agent_slug=agent_slug,
                    disabled=disabled,
                ),
            ),
        ),
    )


@agent_runner.group()
def state() -> None:
    """Plugin state commands."""


@state.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--plugin-instance-id", required=True, help="Plugin instance id.")
@click.option(
    "--key",
    "state_key",
    default=LATEST_ANALYSIS_KEY,
    show_default=True,
    help="State key.",
)
def state_show(db_path: Path | None, plugin_instance_id: str, state_key: str) -> None:
    """Show stored plugin state."""

    _emit_lines(
        CONTROLLER.show_state(
            ShowStateCommand(
                db_path=db_path,
                plugin_instance_id=plugin_instance_id,
                state_key=state_key,
            ),
        ),
    )


def _run_command(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (LookupError, RuntimeError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_runner()
