from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_runner.main import agent_runner

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli(monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.setenv("AGENT_RUNNER_MODEL_BACKEND", "echo")
    monkeypatch.setenv("AGENT_RUNNER_RUNNER_ID", "cli-runner")
    monkeypatch.setenv("AGENT_RUNNER_LOG_LEVEL", "ERROR")
    monkeypatch.delenv("AGENT_RUNNER_MODEL_API_KEY", raising=False)
    return CliRunner()


def _invoke(cli: CliRunner, db_path: Path, *args: str):
    group, command, *rest = args
    return cli.invoke(agent_runner, [group, command, "--db-path", str(db_path), *rest])


def test_cli_seed_enqueue_run_and_inspect(cli: CliRunner, tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"

    seeded = _invoke(cli, db_path, "agents", "seed")
    assert seeded.exit_code == 0, seeded.output
    assert "Agents seeded: 8" in seeded.output

    registered = _invoke(
        cli,
        db_path,
        "plugins",
        "register",
        "--instance-id",
        "pi-1",
        "--business-id",
        "biz-1",
    )
    assert registered.exit_code == 0, registered.output
    assert "enabled=True" in registered.output

    payload = {
        "name": "Ada",
        "email": "ada@example.com",
        "proposedToolCalls": [
            {"tool": "crm.lead.create", "payload": {"name": "Ada", "email": "ada@example.com"}},
            {"tool": "calendar.book", "payload": {"startsAt": "2026-11-02T10:00:00+00:00"}},
        ],
    }
    enqueued = _invoke(
        cli,
        db_path,
        "events",
        "enqueue",
        "--intent",
        "contact.submit",
        "--business-id",
        "biz-1",
        "--plugin-instance-id",
        "pi-1",
        "--payload",
        json.dumps(payload),
    )
    assert enqueued.exit_code == 0, enqueued.output
    event_id = enqueued.output.split("event_id=", 1)[1].split()[0]

    processed = _invoke(cli, db_path, "run", "once")
    assert processed.exit_code == 0, processed.output
    summary = json.loads(processed.output)
    assert summary["status"] == "completed"
    assert summary["eventId"] == event_id
    assert summary["agent"] == "lead_qualifier"
    assert [call["tool"] for call in summary["toolCalls"]] == ["crm.lead.create", "calendar.book"]
    assert summary["toolCalls"][0]["success"] is True
    assert "leadId" in summary["toolCalls"][0]["result"]
    assert summary["toolCalls"][1] == {
        "tool": "calendar.book",
        "success": False,
        "error": "not authorized",
    }

    inspected = _invoke(cli, db_path, "events", "inspect", "--event-id", event_id)
    assert inspected.exit_code == 0, inspected.output
    assert "Status: completed" in inspected.output
    assert "runner=cli-runner" in inspected.output
    assert "calendar.book error=not authorized" in inspected.output

    state = _invoke(cli, db_path, "state", "show", "--plugin-instance-id", "pi-1")
    assert state.exit_code == 0, state.output
    assert f'"lastEventId": "{event_id}"' in state.output

    idle = _invoke(cli, db_path, "run", "once")
    assert json.loads(idle.output) == {"status": "idle", "message": "No pending events"}


def test_cli_lists_events_and_agents(cli: CliRunner, tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _invoke(cli, db_path, "agents", "seed")
    for dedupe in ("a", "a", "b"):
        _invoke(
            cli,
            db_path,
            "events",
            "enqueue",
            "--intent",
            "quote.request",
            "--business-id",
            "biz-1",
            "--dedupe-key",
            dedupe,
        )

    events = _invoke(cli, db_path, "events", "list", "--status", "pending")
    agents = _invoke(cli, db_path, "agents", "list")

    assert "Events: 2" in events.output
    assert "Agents: 8" in agents.output
    assert "booking_agent" in agents.output


def test_cli_run_loop_reports_summary(cli: CliRunner, tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _invoke(cli, db_path, "agents", "seed")
    for _ in range(2):
        _invoke(cli, db_path, "events", "enqueue", "--intent", "lead.capture", "--business-id", "biz-1")

    result = _invoke(cli, db_path, "run", "loop", "--max-idle-polls", "1")

    assert result.exit_code == 0, result.output
    assert "processed=2 completed=2 failed=0 idle_polls=1" in result.output


def test_cli_reports_errors_as_click_exceptions(cli: CliRunner, tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"

    bad_payload = _invoke(
        cli,
        db_path,
        "events",
        "enqueue",
        "--intent",
        "contact.submit",
        "--business-id",
        "biz-1",
        "--payload",
        "[1, 2]",
    )
    missing_instance = _invoke(
        cli,
        db_path,
        "events",
        "enqueue",
        "--intent",
        "contact.submit",
        "--business-id",
        "biz-1",
        "--plugin-instance-id",
        "nope",
    )

    assert bad_payload.exit_code == 1
    assert "Payload must be a JSON object" in bad_payload.output
    assert missing_instance.exit_code == 1
    assert "Plugin instance not found: nope" in missing_instance.output


def test_cli_http_backend_without_api_key_fails_event(
    cli: CliRunner,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AGENT_RUNNER_MODEL_BACKEND", "http")
    db_path = tmp_path / "cli.db"
    _invoke(cli, db_path, "events", "enqueue", "--intent", "contact.submit", "--business-id", "biz-1")

    result = _invoke(cli, db_path, "run", "once")

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output)
    assert summary["status"] == "failed"
    assert summary["agent"] == "builtin"
    assert summary["toolCalls"] == []
