from pathlib import Path

import allure
import pytest
from sqlalchemy import inspect

from agent_runner.runner.repository import EventRepository
from agent_runner.storage import alembic_runner
from agent_runner.storage.alembic_runner import current_revision, head_revision, migrations_root

pytestmark = [
    allure.epic("Agent Runner"),
    allure.feature("Event Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    assert current_revision(db_path) is None

    repository = EventRepository(db_path)
    repository.init_schema()
    repository.init_schema()

    assert head_revision() == "20261019_0002"
    assert current_revision(db_path) == "20261019_0002"

    tables = set(inspect(repository.engine).get_table_names())
    assert {
        "ai_agent_registry",
        "ai_events",
        "ai_plugin_instances",
        "ai_plugin_state",
        "ai_runs",
        "bookings",
        "crm_leads",
        "team_notifications",
    } <= tables

    index_names = {index["name"] for index in inspect(repository.engine).get_indexes("ai_events")}
    assert "idx_ai_events_claim" in index_names
    repository.close()


def test_migrations_resolve_from_checkout_when_not_bundled() -> None:
    root = migrations_root()

    assert (root / "alembic.ini").is_file()
    assert (root / "alembic" / "env.py").is_file()


def test_bundled_migrations_take_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    bundled = tmp_path / "_migrations"
    bundled.mkdir()
    (bundled / "alembic.ini").write_text("[alembic]\nscript_location = alembic\n")
    monkeypatch.setattr(alembic_runner, "_PACKAGED_MIGRATIONS", bundled)

    assert migrations_root() == bundled
