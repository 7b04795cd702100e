"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from agent_runner.runner.repository import EventRepository
from agent_runner.tools.store import TenantStore


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "agent-runner.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[EventRepository]:
    """Migrated repository on a throwaway SQLite file."""
    repo = EventRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def store(repository: EventRepository) -> TenantStore:
    return TenantStore(repository.engine)
