"""Programmatic Alembic access for the runner's SQLite store."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

_PACKAGED_MIGRATIONS = Path(__file__).resolve().parents[1] / "_migrations"
_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def migrations_root() -> Path:
    """Directory holding ``alembic.ini`` and ``alembic/``: bundled in wheels, the checkout otherwise."""

    if (_PACKAGED_MIGRATIONS / "alembic.ini").is_file():
        return _PACKAGED_MIGRATIONS
    return _PROJECT_ROOT


def _config(db_path: Path) -> Config:
    root = migrations_root()
    config = Config(str(root / "alembic.ini"))
    config.set_main_option("script_location", str(root / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def head_revision() -> str | None:
    """Newest revision shipped with the package."""

    return ScriptDirectory.from_config(_config(Path(":memory:"))).get_current_head()


def current_revision(db_path: Path) -> str | None:
    """Revision stamped in ``db_path``, or None for an unmigrated database."""

    engine = create_engine(f"sqlite:///{db_path}", poolclass=NullPool)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()


def upgrade_head(db_path: Path) -> None:
    """Apply pending migrations; a database already at head is left untouched."""

    head = head_revision()
    if current_revision(db_path) == head:
        return
    logger.info("Migrating %s to revision %s", db_path, head)
    command.upgrade(_config(db_path), "head")
