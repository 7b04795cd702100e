"""SQLModel storage, migrations and SQLite engine policy."""
