from __future__ import annotations

import sqlite3
from pathlib import Path

from app.core.migrations import apply_migrations


def test_apply_migrations_creates_auth_payment_and_outbox_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "state.db"

    applied = apply_migrations(db_path)

    connection = sqlite3.connect(str(db_path))
    try:
        tables = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        migration_ids = {
            row[0]
            for row in connection.execute("SELECT migration_id FROM schema_migrations").fetchall()
        }
    finally:
        connection.close()

    assert {
        "schema_migrations",
        "task_queue",
        "users",
        "user_sessions",
        "auth_rate_limits",
        "checkouts",
        "payments",
    } <= tables
    assert migration_ids == set(applied)
    assert applied == sorted(applied)
    assert "0002_auth_users_sessions.sql" in migration_ids


def test_apply_migrations_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "state.db"

    first = apply_migrations(db_path)
    second = apply_migrations(db_path)

    assert first
    assert second == []
