"""SQLite migration runner for auth store and outbox tables."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"

LOGGER = logging.getLogger(__name__)


def apply_migrations(database_path: Path) -> list[str]:
    """Apply pending SQL migrations in ascending order and return their ids."""
    database_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(database_path))
    applied: list[str] = []
    try:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              migration_id TEXT PRIMARY KEY,
              applied_at INTEGER NOT NULL
            )
            """
        )
        connection.commit()
        done = {
            row[0]
            for row in connection.execute("SELECT migration_id FROM schema_migrations")
        }

        for migration_file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            migration_id = migration_file.name
            if migration_id in done:
                continue
            # executescript commits implicitly, so the bookkeeping row goes in the same script.
            script = migration_file.read_text(encoding="utf-8")
            connection.executescript(
                "BEGIN;\n"
                f"{script}\n"
                "INSERT INTO schema_migrations(migration_id, applied_at) "
                f"VALUES ('{migration_id}', strftime('%s','now'));\n"
                "COMMIT;"
            )
            applied.append(migration_id)
            LOGGER.info("migration_applied %s", migration_id)
    finally:
        connection.close()
    return applied
