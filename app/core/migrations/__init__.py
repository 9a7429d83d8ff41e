"""SQLite schema migrations for the auth store and outbox queue."""

from app.core.migrations.runner import apply_migrations

__all__ = ["apply_migrations"]
