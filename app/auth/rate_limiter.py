"""Attempt counters guarding login and email-sending endpoints."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from threading import Lock

from app.api.errors import RateLimitedError
from app.core.migrations import apply_migrations


class AttemptRateLimiter:
    """Fixed-window attempt counter keyed by (scope, principal, client ip).

    The login route records only failures; email-sending routes record every
    call. Once ``max_attempts`` is reached within the window the key is locked
    for ``lock_seconds``.
    """

    def __init__(
        self,
        *,
        database_path: Path,
        scope: str,
        max_attempts: int,
        window_seconds: int,
        lock_seconds: int,
    ) -> None:
        apply_migrations(database_path)
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = Lock()
        self._scope = scope
        self._max_attempts = max(1, int(max_attempts))
        self._window_seconds = max(1, int(window_seconds))
        self._lock_seconds = max(1, int(lock_seconds))

    def _key(self, principal: str, client_ip: str) -> tuple[str, str, str]:
        return (self._scope, principal.strip().lower(), client_ip.strip() or "unknown")

    def assert_allowed(self, *, principal: str, client_ip: str) -> None:
        """Raise 429 when the key is currently locked."""
        now = int(time.time())
        key = self._key(principal, client_ip)
        with self._lock:
            row = self._connection.execute(
                """
                SELECT first_attempt_at, locked_until
                FROM auth_rate_limits
                WHERE scope = ? AND principal = ? AND client_ip = ?
                """,
                key,
            ).fetchone()
            if row is None:
                return

            locked_until = int(row["locked_until"] or 0)
            if locked_until > now:
                raise RateLimitedError(
                    f"Too many attempts. Retry after {locked_until - now} seconds."
                )

            if locked_until or now - int(row["first_attempt_at"]) > self._window_seconds:
                with self._connection:
                    self._connection.execute(
                        "DELETE FROM auth_rate_limits WHERE scope = ? AND principal = ? AND client_ip = ?",
                        key,
                    )

    def hit(self, *, principal: str, client_ip: str) -> None:
        """Check the key, then count this attempt."""
        self.assert_allowed(principal=principal, client_ip=client_ip)
        self.record_failure(principal=principal, client_ip=client_ip)

    def record_success(self, *, principal: str, client_ip: str) -> None:
        with self._lock:
            with self._connection:
                self._connection.execute(
                    "DELETE FROM auth_rate_limits WHERE scope = ? AND principal = ? AND client_ip = ?",
                    self._key(principal, client_ip),
                )

    def record_failure(self, *, principal: str, client_ip: str) -> None:
        """Count one attempt and lock the key once the threshold is reached."""
        now = int(time.time())
        key = self._key(principal, client_ip)
        with self._lock:
            with self._connection:
                row = self._connection.execute(
                    """
                    SELECT attempts, first_attempt_at
                    FROM auth_rate_limits
                    WHERE scope = ? AND principal = ? AND client_ip = ?
                    """,
                    key,
                ).fetchone()
                if row is None or now - int(row["first_attempt_at"]) > self._window_seconds:
                    attempts, first_attempt_at = 1, now
                else:
                    attempts = int(row["attempts"]) + 1
                    first_attempt_at = int(row["first_attempt_at"])
                locked_until = now + self._lock_seconds if attempts >= self._max_attempts else 0

                self._connection.execute(
                    """
                    INSERT INTO auth_rate_limits(
                      scope, principal, client_ip, attempts,
                      first_attempt_at, last_attempt_at, locked_until
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(scope, principal, client_ip) DO UPDATE SET
                      attempts = excluded.attempts,
                      first_attempt_at = excluded.first_attempt_at,
                      last_attempt_at = excluded.last_attempt_at,
                      locked_until = excluded.locked_until
                    """,
                    (*key, attempts, first_attempt_at, now, locked_until),
                )

    def close(self) -> None:
        with self._lock:
            self._connection.close()
