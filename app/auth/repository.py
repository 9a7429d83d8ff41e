"""Repository for users, refresh-token sessions and checkout records."""

from __future__ import annotations

import sqlite3
import time
import uuid
from pathlib import Path
from threading import Lock
from typing import Any

from app.auth.models import Session, User
from app.core.migrations import apply_migrations

_USER_COLUMNS = (
    "id",
    "email",
    "password_hash",
    "role",
    "email_verified",
    "email_verification_token",
    "email_verification_expires_at",
    "password_reset_token",
    "password_reset_expires_at",
    "is_premium",
    "premium_expiry",
    "created_at",
    "updated_at",
)


class DuplicateEmailError(Exception):
    """Raised when inserting a user whose email is already registered."""


def _user_from_row(row: sqlite3.Row | None) -> User | None:
    if row is None:
        return None
    data = dict(row)
    data["email_verified"] = bool(data["email_verified"])
    data["is_premium"] = bool(data["is_premium"])
    return User.model_validate(data)


def _session_from_row(row: sqlite3.Row | None) -> Session | None:
    return Session.model_validate(dict(row)) if row is not None else None


class AuthRepository:
    """SQLite-backed credential and session store.

    Every public method runs as one transaction under the connection lock, so
    multi-step mutations either fully apply or not at all.
    """

    def __init__(self, database_path: Path) -> None:
        """Open the store and make sure the schema is migrated."""
        apply_migrations(database_path)
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._lock = Lock()

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Row | None:
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    # users

    def get_user_by_email(self, email: str) -> User | None:
        """Get user by email, ignoring case."""
        key = email.strip().lower()
        return _user_from_row(
            self._fetchone("SELECT * FROM users WHERE email = ? COLLATE NOCASE", (key,))
        )

    def get_user_by_id(self, user_id: str) -> User | None:
        return _user_from_row(self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,)))

    def get_user_by_verification_token(self, token: str) -> User | None:
        return _user_from_row(
            self._fetchone("SELECT * FROM users WHERE email_verification_token = ?", (token,))
        )

    def get_user_by_reset_token(self, token: str) -> User | None:
        return _user_from_row(
            self._fetchone("SELECT * FROM users WHERE password_reset_token = ?", (token,))
        )

    def create_user(self, user: User) -> User:
        """Insert a new user, raising ``DuplicateEmailError`` on email clash."""
        doc = user.model_dump(mode="json")
        doc["email"] = user.email.strip().lower()
        doc["email_verified"] = int(user.email_verified)
        doc["is_premium"] = int(user.is_premium)
        placeholders = ", ".join("?" for _ in _USER_COLUMNS)
        with self._lock:
            try:
                with self._connection:
                    self._connection.execute(
                        f"INSERT INTO users({', '.join(_USER_COLUMNS)}) VALUES ({placeholders})",
                        tuple(doc[column] for column in _USER_COLUMNS),
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError(doc["email"]) from exc
        return user.model_copy(update={"email": doc["email"]})

    def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Update selected user columns and return the fresh record."""
        unknown = set(fields) - set(_USER_COLUMNS[2:])
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        values: dict[str, Any] = {
            key: int(value) if isinstance(value, bool) else value
            for key, value in fields.items()
        }
        values["updated_at"] = int(time.time())
        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._lock:
            with self._connection:
                self._connection.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*values.values(), user_id),
                )
            row = self._connection.execute(
                "SELECT * FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return _user_from_row(row)

    def mark_email_verified(self, user_id: str, token: str, now: int) -> bool:
        """Flip ``email_verified`` once, only while the token is still valid."""
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    """
                    UPDATE users
                    SET email_verified = 1,
                        email_verification_token = NULL,
                        email_verification_expires_at = NULL,
                        updated_at = ?
                    WHERE id = ?
                      AND email_verified = 0
                      AND email_verification_token = ?
                      AND email_verification_expires_at > ?
                    """,
                    (now, user_id, token, now),
                )
        return cursor.rowcount == 1

    def reset_password(
        self, user_id: str, password_hash: str, *, reset_token: str, now: int
    ) -> int | None:
        """Consume a live reset token, set the new hash and drop all sessions.

        The token check and the write are one conditional UPDATE, so a token
        can be redeemed once. Returns the number of sessions revoked, or None
        when the token no longer matches.
        """
        with self._lock:
            with self._connection:
                updated = self._connection.execute(
                    """
                    UPDATE users
                    SET password_hash = ?,
                        password_reset_token = NULL,
                        password_reset_expires_at = NULL,
                        updated_at = ?
                    WHERE id = ?
                      AND password_reset_token = ?
                      AND password_reset_expires_at > ?
                    """,
                    (password_hash, now, user_id, reset_token, now),
                )
                if updated.rowcount != 1:
                    return None
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE user_id = ?", (user_id,)
                )
        return cursor.rowcount

    def change_password(self, user_id: str, password_hash: str) -> int:
        """Set new hash, clear any pending reset and drop all sessions atomically."""
        now = int(time.time())
        with self._lock:
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE users
                    SET password_hash = ?,
                        password_reset_token = NULL,
                        password_reset_expires_at = NULL,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (password_hash, now, user_id),
                )
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE user_id = ?", (user_id,)
                )
        return cursor.rowcount

    # sessions

    def create_session(self, session: Session) -> Session:
        doc = session.model_dump()
        columns = list(doc)
        with self._lock:
            with self._connection:
                self._connection.execute(
                    f"INSERT INTO user_sessions({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)})",
                    tuple(doc.values()),
                )
        return session

    def get_session_by_token(self, refresh_token: str) -> Session | None:
        return _session_from_row(
            self._fetchone(
                "SELECT * FROM user_sessions WHERE refresh_token = ?", (refresh_token,)
            )
        )

    def rotate_session_token(
        self,
        old_token: str,
        new_token: str,
        *,
        now: int,
        expires_at: int,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> Session | None:
        """Swap the refresh token only if ``old_token`` still matches a live row.

        The compare-and-set runs as a single UPDATE, so two callers racing on
        the same token cannot both succeed.
        """
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    """
                    UPDATE user_sessions
                    SET refresh_token = ?,
                        expires_at = ?,
                        last_used_at = ?,
                        user_agent = COALESCE(?, user_agent),
                        ip_address = COALESCE(?, ip_address)
                    WHERE refresh_token = ? AND expires_at > ?
                    """,
                    (new_token, expires_at, now, user_agent, ip_address, old_token, now),
                )
                if cursor.rowcount != 1:
                    return None
                row = self._connection.execute(
                    "SELECT * FROM user_sessions WHERE refresh_token = ?", (new_token,)
                ).fetchone()
        return _session_from_row(row)

    def delete_session_by_token(self, refresh_token: str) -> bool:
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE refresh_token = ?", (refresh_token,)
                )
        return cursor.rowcount > 0

    def delete_session_by_id_for_user(self, session_id: str, user_id: str) -> bool:
        """Delete a session only when it belongs to ``user_id``."""
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE id = ? AND user_id = ?",
                    (session_id, user_id),
                )
        return cursor.rowcount > 0

    def delete_sessions_for_user(self, user_id: str) -> int:
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE user_id = ?", (user_id,)
                )
        return cursor.rowcount

    def delete_expired_sessions(self, now: int | None = None) -> int:
        current = int(time.time()) if now is None else now
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    "DELETE FROM user_sessions WHERE expires_at <= ?", (current,)
                )
        return cursor.rowcount

    def list_active_sessions_for_user(self, user_id: str, now: int) -> list[Session]:
        with self._lock:
            rows = self._connection.execute(
                """
                SELECT * FROM user_sessions
                WHERE user_id = ? AND expires_at > ?
                ORDER BY created_at DESC
                """,
                (user_id, now),
            ).fetchall()
        return [Session.model_validate(dict(row)) for row in rows]

    # checkouts and payments

    def create_checkout(
        self,
        *,
        reference_number: str,
        user_id: str,
        amount: int,
        provider_link_id: str = "",
        checkout_url: str = "",
    ) -> None:
        now = int(time.time())
        with self._lock:
            with self._connection:
                self._connection.execute(
                    """
                    INSERT INTO checkouts(
                      reference_number, user_id, amount, status,
                      provider_link_id, checkout_url, created_at, updated_at
                    ) VALUES (?, ?, ?, 'pending', ?, ?, ?, ?)
                    """,
                    (reference_number, user_id, amount, provider_link_id, checkout_url, now, now),
                )

    def attach_checkout_link(
        self, reference_number: str, *, provider_link_id: str, checkout_url: str
    ) -> None:
        with self._lock:
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE checkouts
                    SET provider_link_id = ?, checkout_url = ?, updated_at = ?
                    WHERE reference_number = ?
                    """,
                    (provider_link_id, checkout_url, int(time.time()), reference_number),
                )

    def get_checkout(self, reference_number: str) -> dict[str, Any] | None:
        row = self._fetchone(
            "SELECT * FROM checkouts WHERE reference_number = ?", (reference_number,)
        )
        return dict(row) if row is not None else None

    def mark_checkout_paid_and_grant_premium(
        self,
        *,
        reference_number: str,
        provider_payment_id: str,
        amount: int,
        payment_method: str,
    ) -> bool:
        """Record payment, close checkout and grant premium in one transaction.

        Returns False when the checkout is unknown or the provider payment was
        already recorded, in which case nothing changes.
        """
        now = int(time.time())
        with self._lock:
            with self._connection:
                checkout = self._connection.execute(
                    "SELECT user_id FROM checkouts WHERE reference_number = ?",
                    (reference_number,),
                ).fetchone()
                if checkout is None:
                    return False
                user_id = str(checkout["user_id"])
                cursor = self._connection.execute(
                    """
                    INSERT OR IGNORE INTO payments(
                      id, provider_payment_id, reference_number, user_id, amount,
                      currency, provider, payment_method, status, created_at
                    ) VALUES (?, ?, ?, ?, ?, 'PHP', 'paymongo', ?, 'paid', ?)
                    """,
                    (
                        uuid.uuid4().hex,
                        provider_payment_id,
                        reference_number,
                        user_id,
                        amount,
                        payment_method,
                        now,
                    ),
                )
                if cursor.rowcount != 1:
                    return False
                self._connection.execute(
                    "UPDATE checkouts SET status = 'paid', updated_at = ? WHERE reference_number = ?",
                    (now, reference_number),
                )
                self._connection.execute(
                    """
                    UPDATE users
                    SET is_premium = 1, premium_expiry = NULL, updated_at = ?
                    WHERE id = ?
                    """,
                    (now, user_id),
                )
        return True
