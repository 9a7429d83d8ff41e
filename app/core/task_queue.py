"""Durable async outbox queue with retries, dead-letter, TTL and idempotency."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Awaitable, Callable

from app.core.migrations import apply_migrations

TaskHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

TASK_STATUS_QUEUED = "queued"
TASK_STATUS_RUNNING = "running"
TASK_STATUS_RETRYING = "retrying"
TASK_STATUS_COMPLETED = "completed"
TASK_STATUS_DEAD_LETTER = "dead_letter"
TERMINAL_TASK_STATUSES = {TASK_STATUS_COMPLETED, TASK_STATUS_DEAD_LETTER}

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSettings:
    """Queue runtime settings."""

    database_path: Path
    default_ttl_seconds: int = 24 * 60 * 60
    default_max_retries: int = 3
    default_retry_delay_seconds: int = 5
    worker_poll_interval_seconds: float = 0.5


class TaskQueue:
    """SQLite-backed queue whose tasks survive process restarts.

    Producers call ``submit`` from request handlers; a single asyncio worker
    started with ``start`` drains due tasks and dispatches them by type.
    """

    def __init__(self, settings: QueueSettings) -> None:
        self._settings = settings
        apply_migrations(settings.database_path)
        self._connection = sqlite3.connect(
            str(settings.database_path),
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = Lock()
        self._handlers: dict[str, TaskHandler] = {}
        self._worker_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    def register_handler(self, task_type: str, handler: TaskHandler) -> None:
        normalized_type = task_type.strip().lower()
        if not normalized_type:
            raise ValueError("task_type is required")
        self._handlers[normalized_type] = handler

    async def start(self) -> None:
        """Start background worker loop if not already running."""
        if self._worker_task and not self._worker_task.done():
            return
        recovered = self.requeue_interrupted()
        if recovered:
            LOGGER.warning("tasks_requeued_after_restart count=%s", recovered)
        self._stop_event.clear()
        self._worker_task = asyncio.create_task(self._worker_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._worker_task:
            await self._worker_task
            self._worker_task = None

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    def submit(
        self,
        *,
        task_type: str,
        payload: dict[str, Any],
        idempotency_key: str = "",
        max_retries: int | None = None,
        retry_delay_seconds: int | None = None,
    ) -> str:
        """Enqueue a task and return its id; a repeated idempotency key returns the first id."""
        task_kind = task_type.strip().lower()
        if not task_kind:
            raise ValueError("task_type is required")
        now = int(time.time())
        retries = (
            self._settings.default_max_retries if max_retries is None else max(0, max_retries)
        )
        retry_delay = max(
            1, int(retry_delay_seconds or self._settings.default_retry_delay_seconds)
        )
        dedupe_key = idempotency_key.strip() or None

        with self._lock:
            with self._connection:
                self._purge_expired_tasks(now)
                if dedupe_key:
                    existing = self._connection.execute(
                        "SELECT task_id FROM task_queue WHERE idempotency_key = ? LIMIT 1",
                        (dedupe_key,),
                    ).fetchone()
                    if existing:
                        return str(existing["task_id"])

                task_id = uuid.uuid4().hex
                self._connection.execute(
                    """
                    INSERT INTO task_queue(
                      task_id, task_type, payload_json, status, attempts,
                      max_retries, retry_delay_seconds, available_at,
                      created_at, updated_at, expires_at, idempotency_key
                    ) VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task_id,
                        task_kind,
                        json.dumps(payload, ensure_ascii=False),
                        TASK_STATUS_QUEUED,
                        retries,
                        retry_delay,
                        now,
                        now,
                        now,
                        now + self._settings.default_ttl_seconds,
                        dedupe_key,
                    ),
                )
        return task_id

    def requeue_interrupted(self) -> int:
        """Return tasks left running by a crashed worker to the retry state."""
        now = int(time.time())
        with self._lock:
            with self._connection:
                cursor = self._connection.execute(
                    "UPDATE task_queue SET status = ?, available_at = ?, updated_at = ? WHERE status = ?",
                    (TASK_STATUS_RETRYING, now, now, TASK_STATUS_RUNNING),
                )
        return cursor.rowcount

    def get(self, task_id: str) -> dict[str, Any] | None:
        """Return task state by id when available."""
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM task_queue WHERE task_id = ?",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "task_id": str(row["task_id"]),
            "task_type": str(row["task_type"]),
            "status": str(row["status"]),
            "attempts": int(row["attempts"]),
            "max_retries": int(row["max_retries"]),
            "error": str(row["last_error"] or ""),
            "dead_letter_reason": str(row["dead_letter_reason"] or ""),
            "result": json.loads(row["result_json"]) if row["result_json"] else None,
        }

    async def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            processed = await self.process_next_due_task()
            if not processed:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._settings.worker_poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue

    async def process_next_due_task(self) -> bool:
        """Claim and run one due task. Returns False when nothing is due."""
        now = int(time.time())
        with self._lock:
            with self._connection:
                row = self._connection.execute(
                    """
                    SELECT * FROM task_queue
                    WHERE status IN (?, ?) AND available_at <= ?
                    ORDER BY available_at ASC, created_at ASC
                    LIMIT 1
                    """,
                    (TASK_STATUS_QUEUED, TASK_STATUS_RETRYING, now),
                ).fetchone()
                if row is None:
                    return False
                self._connection.execute(
                    "UPDATE task_queue SET status = ?, attempts = attempts + 1, updated_at = ? "
                    "WHERE task_id = ?",
                    (TASK_STATUS_RUNNING, now, str(row["task_id"])),
                )

        task_id = str(row["task_id"])
        task_type = str(row["task_type"])
        handler = self._handlers.get(task_type)
        if handler is None:
            self._dead_letter(task_id, f"No handler registered for task_type={task_type}", "handler_not_found")
            return True

        try:
            payload = json.loads(str(row["payload_json"]))
        except json.JSONDecodeError:
            self._dead_letter(task_id, "Invalid payload JSON", "payload_decode_error")
            return True

        try:
            result = await handler(payload if isinstance(payload, dict) else {})
        except Exception as exc:
            LOGGER.warning(
                "task_failed",
                extra={"task_id": task_id},
                exc_info=True,
            )
            self._retry_or_dead_letter(task_id, str(exc) or exc.__class__.__name__)
            return True

        with self._lock:
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE task_queue
                    SET status = ?, result_json = ?, payload_json = '{}', last_error = '',
                        updated_at = ?
                    WHERE task_id = ?
                    """,
                    (
                        TASK_STATUS_COMPLETED,
                        json.dumps(result, ensure_ascii=False),
                        int(time.time()),
                        task_id,
                    ),
                )
        return True

    def _retry_or_dead_letter(self, task_id: str, error_message: str) -> None:
        now = int(time.time())
        with self._lock:
            with self._connection:
                row = self._connection.execute(
                    "SELECT attempts, max_retries, retry_delay_seconds FROM task_queue WHERE task_id = ?",
                    (task_id,),
                ).fetchone()
                if row is None:
                    return
                attempts = int(row["attempts"])
                if attempts <= int(row["max_retries"]):
                    self._connection.execute(
                        """
                        UPDATE task_queue
                        SET status = ?, available_at = ?, updated_at = ?, last_error = ?
                        WHERE task_id = ?
                        """,
                        (
                            TASK_STATUS_RETRYING,
                            now + int(row["retry_delay_seconds"]) * attempts,
                            now,
                            error_message,
                            task_id,
                        ),
                    )
                    return
        self._dead_letter(task_id, error_message, "max_retries_exceeded")

    def _dead_letter(self, task_id: str, error_message: str, reason: str) -> None:
        LOGGER.error("task_dead_lettered", extra={"task_id": task_id})
        with self._lock:
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE task_queue
                    SET status = ?, updated_at = ?, last_error = ?, dead_letter_reason = ?
                    WHERE task_id = ?
                    """,
                    (TASK_STATUS_DEAD_LETTER, int(time.time()), error_message, reason, task_id),
                )

    def _purge_expired_tasks(self, now: int) -> None:
        self._connection.execute(
            "DELETE FROM task_queue WHERE expires_at <= ? AND status IN (?, ?)",
            (now, TASK_STATUS_COMPLETED, TASK_STATUS_DEAD_LETTER),
        )
