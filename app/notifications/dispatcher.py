"""Fire-and-forget email handoff to the durable outbox."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Protocol

from app.core.logging import redact_email
from app.notifications.sender import EmailSender

LOGGER = logging.getLogger(__name__)

TASK_SEND_VERIFICATION = "email.verification"
TASK_SEND_PASSWORD_RESET = "email.password_reset"


def idempotency_key(task_type: str, token: str) -> str:
    """Dedupe key for one email; the token appears only as a SHA-256 digest."""
    return f"{task_type}:{hashlib.sha256(token.encode('utf-8')).hexdigest()}"


class OutboxQueue(Protocol):
    def register_handler(self, task_type: str, handler: Any) -> None: ...

    def submit(self, *, task_type: str, payload: dict[str, Any], idempotency_key: str = "") -> str: ...


class EmailDispatcher:
    """Enqueue auth emails; enqueue failures are logged, never raised."""

    def __init__(self, queue: OutboxQueue) -> None:
        self._queue = queue

    def send_verification(self, email: str, token: str) -> None:
        self._enqueue(TASK_SEND_VERIFICATION, email, token)

    def send_password_reset(self, email: str, token: str) -> None:
        self._enqueue(TASK_SEND_PASSWORD_RESET, email, token)

    def _enqueue(self, task_type: str, email: str, token: str) -> None:
        try:
            self._queue.submit(
                task_type=task_type,
                payload={"email": email, "token": token},
                idempotency_key=idempotency_key(task_type, token),
            )
        except Exception:
            LOGGER.exception("email_enqueue_failed to=%s type=%s", redact_email(email), task_type)


def register_email_handlers(queue: OutboxQueue, sender: EmailSender) -> None:
    """Bind outbox task types to SMTP delivery running off the event loop."""

    async def send_verification(payload: dict[str, Any]) -> dict[str, Any]:
        await asyncio.to_thread(
            sender.send_verification, str(payload["email"]), str(payload["token"])
        )
        return {"sent": True}

    async def send_password_reset(payload: dict[str, Any]) -> dict[str, Any]:
        await asyncio.to_thread(
            sender.send_password_reset, str(payload["email"]), str(payload["token"])
        )
        return {"sent": True}

    queue.register_handler(TASK_SEND_VERIFICATION, send_verification)
    queue.register_handler(TASK_SEND_PASSWORD_RESET, send_password_reset)
