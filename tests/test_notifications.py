from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from app.core.config import EmailConfig
from app.core.task_queue import QueueSettings, TaskQueue
from app.notifications.dispatcher import (
    TASK_SEND_PASSWORD_RESET,
    TASK_SEND_VERIFICATION,
    EmailDispatcher,
    idempotency_key,
    register_email_handlers,
)
from app.notifications.sender import EmailSender, describe_duration


@dataclass
class _RecordingSender:
    sent: list[tuple[str, str, str]] = field(default_factory=list)

    def send_verification(self, to_email: str, token: str) -> None:
        self.sent.append(("verification", to_email, token))

    def send_password_reset(self, to_email: str, token: str) -> None:
        self.sent.append(("reset", to_email, token))


class _BrokenQueue:
    def register_handler(self, task_type: str, handler: Any) -> None:
        raise AssertionError("not used")

    def submit(self, *, task_type: str, payload: dict[str, Any], idempotency_key: str = "") -> str:
        raise RuntimeError("database is locked")


def _queue(tmp_path: Path) -> TaskQueue:
    return TaskQueue(
        QueueSettings(
            database_path=tmp_path / "state.db",
            default_ttl_seconds=60,
            default_max_retries=1,
            default_retry_delay_seconds=1,
            worker_poll_interval_seconds=0.01,
        )
    )


def _email_config(**overrides: Any) -> EmailConfig:
    values: dict[str, Any] = {
        "smtp_host": "",
        "smtp_port": 587,
        "smtp_user": "",
        "smtp_password": "",
        "smtp_use_tls": True,
        "from_email": "",
        "from_name": "ReviewGuro",
        "frontend_url": "http://localhost:3000",
    }
    values.update(overrides)
    return EmailConfig(**values)


def test_dispatcher_enqueues_with_token_idempotency_key(tmp_path: Path) -> None:
    queue = _queue(tmp_path)
    dispatcher = EmailDispatcher(queue)

    dispatcher.send_verification("a@example.com", "tok-1")
    dispatcher.send_verification("a@example.com", "tok-1")
    dispatcher.send_password_reset("a@example.com", "tok-2")

    rows = queue._connection.execute(
        "SELECT task_type, idempotency_key FROM task_queue ORDER BY created_at, task_type"
    ).fetchall()
    queue.close()

    assert sorted((row["task_type"], row["idempotency_key"]) for row in rows) == [
        (TASK_SEND_PASSWORD_RESET, idempotency_key(TASK_SEND_PASSWORD_RESET, "tok-2")),
        (TASK_SEND_VERIFICATION, idempotency_key(TASK_SEND_VERIFICATION, "tok-1")),
    ]
    assert all("tok-" not in str(row["idempotency_key"]) for row in rows)


def test_dispatcher_swallows_enqueue_failures() -> None:
    dispatcher = EmailDispatcher(_BrokenQueue())

    dispatcher.send_verification("a@example.com", "tok")
    dispatcher.send_password_reset("a@example.com", "tok")


def test_registered_handlers_deliver_queued_emails(tmp_path: Path) -> None:
    async def scenario() -> tuple[list[tuple[str, str, str]], list[str]]:
        queue = _queue(tmp_path)
        sender = _RecordingSender()
        register_email_handlers(queue, sender)  # type: ignore[arg-type]
        dispatcher = EmailDispatcher(queue)
        dispatcher.send_verification("v@example.com", "verify-token")
        dispatcher.send_password_reset("r@example.com", "reset-token")

        while await queue.process_next_due_task():
            pass
        payloads = [
            str(row["payload_json"])
            for row in queue._connection.execute("SELECT payload_json FROM task_queue")
        ]
        queue.close()
        return sender.sent, payloads

    sent, payloads = asyncio.run(scenario())

    assert sorted(sent) == [
        ("reset", "r@example.com", "reset-token"),
        ("verification", "v@example.com", "verify-token"),
    ]
    assert payloads == ["{}", "{}"]


def test_email_sender_without_smtp_logs_instead_of_sending(caplog) -> None:
    sender = EmailSender(_email_config())

    with caplog.at_level("INFO"):
        sender.send_verification("student@example.com", "abc")

    assert sender.is_configured is False
    assert "st***@example.com" in caplog.text
    assert "student@example.com" not in caplog.text


def test_email_sender_uses_smtp_when_configured(monkeypatch) -> None:
    sent: dict[str, Any] = {}

    class _FakeSMTP:
        def __init__(self, host: str, port: int, timeout: int) -> None:
            sent["host"] = (host, port)

        def __enter__(self) -> "_FakeSMTP":
            return self

        def __exit__(self, *exc: object) -> None:
            return None

        def starttls(self, context: Any) -> None:
            sent["tls"] = True

        def login(self, user: str, password: str) -> None:
            sent["login"] = user

        def sendmail(self, from_addr: str, to_addr: str, message: str) -> None:
            sent["to"] = to_addr
            sent["message"] = message

    monkeypatch.setattr("app.notifications.sender.smtplib.SMTP", _FakeSMTP)
    sender = EmailSender(
        _email_config(
            smtp_host="smtp.test",
            smtp_user="mailer",
            smtp_password="pw",
            from_email="noreply@test",
        )
    )

    sender.send_password_reset("student@example.com", "reset-token")

    assert sent["host"] == ("smtp.test", 587)
    assert sent["tls"] is True
    assert sent["login"] == "mailer"
    assert sent["to"] == "student@example.com"
    assert "reset-password?token=3Dreset-token" in sent["message"] or (
        "reset-password?token=reset-token" in sent["message"]
    )


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(86400, "1 day"), (7200, "2 hours"), (1800, "30 minutes"), (90, "90 seconds")],
)
def test_describe_duration_picks_largest_whole_unit(seconds: int, expected: str) -> None:
    assert describe_duration(seconds) == expected


def test_email_copy_follows_configured_token_lifetimes(monkeypatch) -> None:
    sent: list[str] = []
    sender = EmailSender(_email_config(), verification_ttl_seconds=7200, reset_ttl_seconds=1800)
    monkeypatch.setattr(
        sender, "send", lambda to_email, subject, text_body, html_body: sent.append(text_body)
    )

    sender.send_verification("a@example.com", "v")
    sender.send_password_reset("a@example.com", "r")

    assert "expires in 2 hours." in sent[0]
    assert "expires in 30 minutes." in sent[1]
