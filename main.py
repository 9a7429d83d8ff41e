from __future__ import annotations

import argparse
import json
import logging

from dotenv import load_dotenv

from app.api.errors import ApiError
from app.auth.repository import AuthRepository
from app.auth.service import AuthService
from app.auth.sessions import SessionManager
from app.auth.tokens import TokenCodec
from app.core.config import AppConfig, resolve_database_path
from app.core.logging import setup_logging
from app.core.task_queue import QueueSettings, TaskQueue
from app.notifications.dispatcher import EmailDispatcher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Maintenance commands for the ReviewGuro auth store."
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    create_admin = subcommands.add_parser(
        "create-admin", help="Create an admin account or promote an existing one."
    )
    create_admin.add_argument("--email", required=True, help="Admin email address.")
    create_admin.add_argument("--password", required=True, help="Admin password.")

    subcommands.add_parser(
        "purge-sessions", help="Delete refresh-token sessions that have expired."
    )
    return parser


def run(argv: list[str] | None = None, config: AppConfig | None = None) -> dict:
    """Execute one command and return a JSON-serialisable summary."""
    args = build_parser().parse_args(argv)
    config = config or AppConfig.from_env()
    database_path = resolve_database_path(config.store)
    repo = AuthRepository(database_path)
    sessions = SessionManager(
        repo, refresh_token_ttl_seconds=config.auth.refresh_token_ttl_seconds
    )
    try:
        if args.command == "purge-sessions":
            return {"command": args.command, "purged": sessions.purge_expired()}

        queue = TaskQueue(QueueSettings(database_path=database_path))
        try:
            service = AuthService(
                repo=repo,
                sessions=sessions,
                codec=TokenCodec(config.auth),
                emails=EmailDispatcher(queue),
                config=config.auth,
            )
            created = service.create_admin_user(args.email, args.password)
        finally:
            queue.close()
        return {"command": args.command, "email": args.email.strip().lower(), "created": created}
    finally:
        repo.close()


def main() -> None:
    load_dotenv()
    config = AppConfig.from_env()
    setup_logging(config.logging.level)
    logger = logging.getLogger("main")
    try:
        summary = run(config=config)
    except ApiError as exc:
        raise SystemExit(f"Command failed: {exc.message}") from exc
    logger.info("command_completed")
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
