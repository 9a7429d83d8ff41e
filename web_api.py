from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.contracts import HealthResponse
from app.api.http_setup import register_exception_handlers, register_http_middleware
from app.auth.gate import RequestGate
from app.auth.rate_limiter import AttemptRateLimiter
from app.auth.repository import AuthRepository
from app.auth.router import create_auth_router
from app.auth.service import AuthService
from app.auth.sessions import SessionManager
from app.auth.tokens import TokenCodec
from app.core.config import AppConfig, resolve_database_path
from app.core.logging import setup_logging
from app.core.task_queue import QueueSettings, TaskQueue
from app.notifications.dispatcher import EmailDispatcher, register_email_handlers
from app.notifications.sender import EmailSender
from app.payments.client import PaymongoClient
from app.payments.router import create_payment_router
from app.payments.service import PaymentService

load_dotenv()
LOGGER = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the API with every collaborator constructed and injected here."""
    config = config or AppConfig.from_env()
    setup_logging(config.logging.level)

    app = FastAPI(title="ReviewGuro Auth API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    database_path = resolve_database_path(config.store)
    repo = AuthRepository(database_path)
    task_queue = TaskQueue(
        QueueSettings(
            database_path=database_path,
            default_ttl_seconds=config.queue.default_ttl_seconds,
            default_max_retries=config.queue.default_max_retries,
            default_retry_delay_seconds=config.queue.default_retry_delay_seconds,
        )
    )
    register_email_handlers(
        task_queue,
        EmailSender(
            config.email,
            verification_ttl_seconds=config.auth.email_verification_ttl_seconds,
            reset_ttl_seconds=config.auth.password_reset_ttl_seconds,
        ),
    )

    codec = TokenCodec(config.auth)
    sessions = SessionManager(
        repo, refresh_token_ttl_seconds=config.auth.refresh_token_ttl_seconds
    )
    auth_service = AuthService(
        repo=repo,
        sessions=sessions,
        codec=codec,
        emails=EmailDispatcher(task_queue),
        config=config.auth,
    )
    auth_service.bootstrap_admin_user()

    login_limiter = AttemptRateLimiter(
        database_path=database_path,
        scope="login",
        max_attempts=config.security.login_rate_limit_max_attempts,
        window_seconds=config.security.login_rate_limit_window_seconds,
        lock_seconds=config.security.login_rate_limit_lock_seconds,
    )
    email_limiter = AttemptRateLimiter(
        database_path=database_path,
        scope="email",
        max_attempts=config.security.email_rate_limit_max_attempts,
        window_seconds=config.security.email_rate_limit_window_seconds,
        lock_seconds=config.security.email_rate_limit_lock_seconds,
    )
    gate = RequestGate(codec, config.cookies.access_cookie_name)

    app.include_router(
        create_auth_router(
            service=auth_service,
            gate=gate,
            login_limiter=login_limiter,
            email_limiter=email_limiter,
            config=config,
        )
    )

    paymongo_client = PaymongoClient(config.payments)
    payment_service = PaymentService(
        repo=repo, client=paymongo_client, config=config.payments
    )
    app.include_router(create_payment_router(service=payment_service, gate=gate))

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_outbox_worker() -> None:
        purged = sessions.purge_expired()
        LOGGER.info("startup_complete expired_sessions_purged=%s", purged)
        await task_queue.start()

    @app.on_event("shutdown")
    async def shutdown_outbox_worker() -> None:
        await task_queue.stop()
        task_queue.close()
        login_limiter.close()
        email_limiter.close()
        paymongo_client.close()
        repo.close()

    app.state.auth_service = auth_service
    app.state.payment_service = payment_service
    app.state.task_queue = task_queue
    return app


app = create_app()
