"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_flag(name: str, default: str = "0") -> bool:
    """Return boolean value of an on/off style environment variable."""
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    """Authentication-related configuration."""

    secret_key: str
    access_token_ttl_seconds: int
    refresh_token_ttl_seconds: int
    issuer: str
    algorithm: str = "HS256"
    email_verification_ttl_seconds: int = 24 * 60 * 60
    password_reset_ttl_seconds: int = 60 * 60
    password_hash_iterations: int = 310_000
    admin_email: str = ""
    admin_password: str = ""


@dataclass(frozen=True)
class CookieConfig:
    """Auth cookie names and attributes."""

    access_cookie_name: str = "auth_token"
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/auth/refresh"
    secure: bool = False
    same_site: str = "strict"


@dataclass(frozen=True)
class StoreConfig:
    """Relational store location."""

    sqlite_path: str


@dataclass(frozen=True)
class QueueConfig:
    """Durable outbox queue runtime configuration."""

    default_ttl_seconds: int
    default_max_retries: int
    default_retry_delay_seconds: int


@dataclass(frozen=True)
class EmailConfig:
    """Outbound SMTP configuration."""

    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_use_tls: bool
    from_email: str
    from_name: str
    frontend_url: str


@dataclass(frozen=True)
class PaymentConfig:
    """PayMongo integration settings."""

    api_base_url: str
    secret_key: str
    webhook_secret: str
    live_mode: bool
    season_pass_price: int
    success_url: str
    cancel_url: str
    webhook_tolerance_seconds: int = 300


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    login_rate_limit_max_attempts: int
    login_rate_limit_window_seconds: int
    login_rate_limit_lock_seconds: int
    email_rate_limit_max_attempts: int = 3
    email_rate_limit_window_seconds: int = 60
    email_rate_limit_lock_seconds: int = 60
    trust_proxy_headers: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    cookies: CookieConfig
    store: StoreConfig
    queue: QueueConfig
    email: EmailConfig
    payments: PaymentConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        is_production = os.getenv("APP_ENV", "development").strip().lower() == "production"
        secret_key = (
            os.getenv("AUTH_SECRET_KEY", "").strip() or "dev-insecure-secret-change-me"
        )
        if is_production and secret_key == "dev-insecure-secret-change-me":
            raise RuntimeError("AUTH_SECRET_KEY must be set in production")

        access_ttl = int(os.getenv("AUTH_ACCESS_TOKEN_TTL_SECONDS", "900"))
        refresh_ttl = int(os.getenv("AUTH_REFRESH_TOKEN_TTL_SECONDS", "604800"))
        issuer = os.getenv("AUTH_ISSUER", "reviewguro").strip() or "reviewguro"
        verification_ttl = int(os.getenv("AUTH_EMAIL_VERIFICATION_TTL_SECONDS", "86400"))
        reset_ttl = int(os.getenv("AUTH_PASSWORD_RESET_TTL_SECONDS", "3600"))
        hash_iterations = int(os.getenv("AUTH_PASSWORD_HASH_ITERATIONS", "310000"))
        admin_email = os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower()
        admin_password = os.getenv("AUTH_ADMIN_PASSWORD", "").strip()

        sqlite_path = (
            os.getenv("STORE_SQLITE_PATH", "runtime/app_state.db").strip()
            or "runtime/app_state.db"
        )
        queue_ttl = int(os.getenv("TASK_QUEUE_TTL_SECONDS", "86400"))
        queue_max_retries = int(os.getenv("TASK_QUEUE_MAX_RETRIES", "3"))
        queue_retry_delay = int(os.getenv("TASK_QUEUE_RETRY_DELAY_SECONDS", "5"))

        frontend_url = (
            os.getenv("FRONTEND_URL", "http://localhost:3000").strip().rstrip("/")
            or "http://localhost:3000"
        )
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ALLOWED_ORIGINS", frontend_url).split(",")
            if origin.strip()
        ]

        return AppConfig(
            auth=AuthConfig(
                secret_key=secret_key,
                access_token_ttl_seconds=access_ttl,
                refresh_token_ttl_seconds=refresh_ttl,
                issuer=issuer,
                email_verification_ttl_seconds=verification_ttl,
                password_reset_ttl_seconds=reset_ttl,
                password_hash_iterations=hash_iterations,
                admin_email=admin_email,
                admin_password=admin_password,
            ),
            cookies=CookieConfig(secure=is_production),
            store=StoreConfig(sqlite_path=sqlite_path),
            queue=QueueConfig(
                default_ttl_seconds=queue_ttl,
                default_max_retries=queue_max_retries,
                default_retry_delay_seconds=queue_retry_delay,
            ),
            email=EmailConfig(
                smtp_host=os.getenv("SMTP_HOST", "").strip(),
                smtp_port=int(os.getenv("SMTP_PORT", "587")),
                smtp_user=os.getenv("SMTP_USER", "").strip(),
                smtp_password=os.getenv("SMTP_PASSWORD", ""),
                smtp_use_tls=_env_flag("SMTP_USE_TLS", "1"),
                from_email=os.getenv("EMAIL_FROM", "").strip(),
                from_name=os.getenv("EMAIL_FROM_NAME", "ReviewGuro").strip() or "ReviewGuro",
                frontend_url=frontend_url,
            ),
            payments=PaymentConfig(
                api_base_url=(
                    os.getenv("PAYMONGO_API_URL", "https://api.paymongo.com/v1").strip()
                    or "https://api.paymongo.com/v1"
                ),
                secret_key=os.getenv("PAYMONGO_SECRET_KEY", "").strip(),
                webhook_secret=os.getenv("PAYMONGO_WEBHOOK_SECRET", "").strip(),
                live_mode=_env_flag("PAYMONGO_LIVE_MODE"),
                season_pass_price=int(os.getenv("SEASON_PASS_PRICE_CENTAVOS", "39900")),
                success_url=f"{frontend_url}/checkout/success",
                cancel_url=f"{frontend_url}/checkout/cancel",
                webhook_tolerance_seconds=int(
                    os.getenv("PAYMONGO_WEBHOOK_TOLERANCE_SECONDS", "300")
                ),
            ),
            logging=LoggingConfig(level=log_level),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=int(os.getenv("REQUEST_MAX_BYTES", str(1024 * 1024))),
                login_rate_limit_max_attempts=int(
                    os.getenv("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", "5")
                ),
                login_rate_limit_window_seconds=int(
                    os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "300")
                ),
                login_rate_limit_lock_seconds=int(
                    os.getenv("LOGIN_RATE_LIMIT_LOCK_SECONDS", "600")
                ),
                email_rate_limit_max_attempts=int(
                    os.getenv("EMAIL_RATE_LIMIT_MAX_ATTEMPTS", "3")
                ),
                email_rate_limit_window_seconds=int(
                    os.getenv("EMAIL_RATE_LIMIT_WINDOW_SECONDS", "60")
                ),
                email_rate_limit_lock_seconds=int(
                    os.getenv("EMAIL_RATE_LIMIT_LOCK_SECONDS", "60")
                ),
                trust_proxy_headers=_env_flag("TRUST_PROXY_HEADERS"),
            ),
        )


def resolve_database_path(store: StoreConfig) -> Path:
    """Absolute SQLite path; relative paths are anchored at the project root."""
    path = Path(store.sqlite_path)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.resolve()
