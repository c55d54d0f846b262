"""
Configuration and startup security checks for BuildFlow.

Why: A SaaS API holding customer secrets must not boot with development
defaults in production. `ensure_secure_config_on_startup` is the single guard;
`Settings` reads the environment lazily so tests can monkeypatch variables.

Permissions: The caller needs no special privileges. The guard simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

from backend.identity_access.domain import parse_admin_emails

DEV_SESSION_SECRET = "dev-only-session-secret-change-me"


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _flag(name: str, default: str) -> str:
    return (os.getenv(name, default) or default).strip().lower()


class Settings:
    @property
    def environment(self) -> str:
        return _flag("BUILDFLOW_ENV", "dev")

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)

    @property
    def session_secret(self) -> str:
        return (os.getenv("SESSION_SECRET") or "").strip() or DEV_SESSION_SECRET

    @property
    def session_cookie_name(self) -> str:
        return (os.getenv("SESSION_COOKIE_NAME") or "").strip() or "buildflow_session"

    @property
    def sessions_backend(self) -> str:
        return _flag("SESSIONS_BACKEND", "memory")

    @property
    def data_backend(self) -> str:
        return _flag("DATA_BACKEND", "memory")

    @property
    def rate_limit_backend(self) -> str:
        return _flag("RATE_LIMIT_BACKEND", "memory")

    @property
    def redis_url(self) -> str:
        return (os.getenv("REDIS_URL") or "").strip() or "redis://localhost:6379/0"

    @property
    def admin_emails(self) -> list[str]:
        return parse_admin_emails(os.getenv("ADMIN_EMAILS"))

    @property
    def env_var_encryption_key(self) -> str:
        return (os.getenv("ENV_VAR_ENCRYPTION_KEY") or "").strip()

    @property
    def stripe_secret_key(self) -> str:
        return (os.getenv("STRIPE_SECRET_KEY") or "").strip()

    @property
    def app_base_url(self) -> str:
        return ((os.getenv("APP_BASE_URL") or "").strip() or "http://localhost:3000").rstrip("/")

    def stripe_price_id(self, plan: str) -> str:
        return (os.getenv(f"STRIPE_PRICE_{plan.upper()}") or "").strip()


SETTINGS = Settings()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - SESSION_SECRET must be set, not the dev placeholder, and >= 32 chars.
    - ENV_VAR_ENCRYPTION_KEY must be a 32-byte hex key.
    - DATABASE_URL must not explicitly disable TLS.
    - Sessions, data and rate limits must use shared backends (db/db/redis).
    """
    if not SETTINGS.is_prod_like:
        return  # dev/test remain permissive

    # 1) Session signing secret
    secret = (os.getenv("SESSION_SECRET") or "").strip()
    if not secret or secret == DEV_SESSION_SECRET or secret.upper().startswith("CHANGE_ME") or len(secret) < 32:
        raise SystemExit(
            "Refusing to start: SESSION_SECRET is unset, a placeholder or shorter than 32 characters in production."
        )

    # 2) Env var encryption key
    from backend.projects.crypto import parse_key

    try:
        parse_key(SETTINGS.env_var_encryption_key)
    except ValueError as exc:
        raise SystemExit(f"Refusing to start: {exc} in production.") from None

    # 3) Postgres TLS: basic guard to avoid explicit disable
    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 4) Shared backends only
    if SETTINGS.sessions_backend != "db":
        raise SystemExit("Refusing to start: SESSIONS_BACKEND=db is mandatory in production/staging.")
    if SETTINGS.data_backend != "db":
        raise SystemExit("Refusing to start: DATA_BACKEND=db is mandatory in production/staging.")
    if SETTINGS.rate_limit_backend != "redis":
        raise SystemExit("Refusing to start: RATE_LIMIT_BACKEND=redis is mandatory in production/staging.")
