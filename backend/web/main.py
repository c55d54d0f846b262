"BuildFlow API"
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from backend.identity_access.policy import seed_admins
from backend.identity_access.sessions import resolve_identity

from . import wiring
from .config import SETTINGS, ensure_secure_config_on_startup
from .guards import validation_error
from .responses import report_failure
from .routes.admin import admin_router
from .routes.billing import billing_router
from .routes.env_vars import env_vars_router
from .routes.operations import operations_router
from .routes.projects import projects_router
from .routes.submissions import submissions_router
from .routes.users import users_router


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via BUILDFLOW_ENABLE_DOTENV (default true outside
      pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("BUILDFLOW_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Fail fast on insecure production configuration.
ensure_secure_config_on_startup()

logger = logging.getLogger("buildflow.web")


async def seed_admin_roles() -> None:
    """Promote ADMIN_EMAILS identities in the store; never blocks startup."""
    emails = SETTINGS.admin_emails
    if not emails:
        return
    try:
        await asyncio.to_thread(seed_admins, wiring.identity_store(), emails)
    except Exception as exc:
        # Existing admins keep their role; the seed is retried on next start.
        logger.error("Admin seed failed: %s", exc.__class__.__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await seed_admin_roles()
    yield


app = FastAPI(
    title="BuildFlow API",
    description="Backend API for the BuildFlow site builder",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Session Resolution Middleware ------------------------------------------


def _is_api_path(path: str) -> bool:
    return path.startswith("/api/") and path != "/api/health"


@app.middleware("http")
async def session_resolution(request: Request, call_next):
    """Attach the caller's Identity (or None) to `request.state.identity`.

    No path is rejected here: routes gate themselves through the authorization
    policy, which keeps public endpoints (admin check, form submissions) open
    and lets protected ones answer 401 before any data access.
    """
    request.state.identity = None
    if _is_api_path(request.url.path):
        authorization = request.headers.get("authorization")
        cookie = request.cookies.get(SETTINGS.session_cookie_name)
        if authorization or cookie:
            # A broken session backend degrades to anonymous; routes then answer 401.
            try:
                request.state.identity = await asyncio.to_thread(
                    resolve_identity,
                    authorization=authorization,
                    session_cookie=cookie,
                    session_store=wiring.session_store(),
                    identity_store=wiring.identity_store(),
                    secret=SETTINGS.session_secret,
                )
            except Exception as exc:
                logger.error("Session resolution failed: %s", exc.__class__.__name__)
                request.state.identity = None
    return await call_next(request)


# --- Security Headers Middleware --------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON API: nothing may be framed, sniffed or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.is_prod_like:
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_failed(request: Request, exc: RequestValidationError):
    # Malformed path/query parameters answer 400 like malformed bodies, never 422.
    return report_failure(validation_error(exc.errors()), "process request")


app.include_router(operations_router)
app.include_router(admin_router)
app.include_router(users_router)
app.include_router(projects_router)
app.include_router(env_vars_router)
app.include_router(submissions_router)
app.include_router(billing_router)
