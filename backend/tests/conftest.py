"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
Every test starts with dev settings, in-memory collaborators and a fresh rate
limiter, so nothing leaks between tests through the wiring singletons.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure `backend.*` is importable when running from a checkout without install.
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.tests.utils.api import TEST_SESSION_SECRET  # noqa: E402

_ENV_VARS = (
    "BUILDFLOW_ENV",
    "SESSIONS_BACKEND",
    "DATA_BACKEND",
    "RATE_LIMIT_BACKEND",
    "REDIS_URL",
    "DATABASE_URL",
    "ADMIN_EMAILS",
    "ENV_VAR_ENCRYPTION_KEY",
    "STRIPE_SECRET_KEY",
    "APP_BASE_URL",
    "SESSION_COOKIE_NAME",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _dev_environment(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles so each test starts from dev defaults."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in [k for k in os.environ if k.startswith("STRIPE_PRICE_")]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SESSION_SECRET", TEST_SESSION_SECRET)
    yield


@pytest.fixture(autouse=True)
def _reset_wiring():
    """Drop process-wide collaborators before and after every test."""
    from backend.projects.crypto import EnvVarCipher, generate_key
    from backend.web import wiring

    wiring.reset()
    wiring.set_cipher(EnvVarCipher(generate_key()))
    yield
    wiring.reset()


@pytest.fixture
def identities():
    from backend.identity_access.stores import IdentityStore
    from backend.web import wiring

    store = IdentityStore()
    wiring.set_identity_store(store)
    return store


@pytest.fixture
def sessions():
    from backend.identity_access.stores import SessionStore
    from backend.web import wiring

    store = SessionStore()
    wiring.set_session_store(store)
    return store


@pytest.fixture
def projects():
    from backend.projects.repo import ProjectRepo
    from backend.web import wiring

    repo = ProjectRepo()
    wiring.set_project_repo(repo)
    return repo
