"""
Process-wide collaborators for the web layer.

Why:
    Stores, repository, rate limiter, payment provider and cipher are built once
    per process on first use (lazy, so importing the app never touches the
    database) and shared by reference across requests. Tests swap them with the
    `set_*` helpers and restore defaults with `reset()`.

Selection:
    - SESSIONS_BACKEND=db  -> DBSessionStore, else in-memory SessionStore.
    - DATA_BACKEND=db      -> DBIdentityStore + DBProjectRepo, else in-memory.
    - RATE_LIMIT_BACKEND=redis -> RedisRateLimiter, else in-memory.
    - STRIPE_SECRET_KEY set -> StripeClient, else NullPaymentProvider.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from backend.billing.provider import NullPaymentProvider, StripeClient
from backend.identity_access.stores import IdentityStore, SessionStore
from backend.projects.crypto import EnvVarCipher, generate_key, parse_key
from backend.projects.repo import ProjectRepo

from .config import SETTINGS
from .rate_limit import InMemoryRateLimiter, RedisRateLimiter

logger = logging.getLogger("buildflow.web")

T = TypeVar("T")

_SESSION_STORE = None
_IDENTITY_STORE = None
_PROJECT_REPO = None
_RATE_LIMITER = None
_PAYMENT_PROVIDER = None
_CIPHER = None


def _build_session_store():
    if SETTINGS.sessions_backend == "db":
        from backend.identity_access.stores_db import DBSessionStore

        return DBSessionStore()
    return SessionStore()


def _build_identity_store():
    if SETTINGS.data_backend == "db":
        from backend.identity_access.stores_db import DBIdentityStore

        return DBIdentityStore()
    return IdentityStore()


def _build_project_repo():
    if SETTINGS.data_backend == "db":
        from backend.projects.repo_db import DBProjectRepo

        return DBProjectRepo()
    return ProjectRepo()


def _build_rate_limiter():
    if SETTINGS.rate_limit_backend == "redis":
        import redis.asyncio as redis

        return RedisRateLimiter(redis.from_url(SETTINGS.redis_url))
    return InMemoryRateLimiter()


def _build_payment_provider():
    key = SETTINGS.stripe_secret_key
    if key:
        return StripeClient(key)
    logger.info("STRIPE_SECRET_KEY unset; billing endpoints will report provider failures")
    return NullPaymentProvider()


def _build_cipher() -> EnvVarCipher:
    raw = SETTINGS.env_var_encryption_key
    if raw:
        return EnvVarCipher(parse_key(raw))
    # Dev only (startup guard enforces a key in prod): values do not survive restarts.
    logger.warning("ENV_VAR_ENCRYPTION_KEY unset; using an ephemeral key")
    return EnvVarCipher(generate_key())


def session_store():
    global _SESSION_STORE
    if _SESSION_STORE is None:
        _SESSION_STORE = _build_session_store()
    return _SESSION_STORE


def identity_store():
    global _IDENTITY_STORE
    if _IDENTITY_STORE is None:
        _IDENTITY_STORE = _build_identity_store()
    return _IDENTITY_STORE


def project_repo():
    global _PROJECT_REPO
    if _PROJECT_REPO is None:
        _PROJECT_REPO = _build_project_repo()
    return _PROJECT_REPO


def rate_limiter():
    global _RATE_LIMITER
    if _RATE_LIMITER is None:
        _RATE_LIMITER = _build_rate_limiter()
    return _RATE_LIMITER


def payment_provider():
    global _PAYMENT_PROVIDER
    if _PAYMENT_PROVIDER is None:
        _PAYMENT_PROVIDER = _build_payment_provider()
    return _PAYMENT_PROVIDER


def cipher() -> EnvVarCipher:
    global _CIPHER
    if _CIPHER is None:
        _CIPHER = _build_cipher()
    return _CIPHER


def set_session_store(store) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def set_identity_store(store) -> None:
    global _IDENTITY_STORE
    _IDENTITY_STORE = store


def set_project_repo(repo) -> None:
    global _PROJECT_REPO
    _PROJECT_REPO = repo


def set_rate_limiter(limiter) -> None:
    global _RATE_LIMITER
    _RATE_LIMITER = limiter


def set_payment_provider(provider) -> None:
    global _PAYMENT_PROVIDER
    _PAYMENT_PROVIDER = provider


def set_cipher(value: EnvVarCipher) -> None:
    global _CIPHER
    _CIPHER = value


def reset() -> None:
    """Drop every singleton; the next accessor call rebuilds from the environment."""
    global _SESSION_STORE, _IDENTITY_STORE, _PROJECT_REPO, _RATE_LIMITER, _PAYMENT_PROVIDER, _CIPHER
    _SESSION_STORE = _IDENTITY_STORE = _PROJECT_REPO = _RATE_LIMITER = _PAYMENT_PROVIDER = _CIPHER = None


async def run_io(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking store/repo call in a worker thread."""
    return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))
