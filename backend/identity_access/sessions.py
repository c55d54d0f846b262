"""
Session resolver: turn request credentials into an Identity or None.

Why:
    Absence of a session is a normal outcome, not a failure. The resolver never
    raises: malformed tokens, expired sessions, a deleted identity and even an
    unreachable session store all resolve to None (the latter is logged).

Transports:
    1. `Authorization: Bearer <jwt>` verified with the session secret.
    2. Opaque session cookie looked up in the session store.
    A bearer header wins when both are present.

The identity is always re-read from the identity store so role and counters
are current for the gate and the handlers.
"""
from __future__ import annotations

import logging
from typing import Optional

from .domain import Identity
from .tokens import SessionTokenError, verify_session_token

logger = logging.getLogger("buildflow.identity_access")


def bearer_token(authorization: str | None) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None


def resolve_identity(
    *,
    authorization: str | None,
    session_cookie: str | None,
    session_store,
    identity_store,
    secret: str,
) -> Optional[Identity]:
    sub: Optional[str] = None
    token = bearer_token(authorization)
    if token:
        try:
            sub = verify_session_token(token, secret=secret)
        except SessionTokenError as exc:
            logger.info("Bearer session rejected: %s", exc.code)
            return None
    elif session_cookie:
        try:
            rec = session_store.get(session_cookie)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)
            return None
        sub = rec.sub if rec else None
    if not sub:
        return None
    try:
        return identity_store.get(sub)
    except Exception as exc:
        logger.warning("Identity lookup failed for sub=%s: %s", sub[-6:], exc.__class__.__name__)
        return None
