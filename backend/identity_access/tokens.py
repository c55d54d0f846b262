"""
Bearer session token helpers for the identity_access bounded context.

Why: API clients (CLI, preview workers) authenticate with a signed bearer token
instead of the session cookie. Keeping signing/verification outside the web
adapter lets us unit test it independently.

Security: HS256 with a server-side secret. Tokens must carry `sub` and `exp`;
issuer is checked so tokens minted for other services are rejected.
"""
from __future__ import annotations

import time

from jose import jwt
from jose.exceptions import JOSEError

ALGORITHM = "HS256"
ISSUER = "buildflow"


class SessionTokenError(Exception):
    """Raised when a bearer session token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def issue_session_token(*, sub: str, secret: str, ttl_seconds: int = 3600, now: int | None = None) -> str:
    issued_at = int(now if now is not None else time.time())
    claims = {"sub": sub, "iss": ISSUER, "iat": issued_at, "exp": issued_at + int(ttl_seconds)}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_session_token(token: str, *, secret: str) -> str:
    """Return the identity id (`sub`) of a valid token.

    Raises SessionTokenError with a stable code: `missing`, `invalid`, `no_sub`.
    Expiry is enforced by jose (`exp` is required).
    """
    if not token:
        raise SessionTokenError("missing")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"require_exp": True, "require_sub": True, "verify_aud": False},
        )
    except JOSEError as exc:
        raise SessionTokenError("invalid") from exc
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise SessionTokenError("no_sub")
    return sub
