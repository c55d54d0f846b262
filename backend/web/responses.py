"""
HTTP boundary: the single place where results and exceptions become responses.

Why:
    Handlers return `Ok(body)` / `Err(ApiError)` (or a ready Response). The
    `boundary(action)` decorator wraps every handler, catches anything it
    raises (including errors while rendering the JSON body), logs the failure
    exactly once and answers with a stable `{"error": ...}` body. Server-side
    failures never leak detail; the caller sees `Failed to <action>`.

Caching:
    Every JSON response carries `Cache-Control: private, no-store`.
"""
from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx
import psycopg
from fastapi.responses import JSONResponse, Response
from redis.exceptions import RedisError

from backend.results import ApiError, Err, Ok, UpstreamError

logger = logging.getLogger("buildflow.web")

PRIVATE_NO_STORE = {"Cache-Control": "private, no-store"}

# Exceptions that mean "a collaborator is unavailable" rather than a bug.
UPSTREAM_EXCEPTIONS = (UpstreamError, psycopg.OperationalError, RedisError, httpx.HTTPError)


def private_json(body: Any, *, status_code: int = 200, headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
    merged = dict(PRIVATE_NO_STORE)
    if headers:
        merged.update(headers)
    return JSONResponse(body, status_code=status_code, headers=merged)


def classify_exception(exc: BaseException) -> ApiError:
    if isinstance(exc, UPSTREAM_EXCEPTIONS):
        return ApiError.upstream(exc)
    return ApiError.unknown(exc)


def report_failure(err: ApiError, action: str) -> JSONResponse:
    """Log the failure once and build the error response."""
    if err.is_server_error:
        exc = err.cause
        logger.error(
            "Failed to %s: %s",
            action,
            err.message,
            exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
        )
    else:
        logger.warning("Request to %s rejected (%s): %s", action, err.kind.value, err.message)
    body: dict[str, Any] = {"error": err.public_message(action)}
    if not err.is_server_error:
        body.update(err.extra)
    return private_json(body, status_code=err.status_code, headers=err.headers)


def boundary(action: str) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Response]]]:
    """Wrap an async route handler in the failure boundary.

    The handler may return `Ok`, `Err` or a `Response`. `functools.wraps` keeps
    the original signature visible to FastAPI's dependency resolution.
    """

    def decorate(handler: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Response]]:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                result = await handler(*args, **kwargs)
                if isinstance(result, Response):
                    return result
                if isinstance(result, Err):
                    return report_failure(result.error, action)
                if isinstance(result, Ok):
                    return private_json(result.value, status_code=result.status_code)
                raise TypeError(f"handler returned {type(result).__name__}, expected Ok/Err/Response")
            except Exception as exc:
                return report_failure(classify_exception(exc), action)

        # Resolve string annotations against the handler module so FastAPI sees
        # real types (the wrapper lives in this module).
        wrapper.__signature__ = inspect.signature(handler, eval_str=True)
        return wrapper

    return decorate
