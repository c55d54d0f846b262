"""Per-request gate helpers shared by the routers."""
from __future__ import annotations

from typing import Optional, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from backend.identity_access.domain import Identity
from backend.identity_access.policy import Capability, authorize
from backend.results import ApiError, Err, Ok, Result

from . import wiring
from .rate_limit import check_rate_limit, client_identifier

M = TypeVar("M", bound=BaseModel)


def current_identity(request: Request) -> Optional[Identity]:
    """Identity resolved by the session middleware, or None."""
    return getattr(request.state, "identity", None)


def require(request: Request, capability: Capability) -> Result[Identity]:
    return authorize(current_identity(request), capability)


async def enforce_rate_limit(request: Request, name: str, identifier: Optional[str] = None) -> Optional[Err]:
    """Return an Err when the named limiter denies this caller, else None."""
    decision = await check_rate_limit(wiring.rate_limiter(), name, client_identifier(request, identifier))
    if decision.allowed:
        return None
    return Err(
        ApiError.rate_limited(
            "Too many requests. Please try again later.",
            headers=decision.headers(),
            retryAfter=decision.retry_after(),
        )
    )


def parse_paging(limit: Optional[int], offset: Optional[int], *, default: int = 50, maximum: int = 100) -> tuple[int, int]:
    lim = default if limit is None else max(1, min(maximum, int(limit)))
    off = 0 if offset is None else max(0, int(offset))
    return lim, off


async def parse_body(request: Request, model: type[M]) -> Result[M]:
    """Read and validate a JSON body; failures become BAD_INPUT (never 422)."""
    try:
        raw = await request.json()
    except ValueError:
        return Err(ApiError.bad_input("Invalid JSON body"))
    try:
        return Ok(model.model_validate(raw))
    except ValidationError as exc:
        return Err(validation_error(exc.errors()))


def validation_error(errors) -> ApiError:
    """Map the first pydantic error to `<field> required` or `Invalid <field>`."""
    first = errors[0] if errors else {}
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    field_name = ".".join(loc) or "body"
    if first.get("type") == "missing":
        return ApiError.required(field_name)
    return ApiError.bad_input(f"Invalid {field_name}")
