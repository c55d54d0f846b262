"""
Self-service API routes: account settings and usage.

Why:
    A signed-in identity reads and edits its own profile and preferences, and
    sees how much of its subscription allowance it has used this month.

Permissions:
    Caller must be authenticated; only the caller's own record is touched.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.identity_access.domain import ALLOWED_THEMES, project_limit_for, tier_limits
from backend.identity_access.policy import AUTHENTICATED
from backend.results import ApiError, Err, Ok

from .. import wiring
from ..guards import enforce_rate_limit, parse_body, require
from ..responses import boundary
from ..shaping import coerce_int, shape_settings

users_router = APIRouter(tags=["Users"])
logger = logging.getLogger("buildflow.web.users")


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)
    theme: Optional[str] = None
    notifications: Optional[bool] = None
    auto_save: Optional[bool] = Field(default=None, alias="autoSave")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain or " " in v:
            raise ValueError("invalid email")
        return v

    @field_validator("theme")
    @classmethod
    def _theme(cls, v):
        if v is not None and v not in ALLOWED_THEMES:
            raise ValueError("theme must be light, dark or system")
        return v


@users_router.get("/api/user/settings")
@boundary("fetch settings")
async def get_settings(request: Request):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    return Ok({"user": shape_settings(gate.value)})


@users_router.post("/api/user/settings")
@boundary("update settings")
async def update_settings(request: Request):
    """Update the caller's own profile and preferences.

    Behavior:
        - 200 `{user}` after the update
        - 400 on invalid email/theme or an email already in use
    """
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, SettingsUpdate)
    if isinstance(body, Err):
        return body
    # Explicit nulls are ignored: name/email/preferences cannot be cleared here.
    changes = {k: v for k, v in body.value.model_dump(include=body.value.model_fields_set).items() if v is not None}
    if not changes:
        return Ok({"user": shape_settings(identity)})
    try:
        updated = await wiring.run_io(wiring.identity_store().update_self_fields, identity.id, changes)
    except ValueError as exc:
        if str(exc) == "email_taken":
            return Err(ApiError.bad_input("Email already in use"))
        raise
    if updated is None:
        return Err(ApiError.unauthenticated())
    return Ok({"user": shape_settings(updated)})


@users_router.get("/api/usage")
@boundary("fetch usage")
async def get_usage(request: Request):
    """Tier, its limits and the caller's counters for the current month."""
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limits = tier_limits(identity.subscription_tier)
    limits["projectsPerMonth"] = project_limit_for(identity)
    if identity.generations_limit is not None:
        limits["generationsPerMonth"] = identity.generations_limit
    return Ok(
        {
            "tier": identity.subscription_tier,
            "limits": {k: coerce_int(v) for k, v in limits.items()},
            "usage": {
                "projectsThisMonth": coerce_int(identity.projects_this_month),
                "generationsUsed": coerce_int(identity.generations_used),
            },
        }
    )
