"""
Admin API routes: admin check, user management and session revocation.

Why:
    Operators manage subscription tiers, per-user limits and roles, and can
    force a user to sign in again. Every decision is based on the caller's live
    role in the identity store; the ADMIN_EMAILS allow-list only seeds it.

Permissions:
    - `GET /api/admin/check` is public and answers `{isAdmin}` for anyone.
    - All other routes require role `admin`. User-management routes deny with
      403 `{"error": "Unauthorized"}`.

Audit:
    Every successful mutation is written to the `buildflow.audit` logger with
    the acting admin and the target id.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.identity_access.domain import ALLOWED_ROLES, ALLOWED_TIERS, ROLE_ADMIN
from backend.identity_access.policy import HasRole
from backend.results import ApiError, Err, Ok

from .. import wiring
from ..guards import current_identity, parse_body, parse_paging, require
from ..responses import boundary, private_json
from ..shaping import coerce_int, shape_identity

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("buildflow.web.admin")
audit = logging.getLogger("buildflow.audit")

USER_ADMIN = HasRole(ROLE_ADMIN, denial_message="Unauthorized")

# Counters are stored as BIGINT.
_MAX_COUNTER = 2**63 - 1
MAX_BULK_IDS = 500


def _counter(value: Any) -> Optional[int]:
    """Accept a limit the same way it is emitted: via `coerce_int`."""
    if value is None:
        return None
    n = coerce_int(value)
    if n is None:
        raise ValueError("must be an integer")
    n = int(n)
    if n < -1 or n > _MAX_COUNTER:
        raise ValueError("out of range")
    return n


class AdminUserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: Optional[str] = None
    subscription_tier: Optional[str] = Field(default=None, alias="subscriptionTier")
    projects_limit: Optional[Any] = Field(default=None, alias="projectsLimit")
    generations_limit: Optional[Any] = Field(default=None, alias="generationsLimit")

    @field_validator("role")
    @classmethod
    def _role(cls, v):
        if v is not None and v not in ALLOWED_ROLES:
            raise ValueError("unknown role")
        return v

    @field_validator("subscription_tier")
    @classmethod
    def _tier(cls, v):
        if v is not None and v not in ALLOWED_TIERS:
            raise ValueError("unknown tier")
        return v

    @field_validator("projects_limit", "generations_limit", mode="before")
    @classmethod
    def _limits(cls, v):
        return _counter(v)

    def changes(self) -> dict[str, Any]:
        """Only fields the caller actually sent; an explicit null clears a limit."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class BulkUpdatePayload(BaseModel):
    user_ids: list[str] = Field(..., alias="userIds", min_length=1, max_length=MAX_BULK_IDS)
    updates: AdminUserUpdate


class RevokeSessionsPayload(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)


@admin_router.get("/api/admin/check")
@boundary("check admin status")
async def admin_check(request: Request):
    """Report whether the caller is an admin. Always 200."""
    identity = current_identity(request)
    return private_json({"isAdmin": bool(identity is not None and identity.is_admin)})


@admin_router.get("/api/admin/users")
@boundary("fetch users")
async def list_users(request: Request, limit: Optional[int] = None, offset: Optional[int] = None):
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    lim, off = parse_paging(limit, offset)
    store = wiring.identity_store()
    users = await wiring.run_io(store.list, limit=lim, offset=off)
    total = await wiring.run_io(store.count)
    return Ok({"users": [shape_identity(u) for u in users], "total": coerce_int(total), "limit": lim, "offset": off})


@admin_router.get("/api/admin/users/{user_id}")
@boundary("fetch user")
async def get_user(request: Request, user_id: str):
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    user = await wiring.run_io(wiring.identity_store().get, user_id)
    if user is None:
        return Err(ApiError.not_found("User"))
    return Ok({"user": shape_identity(user)})


@admin_router.patch("/api/admin/users/{user_id}")
@boundary("update user")
async def update_user(request: Request, user_id: str):
    """Update tier, limits or role of one identity.

    Behavior:
        - 200 `{user}` with the stored values
        - 400 on unknown role/tier or a non-integer limit
        - 404 when the identity does not exist
    """
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    admin = gate.value
    body = await parse_body(request, AdminUserUpdate)
    if isinstance(body, Err):
        return body
    changes = body.value.changes()
    if not changes:
        return Err(ApiError.bad_input("No updates provided"))
    if admin.id == user_id and changes.get("role", ROLE_ADMIN) != ROLE_ADMIN:
        return Err(ApiError.bad_input("Admins cannot remove their own admin role"))
    user = await wiring.run_io(wiring.identity_store().update_admin_fields, user_id, changes)
    if user is None:
        return Err(ApiError.not_found("User"))
    audit.info("user_update admin=%s target=%s fields=%s", admin.id, user_id, ",".join(sorted(changes)))
    return Ok({"user": shape_identity(user)})


@admin_router.delete("/api/admin/users/{user_id}")
@boundary("delete user")
async def delete_user(request: Request, user_id: str):
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    admin = gate.value
    if admin.id == user_id:
        return Err(ApiError.bad_input("Admins cannot delete themselves"))
    removed = await wiring.run_io(wiring.identity_store().delete, user_id)
    if removed is None:
        return Err(ApiError.not_found("User"))
    revoked = await wiring.run_io(wiring.session_store().delete_for_sub, user_id)
    audit.info("user_delete admin=%s target=%s sessions_revoked=%d", admin.id, user_id, revoked)
    return Ok({"success": True})


@admin_router.post("/api/admin/users/bulk-update")
@boundary("update users")
async def bulk_update_users(request: Request):
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    admin = gate.value
    body = await parse_body(request, BulkUpdatePayload)
    if isinstance(body, Err):
        return body
    changes = body.value.updates.changes()
    if not changes:
        return Err(ApiError.bad_input("No updates provided"))
    ids = [i for i in body.value.user_ids if i]
    if admin.id in ids and changes.get("role", ROLE_ADMIN) != ROLE_ADMIN:
        return Err(ApiError.bad_input("Admins cannot remove their own admin role"))
    updated = await wiring.run_io(wiring.identity_store().bulk_update_admin_fields, ids, changes)
    audit.info("user_bulk_update admin=%s targets=%d updated=%d fields=%s", admin.id, len(ids), updated, ",".join(sorted(changes)))
    return Ok({"success": True, "updated": updated})


@admin_router.post("/api/admin/sessions/revoke")
@boundary("revoke sessions")
async def revoke_sessions(request: Request):
    """Delete every server-side session of one identity.

    Bearer tokens stay valid until expiry, but the identity they name is
    re-read on every request, so a deleted identity is locked out immediately.
    """
    gate = require(request, USER_ADMIN)
    if isinstance(gate, Err):
        return gate
    admin = gate.value
    body = await parse_body(request, RevokeSessionsPayload)
    if isinstance(body, Err):
        return body
    revoked = await wiring.run_io(wiring.session_store().delete_for_sub, body.value.user_id)
    audit.info("sessions_revoke admin=%s target=%s revoked=%d", admin.id, body.value.user_id, revoked)
    return Ok({"success": True, "revokedSessions": revoked})
