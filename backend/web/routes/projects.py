"""
Projects API routes: owner-scoped CRUD.

Why:
    Projects are the unit of work of a BuildFlow account. Each route checks the
    session, then performs exactly one owner-scoped repository call.

Permissions:
    - Owner for every route; admins may additionally read (`GET`) any project.
    - A project that exists but belongs to someone else answers 404, the same
      as a project that does not exist.

Usage:
    Creating a project counts against the monthly project allowance of the
    caller's tier (or their per-identity override). At the limit -> 429.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from backend.identity_access.domain import project_limit_for
from backend.identity_access.policy import AUTHENTICATED, OwnsResource, authorize
from backend.projects.models import PROJECT_STATUSES
from backend.projects.validation import MAX_DESCRIPTION_LEN, MAX_PROJECT_NAME_LEN
from backend.results import ApiError, Err, Ok

from .. import wiring
from ..guards import enforce_rate_limit, parse_body, parse_paging, require
from ..responses import boundary
from ..shaping import coerce_int, shape_project

projects_router = APIRouter(tags=["Projects"])
logger = logging.getLogger("buildflow.web.projects")


def _strip_optional(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_PROJECT_NAME_LEN)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LEN)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("description")
    @classmethod
    def _desc(cls, v):
        return _strip_optional(v)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=MAX_PROJECT_NAME_LEN)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LEN)
    status: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("status")
    @classmethod
    def _status(cls, v):
        if v is not None and v not in PROJECT_STATUSES:
            raise ValueError("unknown status")
        return v

    def changes(self) -> dict:
        out = {}
        for key in self.model_fields_set:
            value = getattr(self, key)
            if key == "description":
                out[key] = _strip_optional(value)
            elif value is not None:
                out[key] = value
        return out


@projects_router.get("/api/projects")
@boundary("fetch projects")
async def list_projects(request: Request, limit: Optional[int] = None, offset: Optional[int] = None):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    lim, off = parse_paging(limit, offset)
    items = await wiring.run_io(wiring.project_repo().list_projects_for_owner, gate.value.id, limit=lim, offset=off)
    return Ok({"projects": [shape_project(p) for p in items], "limit": lim, "offset": off})


@projects_router.post("/api/projects")
@boundary("create project")
async def create_project(request: Request):
    """Create a project owned by the caller.

    Behavior:
        - 201 `{project}` on success
        - 400 when `name` is missing or blank
        - 429 when the monthly project limit is reached
    """
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, ProjectCreate)
    if isinstance(body, Err):
        return body
    limit = project_limit_for(identity)
    used = int(identity.projects_this_month or 0)
    if limit != -1 and used >= limit:
        return Err(
            ApiError.rate_limited(
                "Monthly project limit reached. Upgrade your plan to create more projects.",
                limit=coerce_int(limit),
                used=coerce_int(used),
                tier=identity.subscription_tier,
            )
        )
    project = await wiring.run_io(
        wiring.project_repo().create_project, identity.id, name=body.value.name, description=body.value.description
    )
    await wiring.run_io(wiring.identity_store().increment_usage, identity.id, "projects")
    logger.info("Project created owner=%s project=%s", identity.id[-6:], project.id[-6:])
    return Ok({"project": shape_project(project)}, status_code=201)


@projects_router.get("/api/projects/{project_id}")
@boundary("fetch project")
async def get_project(request: Request, project_id: str):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    project = await wiring.run_io(wiring.project_repo().get_project, project_id)
    owner = project.owner_id if project else None
    access = authorize(gate.value, OwnsResource(owner, "Project", allow_admin=True))
    if isinstance(access, Err):
        return access
    if project is None:
        return Err(ApiError.not_found("Project"))
    return Ok({"project": shape_project(project)})


@projects_router.patch("/api/projects/{project_id}")
@boundary("update project")
async def update_project(request: Request, project_id: str):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, ProjectUpdate)
    if isinstance(body, Err):
        return body
    changes = body.value.changes()
    if not changes:
        return Err(ApiError.bad_input("No updates provided"))
    project = await wiring.run_io(wiring.project_repo().update_project_owned, project_id, identity.id, changes)
    if project is None:
        return Err(ApiError.not_found("Project"))
    return Ok({"project": shape_project(project)})


@projects_router.delete("/api/projects/{project_id}")
@boundary("delete project")
async def delete_project(request: Request, project_id: str):
    """Delete an owned project with its variables and submissions."""
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    deleted = await wiring.run_io(wiring.project_repo().delete_project_owned, project_id, identity.id)
    if not deleted:
        return Err(ApiError.not_found("Project"))
    return Ok({"success": True})
