"""
Project environment variables API.

Why:
    Published sites need secrets (API keys, webhook URLs) at build time. Values
    are encrypted at rest with the process cipher and are only ever decrypted
    for the owner's list view.

Behavior:
    - `GET`    -> `{variables: [...]}` with decrypted values, ordered by key.
    - `POST`   -> `{variable}` without the value; duplicate (key, environment)
                  is a 400.
    - `PUT`    -> `{variable}` without the value; body names `variableId`.
    - `DELETE` -> `{success: true}`; `variableId` is a query parameter.

Permissions:
    Project owner only. Another identity's project answers 404.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from backend.identity_access.policy import AUTHENTICATED
from backend.projects.models import ENVIRONMENTS, DuplicateEnvVar
from backend.projects.validation import MAX_DESCRIPTION_LEN, env_value_error, is_valid_env_key
from backend.results import ApiError, Err, Ok

from .. import wiring
from ..guards import enforce_rate_limit, parse_body, require
from ..responses import boundary
from ..shaping import shape_env_var

env_vars_router = APIRouter(tags=["Environment Variables"])
logger = logging.getLogger("buildflow.web.env_vars")
audit = logging.getLogger("buildflow.audit")

INVALID_KEY_MESSAGE = (
    "Invalid key format. Must start with a letter and contain only uppercase letters, numbers, and underscores."
)


class EnvVarCreate(BaseModel):
    key: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LEN)
    environment: str = "all"

    @field_validator("environment")
    @classmethod
    def _environment(cls, v: str) -> str:
        if v not in ENVIRONMENTS:
            raise ValueError("unknown environment")
        return v


class EnvVarUpdate(BaseModel):
    variable_id: str = Field(..., alias="variableId", min_length=1)
    value: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LEN)


@env_vars_router.get("/api/projects/{project_id}/env-vars")
@boundary("fetch environment variables")
async def list_env_vars(request: Request, project_id: str):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    items = await wiring.run_io(wiring.project_repo().list_env_vars_owned, project_id, gate.value.id)
    if items is None:
        return Err(ApiError.not_found("Project"))
    cipher = wiring.cipher()
    return Ok({"variables": [shape_env_var(v, value=cipher.decrypt_or_none(v.value), include_value=True) for v in items]})


@env_vars_router.post("/api/projects/{project_id}/env-vars")
@boundary("create environment variable")
async def create_env_var(request: Request, project_id: str):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, EnvVarCreate)
    if isinstance(body, Err):
        return body
    payload = body.value
    if not is_valid_env_key(payload.key):
        return Err(ApiError.bad_input(INVALID_KEY_MESSAGE))
    problem = env_value_error(payload.value, payload.key)
    if problem:
        return Err(ApiError.bad_input(problem))
    try:
        var = await wiring.run_io(
            wiring.project_repo().create_env_var_owned,
            project_id,
            identity.id,
            key=payload.key,
            value=wiring.cipher().encrypt(payload.value),
            description=payload.description,
            environment=payload.environment,
        )
    except DuplicateEnvVar as exc:
        return Err(ApiError.bad_input(f'Variable "{exc.key}" already exists for {exc.environment}'))
    if var is None:
        return Err(ApiError.not_found("Project"))
    audit.info("env_var_created owner=%s project=%s key=%s environment=%s", identity.id, project_id, var.key, var.environment)
    return Ok({"variable": shape_env_var(var)})


@env_vars_router.put("/api/projects/{project_id}/env-vars")
@boundary("update environment variable")
async def update_env_var(request: Request, project_id: str):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    body = await parse_body(request, EnvVarUpdate)
    if isinstance(body, Err):
        return body
    payload = body.value
    changes: dict = {}
    if payload.value:
        # Keys are immutable after create.
        problem = env_value_error(payload.value)
        if problem:
            return Err(ApiError.bad_input(problem))
        changes["value"] = wiring.cipher().encrypt(payload.value)
    if "description" in payload.model_fields_set:
        changes["description"] = payload.description
    if not changes:
        return Err(ApiError.bad_input("No updates provided"))
    var = await wiring.run_io(
        wiring.project_repo().update_env_var_owned, project_id, identity.id, payload.variable_id, changes
    )
    if var is None:
        return Err(ApiError.not_found("Variable"))
    audit.info("env_var_updated owner=%s project=%s key=%s", identity.id, project_id, var.key)
    return Ok({"variable": shape_env_var(var)})


@env_vars_router.delete("/api/projects/{project_id}/env-vars")
@boundary("delete environment variable")
async def delete_env_var(request: Request, project_id: str, variableId: Optional[str] = None):  # noqa: N803
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    identity = gate.value
    if not variableId:
        return Err(ApiError.required("variableId"))
    limited = await enforce_rate_limit(request, "write", identity.id)
    if limited:
        return limited
    deleted = await wiring.run_io(wiring.project_repo().delete_env_var_owned, project_id, identity.id, variableId)
    if not deleted:
        return Err(ApiError.not_found("Variable"))
    audit.info("env_var_deleted owner=%s project=%s variable=%s", identity.id, project_id, variableId)
    return Ok({"success": True})
