"""
Authorization gate: decide whether an identity holds a capability.

Why:
    Every route asks the same three questions (signed in? admin? owner?). One
    pure function answers them so denials look the same everywhere and happen
    before any data access.

Policy:
    - No identity -> Unauthenticated, for every capability.
    - HasRole(admin) -> the identity's live role tag decides. The role tag comes
      from the identity store at session resolution; the ADMIN_EMAILS allow-list
      only seeds that store (see `seed_admins`) and is never consulted here.
    - OwnsResource -> owner id must match; admins pass only where the route
      opts in. A non-owner gets NotFound, never Forbidden, so resource existence
      does not leak across tenants.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, Optional, Union

from backend.results import ApiError, Err, Ok, Result

from .domain import ROLE_ADMIN, Identity

logger = logging.getLogger("buildflow.identity_access")


@dataclass(frozen=True)
class Authenticated:
    pass


@dataclass(frozen=True)
class HasRole:
    role: str
    denial_message: str = "Forbidden"


@dataclass(frozen=True)
class OwnsResource:
    owner_id: Optional[str]
    resource: str = "Resource"
    allow_admin: bool = False


Capability = Union[Authenticated, HasRole, OwnsResource]

AUTHENTICATED = Authenticated()
ADMIN = HasRole(ROLE_ADMIN)


def authorize(identity: Optional[Identity], capability: Capability) -> Result[Identity]:
    if identity is None:
        return Err(ApiError.unauthenticated())
    if isinstance(capability, Authenticated):
        return Ok(identity)
    if isinstance(capability, HasRole):
        if identity.role == capability.role:
            return Ok(identity)
        return Err(ApiError.forbidden(capability.denial_message))
    if isinstance(capability, OwnsResource):
        if capability.owner_id is not None and capability.owner_id == identity.id:
            return Ok(identity)
        if capability.allow_admin and identity.role == ROLE_ADMIN:
            return Ok(identity)
        return Err(ApiError.not_found(capability.resource))
    raise TypeError(f"unknown capability: {capability!r}")


def seed_admins(store, emails: Iterable[str]) -> int:
    """Promote allow-listed emails to admin in the identity store.

    Runs at startup; the store stays the single source of truth afterwards.
    Demotions are never derived from the allow-list.
    """
    emails = list(emails)
    if not emails:
        return 0
    promoted = store.promote_admins(emails)
    if promoted:
        logger.info("Promoted %d identities from ADMIN_EMAILS seed", promoted)
    return promoted
