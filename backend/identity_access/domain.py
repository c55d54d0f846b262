"""
Identity domain constants and the Identity record.

Why:
- Centralize roles, tiers and usage limits to avoid drift between the web
  layer, the stores and the admin tooling.
- The Identity is the only shape the web layer sees of an authenticated actor;
  stores map their rows into it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ROLE_USER = "user"
ROLE_ADMIN = "admin"
ALLOWED_ROLES = frozenset({ROLE_USER, ROLE_ADMIN})

TIER_ORDER = ("free", "pro", "business", "enterprise")
ALLOWED_TIERS = frozenset(TIER_ORDER)

ALLOWED_THEMES = frozenset({"light", "dark", "system"})

# -1 means unlimited.
TIER_LIMITS: dict[str, dict[str, int]] = {
    "free": {
        "projectsPerMonth": 3,
        "generationsPerMonth": 50,
        "maxPages": 5,
        "customDomains": 0,
        "databases": 0,
        "teamMembers": 1,
    },
    "pro": {
        "projectsPerMonth": 20,
        "generationsPerMonth": 500,
        "maxPages": 50,
        "customDomains": 5,
        "databases": 3,
        "teamMembers": 3,
    },
    "business": {
        "projectsPerMonth": 100,
        "generationsPerMonth": 2000,
        "maxPages": 200,
        "customDomains": 20,
        "databases": 10,
        "teamMembers": 10,
    },
    "enterprise": {
        "projectsPerMonth": -1,
        "generationsPerMonth": -1,
        "maxPages": -1,
        "customDomains": -1,
        "databases": -1,
        "teamMembers": -1,
    },
}

# Fields an admin may change on another identity.
ADMIN_MUTABLE_FIELDS = frozenset({"role", "subscription_tier", "projects_limit", "generations_limit"})
# Fields an identity may change on itself.
SELF_MUTABLE_FIELDS = frozenset({"name", "email", "theme", "notifications", "auto_save"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Identity:
    id: str
    email: str
    name: Optional[str] = None
    role: str = ROLE_USER
    subscription_tier: str = "free"
    subscription_status: str = "active"
    projects_this_month: int = 0
    generations_used: int = 0
    projects_limit: Optional[int] = None
    generations_limit: Optional[int] = None
    theme: str = "system"
    notifications: bool = True
    auto_save: bool = True
    billing_customer_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def copy(self, **changes) -> "Identity":
        return replace(self, **changes)


def tier_limits(tier: str | None) -> dict[str, int]:
    """Return the limits for a tier; unknown tiers get the free limits."""
    return dict(TIER_LIMITS.get((tier or "free").lower(), TIER_LIMITS["free"]))


def project_limit_for(identity: Identity) -> int:
    """Effective monthly project limit (-1 = unlimited).

    A per-identity override wins over the tier default.
    """
    if identity.projects_limit is not None:
        return int(identity.projects_limit)
    return tier_limits(identity.subscription_tier)["projectsPerMonth"]


def parse_admin_emails(raw: str | None) -> list[str]:
    """Split the ADMIN_EMAILS allow-list into normalized addresses."""
    out: list[str] = []
    for part in (raw or "").split(","):
        email = part.strip().lower()
        if email and email not in out:
            out.append(email)
    return out


__all__ = [
    "ADMIN_MUTABLE_FIELDS",
    "ALLOWED_ROLES",
    "ALLOWED_THEMES",
    "ALLOWED_TIERS",
    "Identity",
    "ROLE_ADMIN",
    "ROLE_USER",
    "SELF_MUTABLE_FIELDS",
    "TIER_LIMITS",
    "TIER_ORDER",
    "parse_admin_emails",
    "project_limit_for",
    "tier_limits",
]
