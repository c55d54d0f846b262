"""Owner-scoped records of the projects context."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

ENVIRONMENTS = frozenset({"all", "development", "preview", "production"})
PROJECT_STATUSES = frozenset({"draft", "published", "archived"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Project:
    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    status: str = "draft"
    page_views: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def copy(self, **changes) -> "Project":
        return replace(self, **changes)


@dataclass
class EnvironmentVariable:
    id: str
    project_id: str
    key: str
    value: str  # ciphertext; decrypted only for the owner's list view
    description: Optional[str] = None
    environment: str = "all"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def copy(self, **changes) -> "EnvironmentVariable":
        return replace(self, **changes)


@dataclass
class FormSubmission:
    id: str
    project_id: str
    owner_id: str
    form_type: str
    payload: dict[str, Any]
    read: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def copy(self, **changes) -> "FormSubmission":
        return replace(self, **changes)


class DuplicateEnvVar(Exception):
    """A variable with the same key already exists for that environment."""

    def __init__(self, key: str, environment: str):
        super().__init__(f"{key}:{environment}")
        self.key = key
        self.environment = environment
