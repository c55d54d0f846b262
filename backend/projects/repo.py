"""
In-memory repository for projects, environment variables and submissions.

Why:
    Tests and offline development run without Postgres. The method set mirrors
    `DBProjectRepo` one-to-one so `backend.web.wiring` can swap them freely.

Security:
    Every `*_owned` method filters on the owner id and returns None/False for
    both "absent" and "owned by someone else". Callers cannot tell the two
    apart, which keeps resource existence private across tenants.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import threading

from .models import DuplicateEnvVar, EnvironmentVariable, FormSubmission, Project

_PROJECT_FIELDS = frozenset({"name", "description", "status"})
_ENV_VAR_FIELDS = frozenset({"value", "description"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectRepo:
    def __init__(self) -> None:
        self.projects: Dict[str, Project] = {}
        self.env_vars: Dict[str, EnvironmentVariable] = {}
        self.submissions: Dict[str, FormSubmission] = {}
        self._lock = threading.Lock()

    def ping(self) -> None:
        return None

    # --- Projects -------------------------------------------------------------
    def _owned(self, project_id: str, owner_id: str) -> Optional[Project]:
        project = self.projects.get(project_id)
        if project and project.owner_id == owner_id:
            return project
        return None

    def list_projects_for_owner(self, owner_id: str, *, limit: int, offset: int) -> List[Project]:
        with self._lock:
            items = [p for p in self.projects.values() if p.owner_id == owner_id]
        items.sort(key=lambda p: (p.updated_at, p.id), reverse=True)
        return [p.copy() for p in items[offset: offset + limit]]

    def create_project(self, owner_id: str, *, name: str, description: str | None) -> Project:
        project = Project(id=str(uuid4()), owner_id=owner_id, name=name, description=description)
        with self._lock:
            self.projects[project.id] = project
        return project.copy()

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self.projects.get(project_id)
            return project.copy() if project else None

    def get_project_owned(self, project_id: str, owner_id: str) -> Optional[Project]:
        with self._lock:
            project = self._owned(project_id, owner_id)
            return project.copy() if project else None

    def update_project_owned(self, project_id: str, owner_id: str, changes: Dict[str, Any]) -> Optional[Project]:
        unknown = set(changes) - _PROJECT_FIELDS
        if unknown:
            raise ValueError(f"unsupported_field:{sorted(unknown)[0]}")
        with self._lock:
            project = self._owned(project_id, owner_id)
            if not project:
                return None
            for key, value in changes.items():
                setattr(project, key, value)
            project.updated_at = _now()
            return project.copy()

    def delete_project_owned(self, project_id: str, owner_id: str) -> bool:
        with self._lock:
            if not self._owned(project_id, owner_id):
                return False
            self.projects.pop(project_id, None)
            for vid in [v.id for v in self.env_vars.values() if v.project_id == project_id]:
                self.env_vars.pop(vid, None)
            for sid in [s.id for s in self.submissions.values() if s.project_id == project_id]:
                self.submissions.pop(sid, None)
            return True

    # --- Environment variables ------------------------------------------------
    def list_env_vars_owned(self, project_id: str, owner_id: str) -> Optional[List[EnvironmentVariable]]:
        with self._lock:
            if not self._owned(project_id, owner_id):
                return None
            items = [v.copy() for v in self.env_vars.values() if v.project_id == project_id]
        items.sort(key=lambda v: (v.key, v.environment))
        return items

    def create_env_var_owned(
        self,
        project_id: str,
        owner_id: str,
        *,
        key: str,
        value: str,
        description: str | None,
        environment: str,
    ) -> Optional[EnvironmentVariable]:
        with self._lock:
            if not self._owned(project_id, owner_id):
                return None
            for existing in self.env_vars.values():
                if existing.project_id == project_id and existing.key == key and existing.environment == environment:
                    raise DuplicateEnvVar(key, environment)
            var = EnvironmentVariable(
                id=str(uuid4()),
                project_id=project_id,
                key=key,
                value=value,
                description=description,
                environment=environment,
            )
            self.env_vars[var.id] = var
            return var.copy()

    def _owned_var(self, project_id: str, owner_id: str, variable_id: str) -> Optional[EnvironmentVariable]:
        if not self._owned(project_id, owner_id):
            return None
        var = self.env_vars.get(variable_id)
        if var and var.project_id == project_id:
            return var
        return None

    def update_env_var_owned(
        self, project_id: str, owner_id: str, variable_id: str, changes: Dict[str, Any]
    ) -> Optional[EnvironmentVariable]:
        unknown = set(changes) - _ENV_VAR_FIELDS
        if unknown:
            raise ValueError(f"unsupported_field:{sorted(unknown)[0]}")
        with self._lock:
            var = self._owned_var(project_id, owner_id, variable_id)
            if not var:
                return None
            for key, value in changes.items():
                setattr(var, key, value)
            var.updated_at = _now()
            return var.copy()

    def delete_env_var_owned(self, project_id: str, owner_id: str, variable_id: str) -> bool:
        with self._lock:
            if not self._owned_var(project_id, owner_id, variable_id):
                return False
            self.env_vars.pop(variable_id, None)
            return True

    # --- Form submissions -----------------------------------------------------
    def create_submission(self, project_id: str, *, form_type: str, payload: Dict[str, Any]) -> Optional[FormSubmission]:
        with self._lock:
            project = self.projects.get(project_id)
            if not project:
                return None
            sub = FormSubmission(
                id=str(uuid4()),
                project_id=project_id,
                owner_id=project.owner_id,
                form_type=form_type,
                payload=dict(payload),
            )
            self.submissions[sub.id] = sub
            return sub.copy()

    def list_submissions_owned(
        self, project_id: str, owner_id: str, *, limit: int, offset: int
    ) -> Optional[List[FormSubmission]]:
        with self._lock:
            if not self._owned(project_id, owner_id):
                return None
            items = [s.copy() for s in self.submissions.values() if s.project_id == project_id]
        items.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return items[offset: offset + limit]

    def count_submissions_owned(self, project_id: str, owner_id: str) -> Optional[int]:
        with self._lock:
            if not self._owned(project_id, owner_id):
                return None
            return sum(1 for s in self.submissions.values() if s.project_id == project_id)
