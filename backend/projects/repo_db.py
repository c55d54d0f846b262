"""
Postgres-backed repository for projects, environment variables and submissions.

Security:
- Ownership is enforced inside each SQL statement (`owner_id = %s` or a join on
  the owning project). A row owned by someone else is indistinguishable from a
  missing row.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns the dataclasses from `models` so the web adapter never sees rows.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import os

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Json

from .models import DuplicateEnvVar, EnvironmentVariable, FormSubmission, Project

_PROJECT_COLUMNS_SQL = """
    p.id::text,
    p.owner_id::text,
    p.name,
    p.description,
    p.status,
    p.page_views,
    p.created_at,
    p.updated_at
"""

_ENV_VAR_COLUMNS_SQL = """
    v.id::text,
    v.project_id::text,
    v.key,
    v.value,
    v.description,
    v.environment,
    v.created_at,
    v.updated_at
"""

_SUBMISSION_COLUMNS_SQL = """
    s.id::text,
    s.project_id::text,
    s.owner_id::text,
    s.form_type,
    s.payload,
    s.read,
    s.created_at
"""


def _project_from_row(row: Sequence) -> Project:
    return Project(
        id=row[0],
        owner_id=row[1],
        name=row[2],
        description=row[3],
        status=row[4],
        page_views=row[5] if row[5] is not None else 0,
        created_at=row[6],
        updated_at=row[7],
    )


def _env_var_from_row(row: Sequence) -> EnvironmentVariable:
    return EnvironmentVariable(
        id=row[0],
        project_id=row[1],
        key=row[2],
        value=row[3],
        description=row[4],
        environment=row[5],
        created_at=row[6],
        updated_at=row[7],
    )


def _submission_from_row(row: Sequence) -> FormSubmission:
    return FormSubmission(
        id=row[0],
        project_id=row[1],
        owner_id=row[2],
        form_type=row[3],
        payload=dict(row[4] or {}),
        read=bool(row[5]),
        created_at=row[6],
    )


def _uuid_ok(*values: str) -> bool:
    try:
        for value in values:
            UUID(str(value))
        return True
    except (ValueError, TypeError, AttributeError):
        return False


_PROJECT_FIELDS = ("name", "description", "status")
_ENV_VAR_FIELDS = ("value", "description")


class DBProjectRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("Database DSN unavailable for DBProjectRepo")

    def ping(self) -> None:
        with psycopg.connect(self._dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("select 1")
                cur.fetchone()

    # --- Projects -------------------------------------------------------------
    def list_projects_for_owner(self, owner_id: str, *, limit: int, offset: int) -> List[Project]:
        if not _uuid_ok(owner_id):
            return []
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_PROJECT_COLUMNS_SQL} from public.projects p "
                    "where p.owner_id = %s order by p.updated_at desc, p.id desc limit %s offset %s",
                    (owner_id, int(limit), int(offset)),
                )
                rows = cur.fetchall() or []
        return [_project_from_row(r) for r in rows]

    def create_project(self, owner_id: str, *, name: str, description: str | None) -> Project:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into public.projects as p (owner_id, name, description) values (%s, %s, %s) "
                    f"returning {_PROJECT_COLUMNS_SQL}",
                    (owner_id, name, description),
                )
                row = cur.fetchone()
        return _project_from_row(row)

    def get_project(self, project_id: str) -> Optional[Project]:
        if not _uuid_ok(project_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select {_PROJECT_COLUMNS_SQL} from public.projects p where p.id = %s", (project_id,))
                row = cur.fetchone()
        return _project_from_row(row) if row else None

    def get_project_owned(self, project_id: str, owner_id: str) -> Optional[Project]:
        if not _uuid_ok(project_id, owner_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_PROJECT_COLUMNS_SQL} from public.projects p where p.id = %s and p.owner_id = %s",
                    (project_id, owner_id),
                )
                row = cur.fetchone()
        return _project_from_row(row) if row else None

    def update_project_owned(self, project_id: str, owner_id: str, changes: Dict[str, Any]) -> Optional[Project]:
        unknown = set(changes) - set(_PROJECT_FIELDS)
        if unknown:
            raise ValueError(f"unsupported_field:{sorted(unknown)[0]}")
        if not _uuid_ok(project_id, owner_id):
            return None
        sets = [f"{k} = %s" for k in changes] + ["updated_at = now()"]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update public.projects as p set {', '.join(sets)} where p.id = %s and p.owner_id = %s "
                    f"returning {_PROJECT_COLUMNS_SQL}",
                    (*changes.values(), project_id, owner_id),
                )
                row = cur.fetchone()
        return _project_from_row(row) if row else None

    def delete_project_owned(self, project_id: str, owner_id: str) -> bool:
        if not _uuid_ok(project_id, owner_id):
            return False
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                # env vars and submissions cascade via FK
                cur.execute(
                    "delete from public.projects where id = %s and owner_id = %s",
                    (project_id, owner_id),
                )
                return bool(cur.rowcount)

    # --- Environment variables ------------------------------------------------
    def list_env_vars_owned(self, project_id: str, owner_id: str) -> Optional[List[EnvironmentVariable]]:
        if not _uuid_ok(project_id, owner_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                # Left join keeps the owned-but-empty case distinct from not-owned.
                cur.execute(
                    f"select p.id::text, {_ENV_VAR_COLUMNS_SQL} from public.projects p "
                    "left join public.environment_variables v on v.project_id = p.id "
                    "where p.id = %s and p.owner_id = %s order by v.key, v.environment",
                    (project_id, owner_id),
                )
                rows = cur.fetchall() or []
        if not rows:
            return None
        return [_env_var_from_row(r[1:]) for r in rows if r[1] is not None]

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
        if not _uuid_ok(project_id, owner_id):
            return None
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "insert into public.environment_variables as v (project_id, key, value, description, environment) "
                        "select p.id, %s, %s, %s, %s from public.projects p where p.id = %s and p.owner_id = %s "
                        f"returning {_ENV_VAR_COLUMNS_SQL}",
                        (key, value, description, environment, project_id, owner_id),
                    )
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateEnvVar(key, environment) from exc
        return _env_var_from_row(row) if row else None

    def update_env_var_owned(
        self, project_id: str, owner_id: str, variable_id: str, changes: Dict[str, Any]
    ) -> Optional[EnvironmentVariable]:
        unknown = set(changes) - set(_ENV_VAR_FIELDS)
        if unknown:
            raise ValueError(f"unsupported_field:{sorted(unknown)[0]}")
        if not _uuid_ok(project_id, owner_id, variable_id):
            return None
        sets = [f"{k} = %s" for k in changes] + ["updated_at = now()"]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update public.environment_variables as v set {', '.join(sets)} "
                    "from public.projects p "
                    "where v.id = %s and v.project_id = p.id and p.id = %s and p.owner_id = %s "
                    f"returning {_ENV_VAR_COLUMNS_SQL}",
                    (*changes.values(), variable_id, project_id, owner_id),
                )
                row = cur.fetchone()
        return _env_var_from_row(row) if row else None

    def delete_env_var_owned(self, project_id: str, owner_id: str, variable_id: str) -> bool:
        if not _uuid_ok(project_id, owner_id, variable_id):
            return False
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "delete from public.environment_variables v using public.projects p "
                    "where v.id = %s and v.project_id = p.id and p.id = %s and p.owner_id = %s",
                    (variable_id, project_id, owner_id),
                )
                return bool(cur.rowcount)

    # --- Form submissions -----------------------------------------------------
    def create_submission(self, project_id: str, *, form_type: str, payload: Dict[str, Any]) -> Optional[FormSubmission]:
        if not _uuid_ok(project_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "insert into public.form_submissions as s (project_id, owner_id, form_type, payload) "
                    "select p.id, p.owner_id, %s, %s from public.projects p where p.id = %s "
                    f"returning {_SUBMISSION_COLUMNS_SQL}",
                    (form_type, Json(payload), project_id),
                )
                row = cur.fetchone()
        return _submission_from_row(row) if row else None

    def list_submissions_owned(
        self, project_id: str, owner_id: str, *, limit: int, offset: int
    ) -> Optional[List[FormSubmission]]:
        if not _uuid_ok(project_id, owner_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select exists(select 1 from public.projects where id = %s and owner_id = %s)",
                    (project_id, owner_id),
                )
                owned = cur.fetchone()
                if not owned or not owned[0]:
                    return None
                cur.execute(
                    f"select {_SUBMISSION_COLUMNS_SQL} from public.form_submissions s "
                    "where s.project_id = %s order by s.created_at desc, s.id desc limit %s offset %s",
                    (project_id, int(limit), int(offset)),
                )
                rows = cur.fetchall() or []
        return [_submission_from_row(r) for r in rows]

    def count_submissions_owned(self, project_id: str, owner_id: str) -> Optional[int]:
        if not _uuid_ok(project_id, owner_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select count(s.id) from public.projects p "
                    "left join public.form_submissions s on s.project_id = p.id "
                    "where p.id = %s and p.owner_id = %s group by p.id",
                    (project_id, owner_id),
                )
                row = cur.fetchone()
        return int(row[0]) if row else None
