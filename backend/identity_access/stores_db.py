"""
Database-backed stores for production use (Postgres).

Why: In-memory sessions and identities are not durable and do not scale across
instances. These stores persist both in Postgres while keeping the session
cookie opaque and PII-minimal (the session row holds only the identity id).

Security:
- Table identifiers are validated once at construction; values always travel
  as bound parameters.
- Only the opaque `session_id` is set in the cookie; all user context stays server-side.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Selected via `SESSIONS_BACKEND=db` / `DATA_BACKEND=db`. Tests use the
  in-memory stores or a fake psycopg module.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple
from uuid import UUID
import os
import re
import time

import psycopg
from psycopg import errors as pg_errors

from .domain import ADMIN_MUTABLE_FIELDS, ROLE_ADMIN, ROLE_USER, SELF_MUTABLE_FIELDS, Identity
from .stores import SessionRecord

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _now() -> int:
    return int(time.time())


def _resolve_dsn(dsn: str | None) -> str:
    value = dsn or os.getenv("DATABASE_URL", "")
    if not value:
        raise RuntimeError("No database DSN provided (DATABASE_URL)")
    return value


def _checked_table(table: str) -> str:
    if not _TABLE_RE.match(table or ""):
        raise ValueError("Invalid table name")
    return table


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
        return True
    except (ValueError, TypeError, AttributeError):
        return False


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Defaults to DATABASE_URL.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        self._dsn = _resolve_dsn(dsn)
        self._table = _checked_table(table)

    def create(self, *, sub: str, ttl_seconds: int = 3600) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (session_id, sub, expires_at) "
                    f"values (gen_random_uuid()::text, %s, to_timestamp(%s)) returning session_id",
                    (sub, expires_at),
                )
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(session_id=sid, sub=sub, expires_at=expires_at)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select session_id, sub, extract(epoch from expires_at)::bigint "
                    f"from {self._table} where session_id = %s and expires_at > now()",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return SessionRecord(
            session_id=row[0],
            sub=row[1],
            expires_at=int(row[2]) if row[2] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from {self._table} where session_id = %s", (session_id,))

    def delete_for_sub(self, sub: str) -> int:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from {self._table} where sub = %s", (sub,))
                return int(cur.rowcount or 0)


# Identity field -> column. Order matters: it defines the select list.
_IDENTITY_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("id", "id::text"),
    ("email", "email"),
    ("name", "name"),
    ("role", "role"),
    ("subscription_tier", "subscription_tier"),
    ("subscription_status", "subscription_status"),
    ("projects_this_month", "projects_this_month"),
    ("generations_used", "generations_used"),
    ("projects_limit", "projects_limit"),
    ("generations_limit", "generations_limit"),
    ("theme", "theme"),
    ("notifications", "notifications"),
    ("auto_save", "auto_save"),
    ("billing_customer_id", "billing_customer_id"),
    ("created_at", "created_at"),
    ("updated_at", "updated_at"),
)
_IDENTITY_SELECT = ", ".join(col for _, col in _IDENTITY_COLUMNS)
_COUNTER_COLUMNS = {"projects": "projects_this_month", "generations": "generations_used"}


def _identity_from_row(row: Sequence) -> Identity:
    data = {name: row[idx] for idx, (name, _) in enumerate(_IDENTITY_COLUMNS)}
    for key in ("projects_this_month", "generations_used"):
        data[key] = int(data[key] or 0)
    return Identity(**data)


class DBIdentityStore:
    """Postgres-backed identity store (table `public.users`)."""

    def __init__(self, dsn: str | None = None, table: str = "public.users") -> None:
        self._dsn = _resolve_dsn(dsn)
        self._table = _checked_table(table)

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Identity]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        return _identity_from_row(row) if row else None

    def create(self, *, email: str, name: str | None = None, role: str = ROLE_USER, **fields) -> Identity:
        email_n = (email or "").strip().lower()
        if not email_n:
            raise ValueError("invalid_email")
        try:
            ident = self._fetch_one(
                f"insert into {self._table} (email, name, role) values (%s, %s, %s) returning {_IDENTITY_SELECT}",
                (email_n, name, role),
            )
        except pg_errors.UniqueViolation as exc:
            raise ValueError("email_taken") from exc
        if ident and fields:
            # Seed extra columns (tests/bootstrap); same column whitelist as admin updates.
            ident = self._update(ident.id, fields, set(ADMIN_MUTABLE_FIELDS) | {"subscription_status", "billing_customer_id"}) or ident
        return ident  # type: ignore[return-value]

    def get(self, identity_id: str) -> Optional[Identity]:
        if not _is_uuid(identity_id):
            return None
        return self._fetch_one(f"select {_IDENTITY_SELECT} from {self._table} where id = %s", (identity_id,))

    def get_by_email(self, email: str) -> Optional[Identity]:
        return self._fetch_one(
            f"select {_IDENTITY_SELECT} from {self._table} where lower(email) = %s",
            ((email or "").strip().lower(),),
        )

    def list(self, *, limit: int, offset: int) -> list[Identity]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_IDENTITY_SELECT} from {self._table} order by created_at, id limit %s offset %s",
                    (int(limit), int(offset)),
                )
                rows = cur.fetchall() or []
        return [_identity_from_row(r) for r in rows]

    def count(self) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select count(*) from {self._table}")
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def _set_clause(self, changes: dict, allowed: Iterable[str]) -> tuple[str, list]:
        allowed = set(allowed)
        parts: list[str] = []
        params: list = []
        for key, value in changes.items():
            if key not in allowed:
                raise ValueError(f"unsupported_field:{key}")
            # Column names equal field names for every mutable field.
            parts.append(f"{key} = %s")
            params.append(value)
        parts.append("updated_at = now()")
        return ", ".join(parts), params

    def _update(self, identity_id: str, changes: dict, allowed: Iterable[str]) -> Optional[Identity]:
        if not _is_uuid(identity_id):
            return None
        clause, params = self._set_clause(changes, allowed)
        return self._fetch_one(
            f"update {self._table} set {clause} where id = %s returning {_IDENTITY_SELECT}",
            (*params, identity_id),
        )

    def update_admin_fields(self, identity_id: str, changes: dict) -> Optional[Identity]:
        return self._update(identity_id, changes, ADMIN_MUTABLE_FIELDS)

    def update_self_fields(self, identity_id: str, changes: dict) -> Optional[Identity]:
        if changes.get("email") is not None:
            changes = {**changes, "email": changes["email"].strip().lower()}
        try:
            return self._update(identity_id, changes, SELF_MUTABLE_FIELDS)
        except pg_errors.UniqueViolation as exc:
            raise ValueError("email_taken") from exc

    def bulk_update_admin_fields(self, identity_ids: list[str], changes: dict) -> int:
        ids = [i for i in dict.fromkeys(identity_ids) if _is_uuid(i)]
        if not ids:
            return 0
        clause, params = self._set_clause(changes, ADMIN_MUTABLE_FIELDS)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update {self._table} set {clause} where id = any(%s::uuid[])",
                    (*params, ids),
                )
                return int(cur.rowcount or 0)

    def delete(self, identity_id: str) -> Optional[Identity]:
        if not _is_uuid(identity_id):
            return None
        return self._fetch_one(
            f"delete from {self._table} where id = %s returning {_IDENTITY_SELECT}",
            (identity_id,),
        )

    def increment_usage(self, identity_id: str, kind: str) -> Optional[int]:
        column = _COUNTER_COLUMNS.get(kind)
        if column is None:
            raise ValueError("invalid_usage_kind")
        if not _is_uuid(identity_id):
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update {self._table} set {column} = {column} + 1 where id = %s returning {column}",
                    (identity_id,),
                )
                row = cur.fetchone()
        return int(row[0]) if row else None

    def promote_admins(self, emails: Iterable[str]) -> int:
        wanted = sorted({e.strip().lower() for e in emails if e and e.strip()})
        if not wanted:
            return 0
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update {self._table} set role = %s, updated_at = now() "
                    f"where lower(email) = any(%s) and role <> %s",
                    (ROLE_ADMIN, wanted, ROLE_ADMIN),
                )
                return int(cur.rowcount or 0)
