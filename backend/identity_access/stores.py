"""
In-memory stores for development: SessionStore and IdentityStore.

Why: Keep sessions opaque to the client and let the web layer run without
Postgres in tests and local work. For production, use the DB-backed stores in
`stores_db` (selected via SESSIONS_BACKEND / DATA_BACKEND).

Security: Cookies carry only an opaque session id. Session data stays server-side.
Both stores guard their dicts with a lock because the web layer calls them from
worker threads.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from uuid import uuid4
import secrets
import threading
import time

from .domain import ADMIN_MUTABLE_FIELDS, ROLE_ADMIN, ROLE_USER, SELF_MUTABLE_FIELDS, Identity


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    expires_at: Optional[int] = None


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, *, sub: str, ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(session_id=sid, sub=sub, expires_at=_now() + ttl_seconds)
        with self._lock:
            self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            rec = self._data.get(session_id)
            if not rec:
                return None
            if rec.expires_at and rec.expires_at < _now():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def delete_for_sub(self, sub: str) -> int:
        """Revoke every session of one identity; returns the number removed."""
        with self._lock:
            doomed = [sid for sid, rec in self._data.items() if rec.sub == sub]
            for sid in doomed:
                self._data.pop(sid, None)
        return len(doomed)


_COUNTER_FIELDS = {"projects": "projects_this_month", "generations": "generations_used"}


class IdentityStore:
    """In-memory identity store mirroring `DBIdentityStore`.

    Methods return copies so callers never mutate stored records by accident.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    def create(self, *, email: str, name: str | None = None, role: str = ROLE_USER, **fields) -> Identity:
        email_n = (email or "").strip().lower()
        if not email_n:
            raise ValueError("invalid_email")
        with self._lock:
            if any(i.email == email_n for i in self._by_id.values()):
                raise ValueError("email_taken")
            ident = Identity(id=str(uuid4()), email=email_n, name=name, role=role, **fields)
            self._by_id[ident.id] = ident
            return ident.copy()

    def get(self, identity_id: str) -> Optional[Identity]:
        with self._lock:
            ident = self._by_id.get(identity_id)
            return ident.copy() if ident else None

    def get_by_email(self, email: str) -> Optional[Identity]:
        email_n = (email or "").strip().lower()
        with self._lock:
            for ident in self._by_id.values():
                if ident.email == email_n:
                    return ident.copy()
        return None

    def list(self, *, limit: int, offset: int) -> list[Identity]:
        with self._lock:
            items = sorted(self._by_id.values(), key=lambda i: (i.created_at, i.id))
            return [i.copy() for i in items[offset: offset + limit]]

    def count(self) -> int:
        with self._lock:
            return len(self._by_id)

    def _apply(self, ident: Identity, changes: dict, allowed: Iterable[str]) -> None:
        allowed = set(allowed)
        for key, value in changes.items():
            if key not in allowed:
                raise ValueError(f"unsupported_field:{key}")
            setattr(ident, key, value)
        ident.updated_at = datetime.now(timezone.utc)

    def update_admin_fields(self, identity_id: str, changes: dict) -> Optional[Identity]:
        with self._lock:
            ident = self._by_id.get(identity_id)
            if not ident:
                return None
            self._apply(ident, changes, ADMIN_MUTABLE_FIELDS)
            return ident.copy()

    def update_self_fields(self, identity_id: str, changes: dict) -> Optional[Identity]:
        with self._lock:
            ident = self._by_id.get(identity_id)
            if not ident:
                return None
            email = changes.get("email")
            if email is not None:
                email = email.strip().lower()
                if any(i.email == email and i.id != identity_id for i in self._by_id.values()):
                    raise ValueError("email_taken")
                changes = {**changes, "email": email}
            self._apply(ident, changes, SELF_MUTABLE_FIELDS)
            return ident.copy()

    def bulk_update_admin_fields(self, identity_ids: list[str], changes: dict) -> int:
        updated = 0
        with self._lock:
            for identity_id in dict.fromkeys(identity_ids):
                ident = self._by_id.get(identity_id)
                if ident:
                    self._apply(ident, changes, ADMIN_MUTABLE_FIELDS)
                    updated += 1
        return updated

    def delete(self, identity_id: str) -> Optional[Identity]:
        with self._lock:
            ident = self._by_id.pop(identity_id, None)
            return ident.copy() if ident else None

    def increment_usage(self, identity_id: str, kind: str) -> Optional[int]:
        """Atomically bump a usage counter; returns the new value."""
        attr = _COUNTER_FIELDS.get(kind)
        if attr is None:
            raise ValueError("invalid_usage_kind")
        with self._lock:
            ident = self._by_id.get(identity_id)
            if not ident:
                return None
            value = int(getattr(ident, attr) or 0) + 1
            setattr(ident, attr, value)
            return value

    def promote_admins(self, emails: Iterable[str]) -> int:
        """Bootstrap: promote existing identities whose email is listed."""
        wanted = {e.strip().lower() for e in emails if e and e.strip()}
        promoted = 0
        with self._lock:
            for ident in self._by_id.values():
                if ident.email in wanted and ident.role != ROLE_ADMIN:
                    ident.role = ROLE_ADMIN
                    ident.updated_at = datetime.now(timezone.utc)
                    promoted += 1
        return promoted
