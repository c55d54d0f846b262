"""
Response shaping: one normalization function per entity.

Why:
    Counters can be wider than what JSON clients read as exact numbers, and
    timestamps arrive as datetimes, strings or epochs depending on the store.
    Every handler that emits an entity goes through the same function, so the
    coercion rules cannot drift between routes.

Invariant:
    Shaping is total. The primitives never raise; unexpected values become None.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from backend.identity_access.domain import Identity
from backend.projects.models import EnvironmentVariable, FormSubmission, Project

# Largest integer a JSON client using IEEE doubles reads exactly.
MAX_SAFE_INTEGER = 2**53 - 1
# Counters wider than this are not counters (BIGINT is 19 digits).
MAX_COUNTER_DIGITS = 38
_COUNTER_BOUND = 10**MAX_COUNTER_DIGITS


def coerce_int(value: Any) -> Optional[Union[int, str]]:
    """Coerce a counter to a JSON-safe integer.

    - int / integral float / integral Decimal / numeric string -> int
    - magnitude above MAX_SAFE_INTEGER -> decimal string (no precision loss)
    - bool, NaN, inf, fractional, unparsable or wider than
      MAX_COUNTER_DIGITS digits -> None
    """
    try:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            n = value
        elif isinstance(value, float):
            if value != value or value in (float("inf"), float("-inf")) or not value.is_integer():
                return None
            n = int(value)
        elif isinstance(value, (Decimal, str)):
            if isinstance(value, str):
                text = value.strip()
                if not text:
                    return None
                value = Decimal(text)
            # Reject by exponent before any integral conversion: "1e1000000" must stay cheap.
            if not value.is_finite() or value.adjusted() >= MAX_COUNTER_DIGITS:
                return None
            if value != value.to_integral_value():
                return None
            n = int(value)
        else:
            return None
        if abs(n) >= _COUNTER_BOUND:
            return None
        if abs(n) > MAX_SAFE_INTEGER:
            return str(n)
        return n
    except (InvalidOperation, ValueError, TypeError, OverflowError):
        return None


def iso_timestamp(value: Any) -> Optional[str]:
    """Format a timestamp as UTC `YYYY-MM-DDTHH:MM:SS.mmmZ`.

    Accepts aware/naive datetimes (naive = UTC), dates, ISO strings and epoch
    seconds. Anything else yields None.
    """
    try:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, date):
            dt = datetime(value.year, value.month, value.day)
        elif isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
        else:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        dt = dt.astimezone(timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
    except (ValueError, OverflowError, OSError, TypeError):
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def shape_identity(identity: Identity) -> dict[str, Any]:
    return {
        "id": _text(identity.id),
        "email": _text(identity.email),
        "name": _text(identity.name),
        "role": _text(identity.role),
        "subscriptionTier": _text(identity.subscription_tier),
        "subscriptionStatus": _text(identity.subscription_status),
        "projectsThisMonth": coerce_int(identity.projects_this_month),
        "projectsLimit": coerce_int(identity.projects_limit),
        "generationsUsed": coerce_int(identity.generations_used),
        "generationsLimit": coerce_int(identity.generations_limit),
        "createdAt": iso_timestamp(identity.created_at),
        "updatedAt": iso_timestamp(identity.updated_at),
    }


def shape_settings(identity: Identity) -> dict[str, Any]:
    """Self view: identity plus personal preferences."""
    out = shape_identity(identity)
    out.update(
        {
            "theme": _text(identity.theme),
            "notifications": _flag(identity.notifications),
            "autoSave": _flag(identity.auto_save),
        }
    )
    return out


def shape_project(project: Project) -> dict[str, Any]:
    return {
        "id": _text(project.id),
        "userId": _text(project.owner_id),
        "name": _text(project.name),
        "description": _text(project.description),
        "status": _text(project.status),
        "pageViews": coerce_int(project.page_views),
        "createdAt": iso_timestamp(project.created_at),
        "updatedAt": iso_timestamp(project.updated_at),
    }


def shape_env_var(var: EnvironmentVariable, *, value: Optional[str] = None, include_value: bool = False) -> dict[str, Any]:
    """Write responses never echo the value; the owner's list view passes the decrypted value."""
    out: dict[str, Any] = {
        "id": _text(var.id),
        "key": _text(var.key),
        "description": _text(var.description),
        "environment": _text(var.environment),
        "createdAt": iso_timestamp(var.created_at),
        "updatedAt": iso_timestamp(var.updated_at),
    }
    if include_value:
        out["value"] = value
    return out


def shape_submission(sub: FormSubmission) -> dict[str, Any]:
    payload = sub.payload if isinstance(sub.payload, dict) else {}
    return {
        "id": _text(sub.id),
        "projectId": _text(sub.project_id),
        "type": _text(sub.form_type),
        "data": payload,
        "read": _flag(sub.read),
        "createdAt": iso_timestamp(sub.created_at),
    }
