"""Input rules for project and environment variable writes."""
from __future__ import annotations

import re
from typing import Optional

ENV_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
MAX_ENV_KEY_LEN = 128
MAX_ENV_VALUE_LEN = 10_000
MAX_PROJECT_NAME_LEN = 200
MAX_DESCRIPTION_LEN = 2000

# Platform-reserved names that user variables must not shadow.
RESERVED_ENV_KEYS = frozenset({"NODE_ENV", "PORT", "VERCEL", "VERCEL_ENV", "VERCEL_URL"})


def is_valid_env_key(key: str) -> bool:
    return bool(key) and len(key) <= MAX_ENV_KEY_LEN and bool(ENV_KEY_RE.match(key))


def env_value_error(value: str, key: Optional[str] = None) -> Optional[str]:
    """Return a user-facing error message, or None when the value is acceptable."""
    if key in RESERVED_ENV_KEYS:
        return f'"{key}" is reserved by the platform'
    if len(value) > MAX_ENV_VALUE_LEN:
        return f"Value too long (max {MAX_ENV_VALUE_LEN} characters)"
    if "\x00" in value:
        return "Value must not contain null bytes"
    return None


def normalize_project_name(name: object) -> Optional[str]:
    if not isinstance(name, str):
        return None
    n = name.strip()
    if not n or len(n) > MAX_PROJECT_NAME_LEN:
        return None
    return n
