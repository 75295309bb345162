"""Payload scrubbing for audit snapshots.

    sanitize({"email": "a@b.c", "password": "x"})
    → {"email": "a@b.c", "password": "[REDACTED]"}

    truncate(<payload whose JSON is 5000 chars>, max_chars=2000)
    → {"_truncated": True, "_originalLength": 5000, "_data": "<2000 chars>..."}
"""

from __future__ import annotations

import json
from typing import Any

REDACTED = "[REDACTED]"

# Compared after lowercasing and dropping "_" / "-", so
# "new_password", "newPassword" and "new-password" all match
SENSITIVE_FIELDS = frozenset({
    "password",
    "confirmpassword",
    "currentpassword",
    "newpassword",
    "token",
    "refreshtoken",
    "accesstoken",
    "secret",
    "key",
    "salt",
})


def _normalize(name: str) -> str:
    return name.lower().replace("_", "").replace("-", "")


def is_sensitive(field_name: str) -> bool:
    return _normalize(field_name) in SENSITIVE_FIELDS


def sanitize(data: Any) -> Any:
    """Return a copy of `data` with sensitive values replaced, at any depth."""
    if isinstance(data, dict):
        return {
            key: REDACTED if isinstance(key, str) and is_sensitive(key) else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data


def truncate(data: Any, max_chars: int = 2000) -> Any:
    """Wrap payloads whose JSON form exceeds `max_chars` in a truncation marker."""
    if data is None:
        return None
    serialized = json.dumps(data, default=str, ensure_ascii=False)
    if len(serialized) <= max_chars:
        return data
    return {
        "_truncated": True,
        "_originalLength": len(serialized),
        "_data": serialized[:max_chars] + "...",
    }
