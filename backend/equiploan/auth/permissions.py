"""Permission catalog and the set arithmetic behind the permission guard.

Design:
  - Users own permissions directly (users ↔ permissions join table).
    Roles are informational only; nothing here reads `User.role`.
  - Holding BYPASS_PERMISSION satisfies any requirement.
  - The catalog below is what `python -m equiploan.cli seed-permissions`
    writes to the `permissions` table.

Permission naming: `<resource>:<action>`
"""

from __future__ import annotations

from collections.abc import Iterable

BYPASS_PERMISSION = "system:admin"


# ── All known permissions ───────────────────────────────────

PERMISSION_CATALOG: dict[str, str] = {
    # User management
    "user:create": "Create user accounts",
    "user:read": "View users and their permissions",
    "user:update": "Edit, activate and deactivate users",
    "user:delete": "Delete users",
    "permission:manage": "Grant and revoke permissions",

    # Equipment catalog
    "product:create": "Create products and instances",
    "product:read": "View products and instances",
    "product:update": "Edit products and instances",
    "product:delete": "Delete products and instances",

    # Lending
    "loan:create": "Create, update, return and mark loans lost",
    "loan:read": "View loans and loan statistics",

    # Volunteering
    "volunteer:create": "Log volunteer activities",
    "volunteer:read": "View volunteer activities",
    "volunteer:update": "Edit volunteer activities",
    "volunteer:delete": "Delete volunteer activities",
    "volunteer:stats": "View per-volunteer statistics",
    "volunteer:reports": "Generate volunteer reports",

    # Audit trail
    "audit:read": "View the audit log",

    BYPASS_PERMISSION: "Full access; satisfies every permission check",
}

ALL_PERMISSIONS: set[str] = set(PERMISSION_CATALOG)


def missing_permissions(granted: Iterable[str], required: Iterable[str]) -> list[str]:
    """Return the required permissions the caller lacks, in declared order.

    An empty result means the call is allowed.
    """
    granted = set(granted)
    if BYPASS_PERMISSION in granted:
        return []
    return [perm for perm in required if perm not in granted]


def unknown_permissions(names: Iterable[str]) -> list[str]:
    return sorted(set(names) - ALL_PERMISSIONS)
