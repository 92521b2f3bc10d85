from __future__ import annotations

from typing import Any

from access_engine.domain.models import IdentitySource, ModuleAccessLevel

PERM_WILDCARD = "*"
PERM_HIERARCHY_READ = "hierarchy.read"
PERM_HIERARCHY_WRITE = "hierarchy.write"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_AUDIT_READ = "audit.read"

INHERIT = "inherit"

ACCESS_LEVEL_RANK: dict[ModuleAccessLevel, int] = {
    ModuleAccessLevel.NONE: 0,
    ModuleAccessLevel.ACCESS: 1,
    ModuleAccessLevel.ADMIN: 2,
}

SOURCE_PRIORITY: dict[IdentitySource, int] = {
    IdentitySource.DIRECTORY: 4,
    IdentitySource.LDAP: 3,
    IdentitySource.MANUAL: 2,
    IdentitySource.UPLOAD: 1,
}


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions


def level_at_least(level: ModuleAccessLevel, required: ModuleAccessLevel) -> bool:
    return ACCESS_LEVEL_RANK[level] >= ACCESS_LEVEL_RANK[required]


def highest_level(levels: list[ModuleAccessLevel]) -> ModuleAccessLevel:
    return max(levels, key=lambda item: ACCESS_LEVEL_RANK[item], default=ModuleAccessLevel.NONE)


def suggest_keep_source(sources: list[IdentitySource]) -> IdentitySource:
    """Highest-priority source among ``sources``; a hint only, never applied automatically."""
    if not sources:
        raise ValueError("no sources to choose from")
    return max(sources, key=lambda item: SOURCE_PRIORITY[item])
