"""Roles and effective permission derivation."""

from collections.abc import Iterable
from enum import StrEnum


class UserRole(StrEnum):
    CREATOR = "CREATOR"
    PARTICIPANT = "PARTICIPANT"
    PARTNER = "PARTNER"
    ADMIN = "ADMIN"


DEFAULT_SESSION_PERMISSION = "session:read"

BASE_ROLE_PERMISSIONS: dict[UserRole, tuple[str, ...]] = {
    UserRole.CREATOR: ("project:create", "project:update", "project:view-dashboard", "community:moderate"),
    UserRole.PARTICIPANT: ("project:view", "community:participate", "order:create"),
    UserRole.PARTNER: ("project:view", "partner:manage", "partner:respond"),
    UserRole.ADMIN: ("admin:manage", "project:review", "settlement:manage", "partner:verify"),
}


def normalize_role(value: UserRole | str | None) -> UserRole:
    """Coerce a stored or claimed role to a known role; unknown values become PARTICIPANT."""
    if isinstance(value, UserRole):
        return value
    if not value:
        return UserRole.PARTICIPANT
    try:
        return UserRole(value.upper())
    except ValueError:
        return UserRole.PARTICIPANT


def derive_effective_permissions(
    role: UserRole | str | None,
    explicit: Iterable[str] = (),
) -> list[str]:
    """Role-implied permissions plus explicit grants, sorted and de-duplicated.

    Admins additionally inherit every other role's base permissions and the
    ``admin:*`` wildcard.
    """
    normalized = normalize_role(role)
    merged = {*BASE_ROLE_PERMISSIONS[normalized], *explicit, DEFAULT_SESSION_PERMISSION}

    if normalized is UserRole.ADMIN:
        for permissions in BASE_ROLE_PERMISSIONS.values():
            merged.update(permissions)
        merged.add("admin:*")

    return sorted(merged)


def has_all_permissions(granted: Iterable[str] | None, required: Iterable[str] | None) -> bool:
    required = list(required or ())
    if not required:
        return True
    granted_set = set(granted or ())
    return all(permission in granted_set for permission in required)
