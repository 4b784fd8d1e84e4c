"""
Role and capability definitions.

WHY: Roles are a fixed enumeration stored on the profile row. Every
authorization decision in the services is expressed in terms of the
capabilities below so the role -> action mapping lives in one place.

DESIGN PRINCIPLES:
- Fail closed: an unknown role has no capabilities
- One capability per action
- Row-level rules (ownership, assigned approver) are layered on top in
  services/lifecycle_service.py and services/policies.py
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    USER = "user"
    MANAGER = "manager"
    PROCUREMENT = "procurement"
    ADMIN = "admin"

    @classmethod
    def coerce(cls, value: "Role | str") -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid role '{value}'. Must be one of: {', '.join(r.value for r in cls)}"
            ) from None


ROLE_VALUES = tuple(r.value for r in Role)


class Capability:
    CREATE_REQUESTS = "CREATE_REQUESTS"
    APPROVE_REQUESTS = "APPROVE_REQUESTS"
    COMPLETE_REQUESTS = "COMPLETE_REQUESTS"
    CANCEL_REQUESTS = "CANCEL_REQUESTS"
    VIEW_ALL_REQUESTS = "VIEW_ALL_REQUESTS"
    VIEW_ALL_PROFILES = "VIEW_ALL_PROFILES"
    MANAGE_PROFILES = "MANAGE_PROFILES"


ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.USER: frozenset({
        Capability.CREATE_REQUESTS,
    }),
    Role.MANAGER: frozenset({
        Capability.CREATE_REQUESTS,
        Capability.APPROVE_REQUESTS,
        Capability.CANCEL_REQUESTS,
    }),
    Role.PROCUREMENT: frozenset({
        Capability.CREATE_REQUESTS,
        Capability.APPROVE_REQUESTS,
        Capability.COMPLETE_REQUESTS,
        Capability.CANCEL_REQUESTS,
        Capability.VIEW_ALL_REQUESTS,
        Capability.VIEW_ALL_PROFILES,
    }),
    Role.ADMIN: frozenset({
        Capability.CREATE_REQUESTS,
        Capability.VIEW_ALL_PROFILES,
        Capability.MANAGE_PROFILES,
    }),
}


def has_capability(role: "Role | str | None", capability: str) -> bool:
    if role is None:
        return False
    try:
        role = Role.coerce(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES.get(role, frozenset())
