# Overview: Row-level access policies enforced at the storage boundary.

"""
Storage-Layer Row Policies

WHY: The workflow is guarded twice. lifecycle_service checks the
application predicates (role + status + ownership); this module enforces
the row-level rules that decide which rows a profile may see or write at
all. The two layers are maintained separately and must both pass; neither
assumes the other is sufficient.

RULES:
    shopping_requests
        SELECT: requester, assigned approver, or procurement role
        INSERT: only as oneself (requester_id == actor)
        UPDATE: requester, assigned approver, or procurement role
    request_items
        SELECT: follows the parent request
        INSERT/DELETE: only on one's own requests
    profiles
        SELECT: self, direct reports, everyone for procurement/admin
        UPDATE: self, or admin
"""

from __future__ import annotations

from sqlalchemy import false, or_

from ..models import Profile, ShoppingRequest
from ..permissions import Capability, Role, has_capability
from . import permission_service
from .permission_service import PermissionDeniedError


def _is_active(actor: Profile | None) -> bool:
    return actor is not None and bool(actor.is_active)


def _is_role(actor: Profile, role: Role) -> bool:
    return actor.role == role.value


# =============================================================================
# shopping_requests
# =============================================================================

def visible_requests(query, actor: Profile):
    """Restrict a ShoppingRequest query to rows the actor may read."""
    if not _is_active(actor):
        return query.filter(false())
    if has_capability(actor.role, Capability.VIEW_ALL_REQUESTS):
        return query
    return query.filter(
        or_(
            ShoppingRequest.requester_id == actor.id,
            ShoppingRequest.assigned_approver_id == actor.id,
        )
    )


def can_read_request(actor: Profile, request: ShoppingRequest) -> bool:
    if not _is_active(actor):
        return False
    return (
        request.requester_id == actor.id
        or request.assigned_approver_id == actor.id
        or _is_role(actor, Role.PROCUREMENT)
    )


def can_insert_request(actor: Profile, requester_id: int) -> bool:
    return _is_active(actor) and requester_id == actor.id


def can_update_request_row(actor: Profile, request: ShoppingRequest) -> bool:
    if not _is_active(actor):
        return False
    return (
        request.requester_id == actor.id
        or (request.assigned_approver_id is not None and request.assigned_approver_id == actor.id)
        or _is_role(actor, Role.PROCUREMENT)
    )


# =============================================================================
# request_items
# =============================================================================

def can_write_items(actor: Profile, request: ShoppingRequest) -> bool:
    return _is_active(actor) and request.requester_id == actor.id


# =============================================================================
# profiles
# =============================================================================

def visible_profiles(query, actor: Profile):
    """Restrict a Profile query to rows the actor may read."""
    if not _is_active(actor):
        return query.filter(false())
    if has_capability(actor.role, Capability.VIEW_ALL_PROFILES):
        return query
    return query.filter(or_(Profile.id == actor.id, Profile.manager_id == actor.id))


def can_read_profile(actor: Profile, profile: Profile) -> bool:
    if not _is_active(actor):
        return False
    return (
        profile.id == actor.id
        or profile.manager_id == actor.id
        or has_capability(actor.role, Capability.VIEW_ALL_PROFILES)
    )


def can_update_profile_row(actor: Profile, profile: Profile) -> bool:
    if not _is_active(actor):
        return False
    return profile.id == actor.id or _is_role(actor, Role.ADMIN)


# =============================================================================
# Enforcement
# =============================================================================

def enforce(allowed: bool, *, actor: Profile | None, action: str, resource: str) -> None:
    """
    Raise PermissionDeniedError (and log POLICY_DENIED) when a row policy denies.
    """
    if allowed:
        return
    permission_service.log_security_event(
        profile_id=actor.id if actor is not None else None,
        event_type="POLICY_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason="Row policy denied",
    )
    raise PermissionDeniedError(f"Not permitted to {action} {resource}")
