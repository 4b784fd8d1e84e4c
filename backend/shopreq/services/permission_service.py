# Overview: Capability checks and security event logging.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and create audit trail.
Every denied check is logged for security monitoring.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit capability
- Log denials only: grants are not logged
"""

from __future__ import annotations

from ..extensions import db
from ..models import Profile, SecurityEvent
from ..permissions import has_capability, ROLE_CAPABILITIES, Role
from shopreq.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when the acting profile lacks the role or ownership an action requires."""
    pass


def log_security_event(
    profile_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for compliance and security monitoring.

    event_type examples:
    - TRANSITION_DENIED
    - POLICY_DENIED
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGOUT
    - PROFILE_CREATED
    - PROFILE_UPDATED

    NOTE: Commits the session. Callers log denials before mutating anything.
    """
    event = SecurityEvent(
        profile_id=profile_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_capabilities(profile: Profile) -> set[str]:
    """Capabilities granted by the profile's role (empty for inactive profiles)."""
    if profile is None or not profile.is_active:
        return set()
    try:
        return set(ROLE_CAPABILITIES.get(Role.coerce(profile.role), ()))
    except ValueError:
        return set()


def require_capability(
    profile: Profile,
    capability: str,
    *,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Raise PermissionDeniedError if the profile's role lacks the capability.

    Denials are logged to security_events.
    """
    if profile is not None and profile.is_active and has_capability(profile.role, capability):
        return

    log_security_event(
        profile_id=profile.id if profile is not None else None,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=capability,
        reason=f"Missing capability: {capability}",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise PermissionDeniedError(f"Missing capability: {capability}")
