# Overview: Service-layer operations for profiles and passwords; encapsulates business logic and database work.

"""
Profile and Authentication Service

WHY: Every request and transition must be attributable to a profile.
Uses bcrypt for secure password hashing and validates password strength.

MANAGER HIERARCHY:
- manager_id points at another existing profile (tree/forest)
- A profile can never be its own manager
- Writes that would close a cycle in the chain are rejected

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Profile
from ..permissions import Capability, Role
from ..validation import ConflictError, ValidationError
from . import permission_service, policies, session_service
from .permission_service import PermissionDeniedError
from shopreq.time_utils import utcnow


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class ProfileNotFoundError(LookupError):
    """Raised when a profile does not exist or is not visible to the actor."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password must be a string")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Malformed hashes never verify.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _text(value, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()


def _normalize_email(email: str | None) -> str:
    email = _text(email, "email").lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required")
    return email


def _email_taken(email: str) -> bool:
    return db.session.query(Profile.id).filter(Profile.email == email).first() is not None


def _validate_role(role) -> str:
    try:
        return Role.coerce(role).value
    except ValueError as exc:
        raise ValidationError(str(exc)) from None


def manager_chain(profile_id: int) -> list[int]:
    """
    Ids of the profile's managers, nearest first.

    Stops at the first repeated id so a corrupted (cyclic) chain terminates.
    """
    chain: list[int] = []
    seen = {profile_id}
    profile = db.session.get(Profile, profile_id)
    current = profile.manager_id if profile else None
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        manager = db.session.get(Profile, current)
        current = manager.manager_id if manager else None
    return chain


def _validate_manager(profile_id: int | None, manager_id: int | None) -> int | None:
    if manager_id is None:
        return None
    if isinstance(manager_id, bool) or not isinstance(manager_id, int):
        raise ValidationError("manager_id must be an integer")

    manager = db.session.get(Profile, manager_id)
    if manager is None:
        raise ValidationError(f"Manager profile {manager_id} not found")

    if profile_id is not None:
        if manager_id == profile_id:
            raise ValidationError("A profile cannot be its own manager")
        # Walking up from the new manager must never reach this profile
        if profile_id in manager_chain(manager_id):
            raise ValidationError("Manager assignment would create a cycle in the reporting chain")
    return manager_id


def create_profile(
    email: str,
    full_name: str,
    password: str,
    role: str = Role.USER.value,
    manager_id: int | None = None,
    cost_center: str | None = None,
) -> Profile:
    """
    Create new profile with bcrypt password hashing.

    Raises:
        ValidationError: Bad email/name/role/manager
        ConflictError: Email already in use
        PasswordValidationError: Password doesn't meet requirements
    """
    email = _normalize_email(email)
    full_name = _text(full_name, "full_name")
    if not full_name:
        raise ValidationError("full_name is required")
    role = _validate_role(role)
    manager_id = _validate_manager(None, manager_id)

    if _email_taken(email):
        raise ConflictError("A profile with this email already exists")

    password_hash = hash_password(password)

    profile = Profile(
        email=email,
        full_name=full_name,
        password_hash=password_hash,
        role=role,
        manager_id=manager_id,
        cost_center=_text(cost_center, "cost_center") or None,
    )

    try:
        db.session.add(profile)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("A profile with this email already exists") from exc
    return profile


# Fields each kind of actor may change
ADMIN_FIELDS = {"full_name", "role", "manager_id", "cost_center", "is_active"}
SELF_FIELDS = {"full_name"}


def update_profile(profile_id: int, *, actor: Profile, changes: dict) -> Profile:
    """
    Update a profile.

    Admins may change role, manager, cost center, active flag and name.
    A profile may change its own full name. Everything else is denied.
    """
    profile = db.session.get(Profile, profile_id)
    if profile is None or not policies.can_read_profile(actor, profile):
        raise ProfileNotFoundError(f"Profile {profile_id} not found")

    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes provided")

    resource = f"profiles:{profile.id}"
    policies.enforce(policies.can_update_profile_row(actor, profile), actor=actor, action="update", resource=resource)

    is_admin = Capability.MANAGE_PROFILES in permission_service.get_capabilities(actor)
    allowed = ADMIN_FIELDS if is_admin else SELF_FIELDS
    forbidden = sorted(set(changes) - allowed)
    if forbidden:
        unknown = [k for k in forbidden if k not in ADMIN_FIELDS]
        if unknown:
            raise ValidationError(f"Field not allowed: {unknown[0]}")
        permission_service.log_security_event(
            profile_id=actor.id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action="update",
            reason=f"Not permitted to change: {', '.join(forbidden)}",
        )
        raise PermissionDeniedError(f"Not permitted to change: {', '.join(forbidden)}")

    # Validate everything before touching the row
    updates: dict = {}
    if "full_name" in changes:
        full_name = _text(changes["full_name"], "full_name")
        if not full_name:
            raise ValidationError("full_name cannot be blank")
        updates["full_name"] = full_name
    if "role" in changes:
        updates["role"] = _validate_role(changes["role"])
    if "manager_id" in changes:
        updates["manager_id"] = _validate_manager(profile.id, changes["manager_id"])
    if "cost_center" in changes:
        updates["cost_center"] = _text(changes["cost_center"], "cost_center") or None
    if "is_active" in changes:
        if not isinstance(changes["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        if profile.id == actor.id and changes["is_active"] is False:
            raise ValidationError("You cannot deactivate your own profile")
        updates["is_active"] = changes["is_active"]

    for key, value in updates.items():
        setattr(profile, key, value)

    db.session.commit()

    if not profile.is_active:
        session_service.revoke_all_profile_sessions(profile.id, reason="Profile deactivated")
    return profile


def get_profile(profile_id: int, actor: Profile) -> Profile:
    profile = db.session.get(Profile, profile_id)
    if profile is None or not policies.can_read_profile(actor, profile):
        raise ProfileNotFoundError(f"Profile {profile_id} not found")
    return profile


def list_profiles(actor: Profile, *, role: str | None = None) -> list[Profile]:
    query = policies.visible_profiles(db.session.query(Profile), actor)
    if role:
        query = query.filter(Profile.role == _validate_role(role))
    return query.order_by(Profile.full_name.asc(), Profile.id.asc()).all()


def authenticate(email: str, password: str) -> Profile | None:
    """
    Authenticate profile with email and password.

    Returns the Profile if credentials are valid and the profile is active,
    None otherwise. Updates last_login_at on success.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        return None

    email = email.strip().lower()
    profile = db.session.query(Profile).filter(
        Profile.email == email,
        Profile.is_active.is_(True),
    ).first()

    if not profile:
        return None

    if verify_password(password, profile.password_hash):
        profile.last_login_at = utcnow()
        db.session.commit()
        return profile

    return None
