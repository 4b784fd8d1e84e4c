# Overview: Request and capability decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return getattr(g, "current_profile", None) is not None


def bearer_token() -> str | None:
    """Token from 'Authorization: Bearer <token>', or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication.

    Sets g.current_profile to the authenticated Profile. Services trust this
    identity; the actor is never read from the request body.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - Profile deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        profile = session_service.validate_session(token)
        if profile is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_profile = profile
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """
    Require a role capability (see permissions.ROLE_CAPABILITIES).

    Denials are logged to security_events by permission_service.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_capability(
                    g.current_profile,
                    capability,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_capability": capability,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
