# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/shopreq/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login   - email + password -> bearer token
- POST /api/auth/logout  - revoke the presented token
- GET  /api/auth/me      - current profile and its capabilities

Profiles are created by administrators only (POST /api/profiles or the
`flask profiles create` command); there is no self-registration.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..decorators import require_auth, bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate a profile and create a session token.

    Token must be included in the Authorization header for protected routes.
    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "JSON object body required"}), 400
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({"error": "email and password required"}), 400
        if not isinstance(email, str) or not isinstance(password, str):
            return jsonify({"error": "email and password must be strings"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        profile = auth_service.authenticate(email, password)

        if not profile:
            permission_service.log_security_event(
                profile_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource="/api/auth/login",
                action="login",
                reason=f"Invalid credentials for {email.strip().lower()}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            profile.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        return jsonify({
            "profile": profile.to_dict(),
            "capabilities": sorted(permission_service.get_capabilities(profile)),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login profile")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authorization header required"}), 401

        revoked = session_service.revoke_session(token, reason="User logout")

        if not revoked:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout profile")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current profile plus capabilities, for UI filtering."""
    profile = g.current_profile
    return jsonify({
        "profile": profile.to_dict(),
        "capabilities": sorted(permission_service.get_capabilities(profile)),
    }), 200
