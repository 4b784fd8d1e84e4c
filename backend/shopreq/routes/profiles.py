# Overview: Flask API routes for profiles; parses input and returns JSON responses.

# backend/shopreq/routes/profiles.py
"""
Profile management API routes

- GET   /api/profiles       - Profiles visible to the current profile
- POST  /api/profiles       - Create a profile (MANAGE_PROFILES)
- GET   /api/profiles/:id   - Profile detail
- PATCH /api/profiles/:id   - Update a profile (admin: role/manager/cost center/active;
                              self: full name)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..permissions import Capability
from ..services import auth_service, permission_service
from ..services.auth_service import PasswordValidationError, ProfileNotFoundError
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_capability


profiles_bp = Blueprint("profiles", __name__, url_prefix="/api/profiles")


@profiles_bp.get("")
@require_auth
def list_profiles_route():
    """Query params: role"""
    try:
        profiles = auth_service.list_profiles(g.current_profile, role=request.args.get("role") or None)
        return jsonify({"profiles": [p.to_dict() for p in profiles]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list profiles")
        return jsonify({"error": "Internal server error"}), 500


@profiles_bp.post("")
@require_auth
@require_capability(Capability.MANAGE_PROFILES)
def create_profile_route():
    """
    Create a profile.

    Body:
        {
            "email": "...", "full_name": "...", "password": "...",
            "role": "user" | "manager" | "procurement" | "admin",
            "manager_id": 3, "cost_center": "CC-100"
        }
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "JSON object body required"}), 400
        profile = auth_service.create_profile(
            email=data.get("email"),
            full_name=data.get("full_name"),
            password=data.get("password") or "",
            role=data.get("role") or "user",
            manager_id=data.get("manager_id"),
            cost_center=data.get("cost_center"),
        )
        permission_service.log_security_event(
            profile_id=g.current_profile.id,
            event_type="PROFILE_CREATED",
            success=True,
            resource=f"profiles:{profile.id}",
            action="create",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({"profile": profile.to_dict()}), 201
    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create profile")
        return jsonify({"error": "Internal server error"}), 500


@profiles_bp.get("/<int:profile_id>")
@require_auth
def get_profile_route(profile_id: int):
    try:
        profile = auth_service.get_profile(profile_id, g.current_profile)
        return jsonify({"profile": profile.to_dict()}), 200
    except ProfileNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load profile")
        return jsonify({"error": "Internal server error"}), 500


@profiles_bp.patch("/<int:profile_id>")
@require_auth
def update_profile_route(profile_id: int):
    try:
        data = request.get_json(silent=True)
        profile = auth_service.update_profile(profile_id, actor=g.current_profile, changes=data)
        permission_service.log_security_event(
            profile_id=g.current_profile.id,
            event_type="PROFILE_UPDATED",
            success=True,
            resource=f"profiles:{profile.id}",
            action="update",
            reason=", ".join(sorted(data)),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({"profile": profile.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ProfileNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500
