# Overview: Flask API routes for shopping requests; parses input and returns JSON responses.

# backend/shopreq/routes/requests.py
"""
Shopping Request API routes

- GET    /api/requests                 - List visible requests (filters + paging)
- GET    /api/requests/stats           - Dashboard counters
- POST   /api/requests                 - Create a request (draft, or submitted with "submit": true)
- GET    /api/requests/:id             - Request detail with items and available actions
- PUT    /api/requests/:id             - Edit a draft/cancelled request (optionally resubmit)
- POST   /api/requests/:id/submit      - draft/cancelled -> pending_approval
- POST   /api/requests/:id/approve     - pending_approval -> approved
- POST   /api/requests/:id/reject      - pending_approval -> rejected
- POST   /api/requests/:id/complete    - approved -> completed
- POST   /api/requests/:id/cancel      - pending_approval/approved -> cancelled

ERROR MAPPING:
    400 ValidationError          409 LifecycleError / ConflictError
    403 PermissionDeniedError    404 RequestNotFoundError
    503 RequestNumberError / database failure

SECURITY:
- All routes require authentication
- The actor is always g.current_profile, never a body field
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import lifecycle_service, request_service
from ..services.lifecycle_service import LifecycleError, RequestNotFoundError
from ..services.permission_service import PermissionDeniedError
from ..services.sequence_service import RequestNumberError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _pop_submit_flag(data: dict) -> bool:
    submit = data.pop("submit", False)
    if not isinstance(submit, bool):
        raise ValidationError("submit must be a boolean")
    return submit


def _optional_text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _request_payload(req) -> dict:
    actor = g.current_profile
    return {
        "request": req.to_dict(),
        "available_actions": lifecycle_service.available_actions(actor, req),
    }


def _error_response(exc: Exception, what: str):
    """Map a service exception to a JSON error response."""
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, (LifecycleError, ConflictError)):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": "Permission denied", "message": str(exc)}), 403
    if isinstance(exc, RequestNotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, RequestNumberError):
        current_app.logger.exception("Request number unavailable while trying to %s", what)
        return jsonify({"error": "Request number could not be issued, try again"}), 503
    if isinstance(exc, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Database error while trying to %s", what)
        return jsonify({"error": "Database unavailable"}), 503
    current_app.logger.exception("Failed to %s", what)
    return jsonify({"error": "Internal server error"}), 500


@requests_bp.get("")
@require_auth
def list_requests_route():
    """
    List requests visible to the current profile, newest first.

    Query params: status, type, q, requester_id, limit (default 100, max 500), offset
    """
    try:
        rows, total = request_service.list_requests(
            g.current_profile,
            status=request.args.get("status") or None,
            request_type=request.args.get("type") or None,
            search=request.args.get("q") or None,
            requester_id=request.args.get("requester_id", type=int),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({
            "requests": [r.to_dict(include_items=False) for r in rows],
            "total": total,
        }), 200
    except LifecycleError as e:
        # Unknown status filter
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return _error_response(e, "list requests")


@requests_bp.get("/stats")
@require_auth
def request_stats_route():
    try:
        return jsonify(request_service.request_stats(g.current_profile)), 200
    except Exception as e:
        return _error_response(e, "compute request stats")


@requests_bp.post("")
@require_auth
def create_request_route():
    """
    Create a request owned by the current profile.

    Body:
        {
            "request_type": "material" | "service",
            "justification": "...",
            "delivery_date": "2025-03-01",
            "preferred_supplier": "...", "client_name": "...", "client_id": "...",
            "items": [{"item_code", "description", "quantity", "unit", "unit_price_cents", ...}],
            "submit": false
        }

    The request number is issued by the server; any client value is rejected.
    """
    try:
        data = _json_body()
        submit = _pop_submit_flag(data)
        req = request_service.create_request(g.current_profile, data, submit=submit)
        current_app.logger.info(
            "Request %s created by profile %s; status=%s",
            req.request_number, g.current_profile.id, req.status,
        )
        return jsonify(_request_payload(req)), 201
    except Exception as e:
        return _error_response(e, "create request")


@requests_bp.get("/<int:request_id>")
@require_auth
def get_request_route(request_id: int):
    try:
        req = request_service.get_request(request_id, g.current_profile)
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "load request")


@requests_bp.put("/<int:request_id>")
@require_auth
def update_request_route(request_id: int):
    """
    Edit a draft or cancelled request. "items", when present, replace the
    existing set. With "submit": true the request goes back to pending_approval,
    otherwise it is saved as draft.
    """
    try:
        data = _json_body()
        submit = _pop_submit_flag(data)
        req = request_service.update_request(request_id, g.current_profile, data, submit=submit)
        current_app.logger.info(
            "Request %s edited by profile %s; status=%s",
            req.request_number, g.current_profile.id, req.status,
        )
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "update request")


@requests_bp.post("/<int:request_id>/submit")
@require_auth
def submit_request_route(request_id: int):
    try:
        req = lifecycle_service.submit_request(request_id, actor=g.current_profile)
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "submit request")


@requests_bp.post("/<int:request_id>/approve")
@require_auth
def approve_request_route(request_id: int):
    """Body (optional): {"comment": "..."}"""
    try:
        data = _json_body()
        req = lifecycle_service.approve_request(
            request_id,
            actor=g.current_profile,
            comment=_optional_text(data, "comment"),
        )
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "approve request")


@requests_bp.post("/<int:request_id>/reject")
@require_auth
def reject_request_route(request_id: int):
    """Body (optional): {"reason": "..."}; empty reason is stored as "No reason provided"."""
    try:
        data = _json_body()
        req = lifecycle_service.reject_request(
            request_id,
            actor=g.current_profile,
            reason=_optional_text(data, "reason"),
        )
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "reject request")


@requests_bp.post("/<int:request_id>/complete")
@require_auth
def complete_request_route(request_id: int):
    """Body (optional): {"notes": "..."}"""
    try:
        data = _json_body()
        req = lifecycle_service.complete_request(
            request_id,
            actor=g.current_profile,
            notes=_optional_text(data, "notes"),
        )
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "complete request")


@requests_bp.post("/<int:request_id>/cancel")
@require_auth
def cancel_request_route(request_id: int):
    """Body (optional): {"note": "..."}; empty note is stored as "Cancelled for editing"."""
    try:
        data = _json_body()
        req = lifecycle_service.cancel_request(
            request_id,
            actor=g.current_profile,
            note=_optional_text(data, "note"),
        )
        return jsonify(_request_payload(req)), 200
    except Exception as e:
        return _error_response(e, "cancel request")
