# backend/shopreq/routes/system.py
"""
System health and version endpoints.

Health checks cover the database, the session table and the request number
counter for the current year.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Profile, SessionToken, ShoppingRequest
from ..services import sequence_service
from shopreq.time_utils import current_year, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        profile_count = db.session.query(Profile).count()
        request_count = db.session.query(ShoppingRequest).count()

        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "profiles": profile_count,
                "requests": request_count,
            }
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Database error"
        }


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        active_sessions = db.session.query(SessionToken).filter_by(
            is_revoked=False
        ).count()

        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(False)
        ).count()

        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Session service error"
        }


def check_sequence_health() -> dict:
    """
    Read (never increment) the counter for the current year.

    Degraded when fewer than 5% of the year's numbers remain.
    """
    start_time = time.time()
    try:
        year = current_year()
        last_number = sequence_service.peek_counter(year)
        remaining = sequence_service.MAX_SEQUENCE - last_number
        details = {"year": str(year), "last_number": last_number, "remaining": remaining}

        if remaining < sequence_service.MAX_SEQUENCE // 20:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "warning": f"Only {remaining} request numbers left for {year}",
                "details": details,
            }
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": details,
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sequence health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Sequence counter error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy (or degraded but operational)
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "request_numbers": check_sequence_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        http_status = 503
    elif "degraded" in statuses:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
