# Overview: Service-layer operations for the request lifecycle; encapsulates business logic and database work.

"""
Shopping Request Lifecycle Service

================================================================================
PURPOSE: Enforce the draft -> pending_approval -> approved -> completed workflow
================================================================================

STATE MACHINE:
    draft            -> pending_approval                 (requester submits)
    pending_approval -> approved | rejected              (approval authority)
    pending_approval -> cancelled                        (procurement / approver)
    approved         -> completed                        (procurement)
    approved         -> cancelled                        (procurement)
    cancelled        -> draft | pending_approval         (requester edits / resubmits)

    completed, rejected: TERMINAL. Nothing leaves them.

RULES (NON-NEGOTIABLE):
1. The transition graph is checked first (LifecycleError)
2. The application predicate is checked next (PermissionDeniedError)
3. The storage row policy is checked last (PermissionDeniedError)
4. Only then are the status and its side-effect fields written, in one commit
5. A denied or illegal attempt never leaves a partial change behind

APPROVER SCOPE:
    With APPROVAL_REQUIRES_ASSIGNED_APPROVER (default), a manager may only
    approve/reject/cancel requests whose assigned_approver_id is their own.
    Without it, any manager may act on any pending request. Procurement may
    act on any pending request either way.
================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Profile, ShoppingRequest, RequestStatus
from ..permissions import Capability, has_capability
from ..validation import ValidationError
from . import permission_service, policies
from .concurrency import lock_for_update
from .permission_service import PermissionDeniedError
from shopreq.time_utils import utcnow


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED})
EDITABLE_STATUSES = frozenset({RequestStatus.DRAFT, RequestStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.PENDING_APPROVAL}),
    RequestStatus.PENDING_APPROVAL: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.APPROVED: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED}),
    RequestStatus.CANCELLED: frozenset({RequestStatus.DRAFT, RequestStatus.PENDING_APPROVAL}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED: frozenset(),
}

DEFAULT_REJECTION_REASON = "No reason provided"
DEFAULT_CANCELLATION_NOTE = "Cancelled for editing"


class LifecycleError(ValueError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error. It indicates
    that the user attempted an operation that violates business rules.
    """
    pass


class RequestNotFoundError(LookupError):
    """Raised when a request does not exist or is not visible to the actor."""
    pass


def coerce_status(status: "RequestStatus | str") -> RequestStatus:
    """
    Turn a stored/posted status string into a RequestStatus.

    Raises:
        LifecycleError: If the value is not one of the six statuses
    """
    if isinstance(status, RequestStatus):
        return status
    try:
        return RequestStatus(status)
    except ValueError:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: "
            f"{', '.join(s.value for s in RequestStatus)}"
        ) from None


def can_transition(from_status: "RequestStatus | str", to_status: "RequestStatus | str") -> bool:
    """
    Check if a state transition is valid according to the lifecycle rules.

    Saving an editable request without changing its status (draft -> draft,
    cancelled -> cancelled) is allowed; every other same-state move is not.
    """
    from_status = coerce_status(from_status)
    to_status = coerce_status(to_status)

    if from_status == to_status:
        return from_status in EDITABLE_STATUSES

    return to_status in ALLOWED_TRANSITIONS[from_status]


def is_terminal(status: "RequestStatus | str") -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


# ================================================================================
# AUTHORIZATION PREDICATES
# Pure functions of (actor, request); no database access.
# ================================================================================

def _strict(strict: bool | None) -> bool:
    if strict is None:
        return bool(current_app.config.get("APPROVAL_REQUIRES_ASSIGNED_APPROVER", True))
    return strict


def _active(actor: Profile | None) -> bool:
    return actor is not None and bool(actor.is_active)


def _is_assigned_approver(actor: Profile, request: ShoppingRequest) -> bool:
    return request.assigned_approver_id is not None and request.assigned_approver_id == actor.id


def can_approve(actor: Profile, request: ShoppingRequest, *, strict: bool | None = None) -> bool:
    """
    Approve/reject authority.

    status must be pending_approval and the actor needs APPROVE_REQUESTS.
    Without VIEW_ALL_REQUESTS (managers) the actor must also be the
    assigned approver, when strict.
    """
    if not _active(actor) or request.status != RequestStatus.PENDING_APPROVAL.value:
        return False
    if not has_capability(actor.role, Capability.APPROVE_REQUESTS):
        return False
    if has_capability(actor.role, Capability.VIEW_ALL_REQUESTS):
        return True
    return not _strict(strict) or _is_assigned_approver(actor, request)


can_reject = can_approve


def can_complete(actor: Profile, request: ShoppingRequest) -> bool:
    return (
        _active(actor)
        and request.status == RequestStatus.APPROVED.value
        and has_capability(actor.role, Capability.COMPLETE_REQUESTS)
    )


def can_cancel(actor: Profile, request: ShoppingRequest, *, strict: bool | None = None) -> bool:
    """
    Undo path back to an editable state.

    Procurement may cancel pending or approved requests; a manager only
    pending ones (assigned to them, when strict).
    """
    if not _active(actor):
        return False
    if request.status not in (RequestStatus.PENDING_APPROVAL.value, RequestStatus.APPROVED.value):
        return False
    if not has_capability(actor.role, Capability.CANCEL_REQUESTS):
        return False
    if has_capability(actor.role, Capability.VIEW_ALL_REQUESTS):
        return True
    if request.status != RequestStatus.PENDING_APPROVAL.value:
        return False
    return not _strict(strict) or _is_assigned_approver(actor, request)


def can_edit(actor: Profile, request: ShoppingRequest) -> bool:
    """Only the original requester, and only while draft or cancelled."""
    return (
        _active(actor)
        and request.requester_id == actor.id
        and coerce_status(request.status) in EDITABLE_STATUSES
    )


can_submit = can_edit


def available_actions(actor: Profile, request: ShoppingRequest) -> list[str]:
    """Actions the actor may currently take on the request (UI hints only)."""
    actions = []
    if can_edit(actor, request):
        actions.extend(["edit", "submit"])
    if can_approve(actor, request):
        actions.extend(["approve", "reject"])
    if can_complete(actor, request):
        actions.append("complete")
    if can_cancel(actor, request):
        actions.append("cancel")
    return actions


# ================================================================================
# SUBMIT PRECONDITIONS
# ================================================================================

def check_submit_preconditions(requester: Profile, item_count: int) -> int:
    """
    Validate that a request may be submitted for approval.

    Returns:
        The assigned approver's profile id (the requester's manager)

    Raises:
        ValidationError: No line items, no manager, or manager inactive
    """
    if item_count < 1:
        raise ValidationError("At least one line item is required to submit a request")
    if requester.manager_id is None:
        raise ValidationError("An assigned approver (manager) is required to submit a request")
    manager = db.session.get(Profile, requester.manager_id)
    if manager is None or not manager.is_active:
        raise ValidationError("The assigned approver is not an active profile")
    return manager.id


def mark_submitted(request: ShoppingRequest, approver_id: int) -> None:
    """Apply the pending_approval fields (no commit)."""
    request.status = RequestStatus.PENDING_APPROVAL.value
    request.assigned_approver_id = approver_id
    request.submitted_at = utcnow()
    request.approved_by_id = None
    request.approved_at = None
    request.approval_comment = None
    request.cancelled_by_id = None
    request.cancelled_at = None
    request.cancellation_note = None


# ================================================================================
# TRANSITIONS
# ================================================================================

def _resource(request: ShoppingRequest) -> str:
    return f"shopping_requests:{request.id}"


def load_request_for_update(request_id: int) -> ShoppingRequest:
    request = lock_for_update(
        db.session.query(ShoppingRequest).filter_by(id=request_id)
    ).first()
    if request is None:
        raise RequestNotFoundError(f"ShoppingRequest {request_id} not found")
    return request


def _deny(actor: Profile, request: ShoppingRequest, action: str) -> None:
    reason = (
        f"Role '{actor.role}' may not {action} request {request.request_number} "
        f"in status '{request.status}'"
    )
    permission_service.log_security_event(
        profile_id=actor.id,
        event_type="TRANSITION_DENIED",
        success=False,
        resource=_resource(request),
        action=action,
        reason=reason,
    )
    raise PermissionDeniedError(reason)


def _begin_transition(request_id: int, *, actor: Profile, action: str, target: RequestStatus, allowed) -> ShoppingRequest:
    request = load_request_for_update(request_id)

    # Rows outside the actor's SELECT policy cannot be transitioned either
    policies.enforce(
        policies.can_read_request(actor, request),
        actor=actor,
        action=action,
        resource=_resource(request),
    )

    current = coerce_status(request.status)
    if not can_transition(current, target):
        db.session.rollback()
        raise LifecycleError(
            f"Cannot {action} request {request.request_number}: "
            f"current status is '{current.value}'"
        )

    if not allowed(actor, request):
        _deny(actor, request, action)

    policies.enforce(
        policies.can_update_request_row(actor, request),
        actor=actor,
        action=action,
        resource=_resource(request),
    )
    return request


def _finish_transition(request: ShoppingRequest, *, actor: Profile, action: str) -> ShoppingRequest:
    db.session.commit()
    current_app.logger.info(
        "Request %s %s by profile %s; status=%s",
        request.request_number, action, actor.id, request.status,
    )
    return request


def submit_request(request_id: int, *, actor: Profile) -> ShoppingRequest:
    """
    Submit a draft/cancelled request for approval (-> pending_approval).

    Raises:
        RequestNotFoundError: Unknown or invisible request
        LifecycleError: Request is not draft/cancelled
        PermissionDeniedError: Actor is not the requester
        ValidationError: No items or no assigned approver
    """
    request = _begin_transition(
        request_id,
        actor=actor,
        action="submit",
        target=RequestStatus.PENDING_APPROVAL,
        allowed=can_submit,
    )
    policies.enforce(
        policies.can_write_items(actor, request),
        actor=actor,
        action="submit",
        resource=_resource(request),
    )

    try:
        approver_id = check_submit_preconditions(request.requester, len(request.items))
    except ValidationError:
        db.session.rollback()
        raise

    mark_submitted(request, approver_id)
    return _finish_transition(request, actor=actor, action="submitted")


def approve_request(request_id: int, *, actor: Profile, comment: str | None = None) -> ShoppingRequest:
    """
    Approve a pending request (pending_approval -> approved).

    Records approver, timestamp and optional comment.
    """
    request = _begin_transition(
        request_id,
        actor=actor,
        action="approve",
        target=RequestStatus.APPROVED,
        allowed=can_approve,
    )

    request.status = RequestStatus.APPROVED.value
    request.approved_by_id = actor.id
    request.approved_at = utcnow()
    request.approval_comment = (comment or "").strip() or None
    return _finish_transition(request, actor=actor, action="approved")


def reject_request(request_id: int, *, actor: Profile, reason: str | None = None) -> ShoppingRequest:
    """
    Reject a pending request (pending_approval -> rejected). Terminal.

    An empty reason is stored as "No reason provided".
    """
    request = _begin_transition(
        request_id,
        actor=actor,
        action="reject",
        target=RequestStatus.REJECTED,
        allowed=can_reject,
    )

    request.status = RequestStatus.REJECTED.value
    request.rejected_by_id = actor.id
    request.rejected_at = utcnow()
    request.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    return _finish_transition(request, actor=actor, action="rejected")


def complete_request(request_id: int, *, actor: Profile, notes: str | None = None) -> ShoppingRequest:
    """
    Mark an approved request as handled by procurement (approved -> completed). Terminal.
    """
    request = _begin_transition(
        request_id,
        actor=actor,
        action="complete",
        target=RequestStatus.COMPLETED,
        allowed=can_complete,
    )

    request.status = RequestStatus.COMPLETED.value
    request.handled_by_id = actor.id
    request.completed_at = utcnow()
    request.procurement_notes = (notes or "").strip() or None
    return _finish_transition(request, actor=actor, action="completed")


def cancel_request(request_id: int, *, actor: Profile, note: str | None = None) -> ShoppingRequest:
    """
    Send a pending/approved request back to an editable state (-> cancelled).

    An empty note is stored as "Cancelled for editing".
    """
    request = _begin_transition(
        request_id,
        actor=actor,
        action="cancel",
        target=RequestStatus.CANCELLED,
        allowed=can_cancel,
    )

    request.status = RequestStatus.CANCELLED.value
    request.cancelled_by_id = actor.id
    request.cancelled_at = utcnow()
    request.cancellation_note = (note or "").strip() or DEFAULT_CANCELLATION_NOTE
    return _finish_transition(request, actor=actor, action="cancelled")
