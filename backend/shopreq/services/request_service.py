# Overview: Service-layer operations for shopping requests; encapsulates business logic and database work.

"""
Shopping Request Service

Create/edit requests and their line items, and query them for the dashboard.

ITEMS:
    Saving a request replaces its items wholesale: every existing item row is
    deleted and the submitted set is inserted again with fresh line numbers.
    total_amount_cents is recomputed from the new set on every save.

NUMBERING:
    A request number is issued only after every validation and authorization
    check has passed, inside the same transaction as the request insert.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Profile, RequestItem, RequestStatus, ShoppingRequest
from ..permissions import Capability
from ..validation import (
    ITEM_POLICY,
    REQUEST_POLICY,
    ValidationError,
    ConflictError,
    enforce_rules_item,
    enforce_rules_request,
    validate_payload,
)
from . import lifecycle_service, permission_service, policies, sequence_service
from .lifecycle_service import LifecycleError, RequestNotFoundError
from .permission_service import PermissionDeniedError
from sqlalchemy.exc import IntegrityError


MAX_ITEMS_PER_REQUEST = 200


# =============================================================================
# Totals
# =============================================================================

def line_total_cents(quantity, unit_price_cents: int | None) -> int:
    """quantity x unit price, rounded half-up to a whole cent (0 when unpriced)."""
    if not unit_price_cents:
        return 0
    total = Decimal(str(quantity)) * Decimal(unit_price_cents)
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_total_cents(items) -> int:
    """Sum of line totals over items (dicts or RequestItem rows)."""
    total = 0
    for item in items:
        if isinstance(item, dict):
            total += line_total_cents(item["quantity"], item.get("unit_price_cents"))
        else:
            total += line_total_cents(item.quantity, item.unit_price_cents)
    return total


# =============================================================================
# Payload handling
# =============================================================================

def _split_payload(payload: dict | None) -> tuple[dict, list | None]:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    fields = dict(payload)
    items = fields.pop("items", None)
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list")
    return fields, items


def validate_items(items: list) -> list[dict]:
    """Validate and normalize a list of item payloads."""
    if len(items) > MAX_ITEMS_PER_REQUEST:
        raise ValidationError(f"A request cannot have more than {MAX_ITEMS_PER_REQUEST} items")

    cleaned = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        try:
            patch = validate_payload(model=RequestItem, payload=raw, policy=ITEM_POLICY, partial=False)
            enforce_rules_item(patch)
        except ValidationError as exc:
            raise ValidationError(f"Item {index}: {exc}") from None
        cleaned.append(patch)
    return cleaned


def _replace_items(request: ShoppingRequest, items: list[dict]) -> None:
    # Delete first, then insert: line numbers restart at 1
    request.items.clear()
    db.session.flush()

    for line_number, item in enumerate(items, start=1):
        request.items.append(
            RequestItem(
                line_number=line_number,
                total_price_cents=line_total_cents(item["quantity"], item.get("unit_price_cents")),
                **item,
            )
        )
    request.total_amount_cents = compute_total_cents(items)


# =============================================================================
# Create / update
# =============================================================================

def create_request(actor: Profile, payload: dict, *, submit: bool = False) -> ShoppingRequest:
    """
    Create a new request owned by the actor, as draft or submitted.

    Raises:
        ValidationError: Invalid fields/items, or submit preconditions unmet
        PermissionDeniedError: Actor may not create requests
        RequestNumberError: No number could be issued
        ConflictError: Request number collision at insert
    """
    fields, items = _split_payload(payload)
    patch = validate_payload(model=ShoppingRequest, payload=fields, policy=REQUEST_POLICY, partial=False)
    enforce_rules_request(patch)
    cleaned_items = validate_items(items or [])

    permission_service.require_capability(actor, Capability.CREATE_REQUESTS, resource="shopping_requests")
    policies.enforce(
        policies.can_insert_request(actor, actor.id),
        actor=actor,
        action="insert",
        resource="shopping_requests",
    )

    approver_id = None
    if submit:
        approver_id = lifecycle_service.check_submit_preconditions(actor, len(cleaned_items))

    request_number = sequence_service.next_request_number()

    request = ShoppingRequest(
        request_number=request_number,
        requester_id=actor.id,
        status=RequestStatus.DRAFT.value,
        total_amount_cents=0,
        **patch,
    )

    try:
        db.session.add(request)
        _replace_items(request, cleaned_items)

        if submit:
            lifecycle_service.mark_submitted(request, approver_id)

        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"Request number {request_number} is already in use") from exc

    return request


def update_request(request_id: int, actor: Profile, payload: dict, *, submit: bool = False) -> ShoppingRequest:
    """
    Edit a draft/cancelled request and optionally resubmit it.

    Only the original requester may edit. Items, when given, replace the
    existing set; the total is recomputed either way. The resulting status
    is pending_approval when submit is true, draft otherwise.
    """
    fields, items = _split_payload(payload)
    patch = validate_payload(model=ShoppingRequest, payload=fields, policy=REQUEST_POLICY, partial=True)
    enforce_rules_request(patch)
    cleaned_items = validate_items(items) if items is not None else None

    request = lifecycle_service.load_request_for_update(request_id)
    resource = f"shopping_requests:{request.id}"

    policies.enforce(policies.can_read_request(actor, request), actor=actor, action="edit", resource=resource)

    target = RequestStatus.PENDING_APPROVAL if submit else RequestStatus.DRAFT
    current = lifecycle_service.coerce_status(request.status)
    if not lifecycle_service.can_transition(current, target):
        db.session.rollback()
        raise LifecycleError(
            f"Cannot edit request {request.request_number}: current status is '{current.value}'"
        )

    if not lifecycle_service.can_edit(actor, request):
        permission_service.log_security_event(
            profile_id=actor.id,
            event_type="TRANSITION_DENIED",
            success=False,
            resource=resource,
            action="edit",
            reason="Only the requester may edit a draft or cancelled request",
        )
        raise PermissionDeniedError("Only the requester may edit a draft or cancelled request")

    policies.enforce(policies.can_update_request_row(actor, request), actor=actor, action="edit", resource=resource)
    if cleaned_items is not None:
        policies.enforce(policies.can_write_items(actor, request), actor=actor, action="edit", resource=resource)

    approver_id = None
    if submit:
        item_count = len(cleaned_items) if cleaned_items is not None else len(request.items)
        try:
            approver_id = lifecycle_service.check_submit_preconditions(actor, item_count)
        except ValidationError:
            db.session.rollback()
            raise

    for key, value in patch.items():
        setattr(request, key, value)

    if cleaned_items is not None:
        _replace_items(request, cleaned_items)
    else:
        request.total_amount_cents = compute_total_cents(request.items)

    if submit:
        lifecycle_service.mark_submitted(request, approver_id)
    else:
        request.status = RequestStatus.DRAFT.value

    db.session.commit()
    return request


# =============================================================================
# Queries
# =============================================================================

def get_request(request_id: int, actor: Profile) -> ShoppingRequest:
    """Raises RequestNotFoundError for unknown or invisible requests."""
    query = policies.visible_requests(db.session.query(ShoppingRequest), actor)
    request = query.filter(ShoppingRequest.id == request_id).first()
    if request is None:
        raise RequestNotFoundError(f"ShoppingRequest {request_id} not found")
    return request


def list_requests(
    actor: Profile,
    *,
    status: str | None = None,
    request_type: str | None = None,
    search: str | None = None,
    requester_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ShoppingRequest], int]:
    """
    List visible requests, newest first, with dashboard filters.

    search matches request number, justification, client name and preferred
    supplier (case-insensitive substring).
    """
    query = policies.visible_requests(db.session.query(ShoppingRequest), actor)

    if status:
        query = query.filter(ShoppingRequest.status == lifecycle_service.coerce_status(status).value)
    if request_type:
        query = query.filter(ShoppingRequest.request_type == request_type.lower())
    if requester_id is not None:
        query = query.filter(ShoppingRequest.requester_id == requester_id)
    if search:
        term = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                func.lower(ShoppingRequest.request_number).like(pattern, escape="\\"),
                func.lower(ShoppingRequest.justification).like(pattern, escape="\\"),
                func.lower(ShoppingRequest.client_name).like(pattern, escape="\\"),
                func.lower(ShoppingRequest.preferred_supplier).like(pattern, escape="\\"),
            )
        )

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = (
        query.order_by(ShoppingRequest.created_at.desc(), ShoppingRequest.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def request_stats(actor: Profile) -> dict:
    """
    Dashboard counters over the requests visible to the actor.

    awaiting_my_action counts pending requests the actor can approve plus
    approved requests the actor can complete.
    """
    visible = policies.visible_requests(db.session.query(ShoppingRequest), actor)

    by_status = {status.value: 0 for status in RequestStatus}
    amount_by_status = {status.value: 0 for status in RequestStatus}
    rows = (
        visible.with_entities(
            ShoppingRequest.status,
            func.count(ShoppingRequest.id),
            func.coalesce(func.sum(ShoppingRequest.total_amount_cents), 0),
        )
        .group_by(ShoppingRequest.status)
        .all()
    )
    for status, count, amount in rows:
        by_status[status] = count
        amount_by_status[status] = int(amount)

    actionable = visible.filter(
        ShoppingRequest.status.in_(
            [RequestStatus.PENDING_APPROVAL.value, RequestStatus.APPROVED.value]
        )
    ).all()
    awaiting = sum(
        1
        for request in actionable
        if lifecycle_service.can_approve(actor, request) or lifecycle_service.can_complete(actor, request)
    )

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "amount_cents_by_status": amount_by_status,
        "total_amount_cents": sum(amount_by_status.values()),
        "awaiting_my_action": awaiting,
    }
