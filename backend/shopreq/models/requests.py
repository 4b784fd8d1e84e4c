from __future__ import annotations

from enum import Enum

from ..extensions import db
from shopreq.time_utils import to_utc_z


class RequestStatus(str, Enum):
    """
    Lifecycle status of a shopping request.

    Stored as its string value. Transition rules live in
    services/lifecycle_service.py.
    """
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


STATUS_VALUES = tuple(s.value for s in RequestStatus)
REQUEST_TYPES = ("service", "material")
UNITS = ("Kg", "Liter", "Unit", "Piece", "Box", "Meter")


def _in_check(column: str, values: tuple[str, ...]) -> str:
    return "{} IN ({})".format(column, ", ".join(f"'{v}'" for v in values))


class ShoppingRequest(db.Model):
    """
    A shopping request flowing through the approval workflow.

    LIFECYCLE:
        draft -> pending_approval -> approved -> completed
                                  -> rejected
        pending_approval / approved -> cancelled -> draft / pending_approval

    request_number is issued once at creation by sequence_service and never
    changes. total_amount_cents is recomputed from the items on every save.
    """
    __tablename__ = "shopping_requests"
    __table_args__ = (
        db.CheckConstraint(_in_check("status", STATUS_VALUES), name="ck_shopping_requests_status"),
        db.CheckConstraint(_in_check("request_type", REQUEST_TYPES), name="ck_shopping_requests_type"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_shopping_requests_total_nonneg"),
        db.Index("ix_shopping_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    request_number = db.Column(db.String(10), nullable=False, unique=True, index=True)
    requester_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=False, index=True)

    request_type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=RequestStatus.DRAFT.value, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    justification = db.Column(db.Text, nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    preferred_supplier = db.Column(db.String(255), nullable=True)
    client_name = db.Column(db.String(255), nullable=True)
    client_id = db.Column(db.String(64), nullable=True)

    # Copied from the requester's manager on submit
    assigned_approver_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_comment = db.Column(db.Text, nullable=True)

    rejected_by_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    handled_by_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    procurement_notes = db.Column(db.Text, nullable=True)

    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    requester = db.relationship("Profile", foreign_keys=[requester_id], backref=db.backref("requests", lazy=True))
    assigned_approver = db.relationship("Profile", foreign_keys=[assigned_approver_id])
    approved_by = db.relationship("Profile", foreign_keys=[approved_by_id])
    rejected_by = db.relationship("Profile", foreign_keys=[rejected_by_id])
    handled_by = db.relationship("Profile", foreign_keys=[handled_by_id])
    cancelled_by = db.relationship("Profile", foreign_keys=[cancelled_by_id])

    items = db.relationship(
        "RequestItem",
        back_populates="request",
        order_by="RequestItem.line_number",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self, *, include_items: bool = True) -> dict:
        def _summary(profile):
            return profile.to_summary() if profile is not None else None

        data = {
            "id": self.id,
            "request_number": self.request_number,
            "requester_id": self.requester_id,
            "requester": _summary(self.requester),
            "request_type": self.request_type,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "justification": self.justification,
            "delivery_date": self.delivery_date.isoformat() if self.delivery_date else None,
            "preferred_supplier": self.preferred_supplier,
            "client_name": self.client_name,
            "client_id": self.client_id,
            "assigned_approver_id": self.assigned_approver_id,
            "assigned_approver": _summary(self.assigned_approver),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_by_id": self.approved_by_id,
            "approved_by": _summary(self.approved_by),
            "approved_at": to_utc_z(self.approved_at),
            "approval_comment": self.approval_comment,
            "rejected_by_id": self.rejected_by_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "handled_by_id": self.handled_by_id,
            "handled_by": _summary(self.handled_by),
            "completed_at": to_utc_z(self.completed_at),
            "procurement_notes": self.procurement_notes,
            "cancelled_by_id": self.cancelled_by_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_note": self.cancellation_note,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class RequestItem(db.Model):
    """
    One material/service line within a request.

    Replaced wholesale whenever the parent request is saved.
    total_price_cents = round_half_up(quantity * unit_price_cents), 0 when unpriced.
    """
    __tablename__ = "request_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_request_items_quantity_positive"),
        db.CheckConstraint(_in_check("unit", UNITS), name="ck_request_items_unit"),
        db.CheckConstraint("unit_price_cents IS NULL OR unit_price_cents >= 0", name="ck_request_items_price_nonneg"),
        db.UniqueConstraint("request_id", "line_number", name="uq_request_items_request_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("shopping_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number = db.Column(db.Integer, nullable=False)

    item_code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(512), nullable=False)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit = db.Column(db.String(16), nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=True)
    total_price_cents = db.Column(db.Integer, nullable=False, default=0)

    supplier = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    request = db.relationship("ShoppingRequest", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "line_number": self.line_number,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "supplier": self.supplier,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class RequestNumberCounter(db.Model):
    """
    One row per year holding the last issued request sequence number.

    WHY: Request numbers are issued by atomically incrementing this row
    (UPDATE ... RETURNING), so concurrent creators serialize on the row lock
    instead of racing on "max(existing) + 1". Rows are never deleted.
    """
    __tablename__ = "request_number_counters"

    year = db.Column(db.String(4), primary_key=True)
    last_number = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
