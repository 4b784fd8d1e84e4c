"""
Request service tests: create/edit, item replacement, totals, queries.
"""

from decimal import Decimal

import pytest

from shopreq.models import RequestItem, ShoppingRequest
from shopreq.services import lifecycle_service, request_service, sequence_service
from shopreq.services.lifecycle_service import LifecycleError, RequestNotFoundError
from shopreq.services.permission_service import PermissionDeniedError
from shopreq.validation import ValidationError

from conftest import item_payload, request_payload


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:

    @pytest.mark.parametrize(
        "quantity,price,expected",
        [
            ("3", 1000, 3000),
            ("5", None, 0),
            ("0.5", 199, 100),     # 99.5 rounds half-up
            ("2.25", 100, 225),
            ("1.01", 333, 336),    # 336.33
            ("0.01", 1, 0),
        ],
    )
    def test_line_total(self, quantity, price, expected):
        assert request_service.line_total_cents(Decimal(quantity), price) == expected

    def test_compute_total_over_dicts(self):
        items = [
            {"quantity": Decimal("3"), "unit_price_cents": 1000},
            {"quantity": Decimal("5")},
        ]
        assert request_service.compute_total_cents(items) == 3000


# =============================================================================
# CREATE
# =============================================================================


class TestCreateRequest:

    def test_total_with_unpriced_item(self, db_session, requester):
        payload = request_payload(items=[
            item_payload(item_code="A", quantity="3", unit_price_cents=1000),
            item_payload(item_code="B", quantity="5", unit_price_cents=None),
        ])

        req = request_service.create_request(requester, payload)

        assert req.total_amount_cents == 3000
        assert [i.line_number for i in req.items] == [1, 2]
        assert [i.total_price_cents for i in req.items] == [3000, 0]

    def test_creates_draft_with_number(self, db_session, requester):
        from shopreq.time_utils import current_year

        req = request_service.create_request(requester, request_payload())

        assert req.status == "draft"
        assert req.requester_id == requester.id
        assert req.request_number == f"SC{current_year()}0001"
        assert req.assigned_approver_id is None
        assert req.submitted_at is None

    def test_numbers_increase_across_requests(self, db_session, requester):
        first = request_service.create_request(requester, request_payload())
        second = request_service.create_request(requester, request_payload())

        assert sequence_service.parse_request_number(second.request_number)[2] == \
            sequence_service.parse_request_number(first.request_number)[2] + 1

    def test_create_and_submit(self, db_session, requester, manager):
        req = request_service.create_request(requester, request_payload(), submit=True)

        assert req.status == "pending_approval"
        assert req.assigned_approver_id == manager.id
        assert req.submitted_at is not None

    def test_request_type_is_normalized(self, db_session, requester):
        req = request_service.create_request(requester, request_payload(request_type="Service"))
        assert req.request_type == "service"

    @pytest.mark.parametrize(
        "payload",
        [
            {"items": []},                                              # missing request_type
            request_payload(request_type="equipment"),
            request_payload(request_number="SC20250001"),               # server-issued only
            request_payload(requester_id=1),
            request_payload(status="approved"),
            request_payload(total_amount_cents=5),
            request_payload(delivery_date="next week"),
            request_payload(items=[item_payload(quantity="0")]),
            request_payload(items=[item_payload(quantity="-1")]),
            request_payload(items=[item_payload(quantity="1.005")]),
            request_payload(items=[item_payload(quantity="1e30")]),
            request_payload(items=[item_payload(quantity="100000000")]),
            request_payload(items=[item_payload(unit="Ton")]),
            request_payload(items=[item_payload(unit_price_cents=-1)]),
            request_payload(items=[item_payload(unit_price_cents=1.5)]),
            request_payload(items=[{"item_code": "X", "quantity": "1", "unit": "Box"}]),
            request_payload(items="not a list"),
            request_payload(items=["not an object"]),
        ],
    )
    def test_invalid_payload(self, db_session, requester, payload):
        with pytest.raises(ValidationError):
            request_service.create_request(requester, payload)

        # Nothing persisted and no number consumed
        assert db_session.query(ShoppingRequest).count() == 0
        assert sequence_service.peek_counter() == 0

    def test_submit_without_items_consumes_no_number(self, db_session, requester):
        with pytest.raises(ValidationError):
            request_service.create_request(requester, request_payload(items=[]), submit=True)

        assert db_session.query(ShoppingRequest).count() == 0
        assert sequence_service.peek_counter() == 0

    def test_submit_without_manager(self, db_session, make_profile):
        loner = make_profile("loner@example.com")
        with pytest.raises(ValidationError):
            request_service.create_request(loner, request_payload(), submit=True)

    def test_submit_with_inactive_manager(self, db_session, requester, manager):
        manager.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            request_service.create_request(requester, request_payload(), submit=True)

    def test_inactive_profile_cannot_create(self, db_session, requester):
        requester.is_active = False
        db_session.commit()

        with pytest.raises(PermissionDeniedError):
            request_service.create_request(requester, request_payload())
        assert db_session.query(ShoppingRequest).count() == 0

    def test_too_many_items(self, db_session, requester, monkeypatch):
        monkeypatch.setattr(request_service, "MAX_ITEMS_PER_REQUEST", 2)
        with pytest.raises(ValidationError):
            request_service.create_request(requester, request_payload(items=[item_payload()] * 3))


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateRequest:

    def test_items_are_replaced_wholesale(self, db_session, draft_request, requester):
        request_service.update_request(draft_request.id, requester, {
            "items": [
                item_payload(item_code="NEW-1", quantity="2", unit_price_cents=500),
                item_payload(item_code="NEW-2", quantity="1", unit_price_cents=None),
            ],
        })

        db_session.expire_all()
        items = db_session.query(RequestItem).filter_by(request_id=draft_request.id).order_by(RequestItem.line_number).all()
        assert [(i.line_number, i.item_code) for i in items] == [(1, "NEW-1"), (2, "NEW-2")]
        assert db_session.get(ShoppingRequest, draft_request.id).total_amount_cents == 1000

    def test_total_matches_items_after_every_save(self, db_session, draft_request, requester):
        for items in (
            [item_payload(quantity="1", unit_price_cents=100)],
            [item_payload(quantity="4", unit_price_cents=125), item_payload(quantity="2")],
            [],
        ):
            req = request_service.update_request(draft_request.id, requester, {"items": items})
            expected = sum(
                request_service.line_total_cents(i.quantity, i.unit_price_cents) for i in req.items
            )
            assert req.total_amount_cents == expected
            assert len(req.items) == len(items)

    def test_fields_without_items_keep_items(self, db_session, draft_request, requester):
        req = request_service.update_request(draft_request.id, requester, {
            "justification": "Updated",
            "client_name": "  ",
        })

        assert req.justification == "Updated"
        assert req.client_name is None
        assert len(req.items) == 1
        assert req.total_amount_cents == 2500
        assert req.request_number == draft_request.request_number

    def test_edit_and_resubmit_cancelled(self, db_session, pending_request, requester, manager):
        lifecycle_service.cancel_request(pending_request.id, actor=manager)

        req = request_service.update_request(
            pending_request.id, requester,
            {"items": [item_payload(quantity="1", unit_price_cents=100)]},
            submit=True,
        )

        assert req.status == "pending_approval"
        assert req.total_amount_cents == 100
        assert req.assigned_approver_id == manager.id

    def test_saving_cancelled_without_submit_returns_to_draft(self, db_session, pending_request, requester, manager):
        lifecycle_service.cancel_request(pending_request.id, actor=manager)

        req = request_service.update_request(pending_request.id, requester, {"justification": "Fixing"})
        assert req.status == "draft"

    def test_pending_request_cannot_be_edited(self, db_session, pending_request, requester):
        with pytest.raises(LifecycleError):
            request_service.update_request(pending_request.id, requester, {"justification": "x"})

    def test_only_requester_edits(self, db_session, draft_request, procurement):
        with pytest.raises(PermissionDeniedError):
            request_service.update_request(draft_request.id, procurement, {"justification": "x"})

        db_session.expire_all()
        assert db_session.get(ShoppingRequest, draft_request.id).justification == "Maintenance stock"

    def test_invisible_request_is_denied(self, db_session, draft_request, other_user):
        with pytest.raises(PermissionDeniedError):
            request_service.update_request(draft_request.id, other_user, {"justification": "x"})

    def test_invalid_items_leave_request_untouched(self, db_session, draft_request, requester):
        with pytest.raises(ValidationError):
            request_service.update_request(draft_request.id, requester, {
                "justification": "changed",
                "items": [item_payload(quantity="0")],
            })

        db_session.expire_all()
        req = db_session.get(ShoppingRequest, draft_request.id)
        assert req.justification == "Maintenance stock"
        assert len(req.items) == 1

    def test_resubmit_with_empty_items_fails(self, db_session, draft_request, requester):
        with pytest.raises(ValidationError):
            request_service.update_request(draft_request.id, requester, {"items": []}, submit=True)

        db_session.expire_all()
        req = db_session.get(ShoppingRequest, draft_request.id)
        assert req.status == "draft"
        assert len(req.items) == 1

    def test_unknown_request(self, db_session, requester):
        with pytest.raises(RequestNotFoundError):
            request_service.update_request(424242, requester, {"justification": "x"})


# =============================================================================
# QUERIES
# =============================================================================


class TestQueries:

    def test_get_invisible_request_is_not_found(self, db_session, draft_request, other_user):
        with pytest.raises(RequestNotFoundError):
            request_service.get_request(draft_request.id, other_user)

    def test_get_own_request(self, db_session, draft_request, requester):
        assert request_service.get_request(draft_request.id, requester).id == draft_request.id

    def test_list_filters(self, db_session, requester, procurement):
        material = request_service.create_request(requester, request_payload(client_name="Acme Mining"))
        service = request_service.create_request(
            requester, request_payload(request_type="service", justification="Crane hire"), submit=True
        )

        rows, total = request_service.list_requests(procurement, request_type="service")
        assert total == 1 and rows[0].id == service.id

        rows, total = request_service.list_requests(procurement, status="draft")
        assert [r.id for r in rows] == [material.id]

        rows, total = request_service.list_requests(procurement, search="acme")
        assert [r.id for r in rows] == [material.id]

        rows, total = request_service.list_requests(procurement, search=service.request_number.lower())
        assert [r.id for r in rows] == [service.id]

        rows, total = request_service.list_requests(procurement, requester_id=requester.id, limit=1)
        assert total == 2
        assert len(rows) == 1

    def test_search_wildcards_are_literal(self, db_session, requester, procurement):
        plain = request_service.create_request(requester, request_payload(justification="Gloves"))
        marked = request_service.create_request(requester, request_payload(justification="50% off_cut"))

        rows, total = request_service.list_requests(procurement, search="%")
        assert total == 1 and rows[0].id == marked.id

        rows, total = request_service.list_requests(procurement, search="_")
        assert [r.id for r in rows] == [marked.id]

        assert request_service.list_requests(procurement, search="gloves")[0][0].id == plain.id

    def test_list_unknown_status(self, db_session, procurement):
        with pytest.raises(LifecycleError):
            request_service.list_requests(procurement, status="archived")

    def test_list_scoped_to_visibility(self, db_session, requester, other_user, procurement):
        request_service.create_request(requester, request_payload())
        request_service.create_request(other_user, request_payload())

        assert request_service.list_requests(requester)[1] == 1
        assert request_service.list_requests(other_user)[1] == 1
        assert request_service.list_requests(procurement)[1] == 2

    def test_stats(self, db_session, requester, manager, procurement):
        request_service.create_request(requester, request_payload())
        pending = request_service.create_request(requester, request_payload(), submit=True)
        approved = request_service.create_request(requester, request_payload(), submit=True)
        lifecycle_service.approve_request(approved.id, actor=manager)

        stats = request_service.request_stats(procurement)
        assert stats["total"] == 3
        assert stats["by_status"]["draft"] == 1
        assert stats["by_status"]["pending_approval"] == 1
        assert stats["by_status"]["approved"] == 1
        assert stats["by_status"]["completed"] == 0
        assert stats["total_amount_cents"] == 3 * 2500
        # procurement can approve the pending one and complete the approved one
        assert stats["awaiting_my_action"] == 2

        manager_stats = request_service.request_stats(manager)
        assert manager_stats["total"] == 2
        assert manager_stats["awaiting_my_action"] == 1
        assert pending.id != approved.id
