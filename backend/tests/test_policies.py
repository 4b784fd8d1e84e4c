"""
Storage-layer row policy tests.

The application predicates (lifecycle_service) and these row policies are
independent layers; each case below exercises one of them denying while the
other allows.
"""

import pytest

from shopreq.models import SecurityEvent, ShoppingRequest
from shopreq.services import lifecycle_service, policies
from shopreq.services.permission_service import PermissionDeniedError


class TestRequestVisibility:

    def _visible_ids(self, db_session, actor):
        return {r.id for r in policies.visible_requests(db_session.query(ShoppingRequest), actor)}

    def test_requester_sees_own(self, db_session, pending_request, requester):
        assert self._visible_ids(db_session, requester) == {pending_request.id}

    def test_assigned_approver_sees_assigned(self, db_session, pending_request, manager):
        assert self._visible_ids(db_session, manager) == {pending_request.id}

    def test_procurement_sees_everything(self, db_session, pending_request, draft_request, procurement):
        assert self._visible_ids(db_session, procurement) == {pending_request.id, draft_request.id}

    def test_unrelated_user_sees_nothing(self, db_session, pending_request, other_user, other_manager):
        assert self._visible_ids(db_session, other_user) == set()
        assert self._visible_ids(db_session, other_manager) == set()

    def test_draft_not_visible_to_manager_before_submit(self, db_session, draft_request, manager):
        # The approver is only assigned on submit
        assert self._visible_ids(db_session, manager) == set()

    def test_admin_does_not_see_requests(self, db_session, pending_request, admin):
        assert self._visible_ids(db_session, admin) == set()

    def test_inactive_actor_sees_nothing(self, db_session, pending_request, requester):
        requester.is_active = False
        db_session.commit()
        assert self._visible_ids(db_session, requester) == set()
        assert not policies.can_read_request(requester, pending_request)


class TestRowWrites:

    def test_insert_only_as_self(self, db_session, requester, other_user):
        assert policies.can_insert_request(requester, requester.id)
        assert not policies.can_insert_request(requester, other_user.id)

    def test_update_row(self, db_session, pending_request, requester, manager, procurement, other_manager):
        assert policies.can_update_request_row(requester, pending_request)
        assert policies.can_update_request_row(manager, pending_request)
        assert policies.can_update_request_row(procurement, pending_request)
        assert not policies.can_update_request_row(other_manager, pending_request)

    def test_items_only_by_requester(self, db_session, pending_request, requester, manager, procurement):
        assert policies.can_write_items(requester, pending_request)
        assert not policies.can_write_items(manager, pending_request)
        assert not policies.can_write_items(procurement, pending_request)

    def test_enforce_logs_and_raises(self, db_session, requester):
        with pytest.raises(PermissionDeniedError):
            policies.enforce(False, actor=requester, action="edit", resource="shopping_requests:1")

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "POLICY_DENIED"
        assert event.success is False
        assert event.resource == "shopping_requests:1"

    def test_enforce_allows_silently(self, db_session, requester):
        policies.enforce(True, actor=requester, action="edit", resource="shopping_requests:1")
        assert db_session.query(SecurityEvent).count() == 0


class TestProfileVisibility:

    def _visible_emails(self, db_session, actor):
        from shopreq.models import Profile
        return {p.email for p in policies.visible_profiles(db_session.query(Profile), actor)}

    def test_manager_sees_self_and_reports(self, db_session, manager, requester, other_user):
        assert self._visible_emails(db_session, manager) == {manager.email, requester.email}

    def test_user_sees_self(self, db_session, requester):
        assert self._visible_emails(db_session, requester) == {requester.email}

    def test_admin_and_procurement_see_all(self, db_session, requester, admin, procurement):
        expected = self._visible_emails(db_session, admin)
        assert requester.email in expected
        assert self._visible_emails(db_session, procurement) == expected

    def test_profile_update_row(self, db_session, requester, manager, admin):
        assert policies.can_update_profile_row(requester, requester)
        assert policies.can_update_profile_row(admin, requester)
        assert not policies.can_update_profile_row(manager, requester)


class TestDualEnforcement:

    def test_predicate_denies_while_row_policy_allows(self, db_session, pending_request, requester):
        # The requester may update their row but may not approve it
        assert policies.can_update_request_row(requester, pending_request)
        assert not lifecycle_service.can_approve(requester, pending_request)

        with pytest.raises(PermissionDeniedError):
            lifecycle_service.approve_request(pending_request.id, actor=requester)

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "TRANSITION_DENIED"

    def test_row_policy_denies_while_predicate_allows(self, app, db_session, pending_request, other_manager, monkeypatch):
        monkeypatch.setitem(app.config, "APPROVAL_REQUIRES_ASSIGNED_APPROVER", False)
        assert lifecycle_service.can_approve(other_manager, pending_request)
        assert not policies.can_update_request_row(other_manager, pending_request)

        with pytest.raises(PermissionDeniedError):
            lifecycle_service.approve_request(pending_request.id, actor=other_manager)

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "POLICY_DENIED"
        db_session.expire_all()
        assert db_session.get(ShoppingRequest, pending_request.id).status == "pending_approval"
