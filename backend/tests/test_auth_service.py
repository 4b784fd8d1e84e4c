"""
Profile, password and session tests.
"""

from datetime import timedelta

import pytest

from shopreq.models import Profile, SecurityEvent, SessionToken
from shopreq.services import auth_service, session_service
from shopreq.services.auth_service import PasswordValidationError, ProfileNotFoundError
from shopreq.services.permission_service import PermissionDeniedError
from shopreq.time_utils import utcnow
from shopreq.validation import ConflictError, ValidationError

from conftest import PASSWORD


class TestPasswords:

    @pytest.mark.parametrize(
        "password",
        ["Short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigits!!", "NoSpecial123", 12345678, None],
    )
    def test_weak_passwords(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_and_verify(self, password_hash):
        assert auth_service.verify_password(PASSWORD, password_hash)
        assert not auth_service.verify_password("Wrong123!", password_hash)

    def test_malformed_hash_never_verifies(self):
        assert not auth_service.verify_password(PASSWORD, "not-a-bcrypt-hash")


class TestCreateProfile:

    def test_create(self, db_session, manager):
        profile = auth_service.create_profile(
            email="  New.Person@Example.com ",
            full_name="New Person",
            password=PASSWORD,
            role="user",
            manager_id=manager.id,
            cost_center="CC-100",
        )

        assert profile.email == "new.person@example.com"
        assert profile.manager_id == manager.id
        assert profile.is_active is True
        assert auth_service.verify_password(PASSWORD, profile.password_hash)

    def test_duplicate_email(self, db_session, requester):
        with pytest.raises(ConflictError):
            auth_service.create_profile(email=requester.email.upper(), full_name="Dup", password=PASSWORD)

    def test_duplicate_email_at_commit(self, db_session, requester, monkeypatch):
        # Another writer inserted the email after the lookup
        monkeypatch.setattr(auth_service, "_email_taken", lambda email: False)

        with pytest.raises(ConflictError):
            auth_service.create_profile(email=requester.email, full_name="Racer", password=PASSWORD)
        assert db_session.query(Profile).filter_by(email=requester.email).count() == 1

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"email": "bad-email"},
            {"full_name": "   "},
            {"role": "superuser"},
            {"manager_id": 999999},
            {"manager_id": "1"},
            {"email": 123},
            {"full_name": ["X"]},
        ],
    )
    def test_invalid(self, db_session, kwargs):
        params = {"email": "x@example.com", "full_name": "X", "password": PASSWORD}
        params.update(kwargs)
        with pytest.raises(ValidationError):
            auth_service.create_profile(**params)


class TestManagerHierarchy:

    def test_manager_chain(self, db_session, make_profile):
        top = make_profile("top@example.com", role="manager")
        mid = make_profile("mid@example.com", role="manager", manager=top)
        low = make_profile("low@example.com", manager=mid)

        assert auth_service.manager_chain(low.id) == [mid.id, top.id]
        assert auth_service.manager_chain(top.id) == []

    def test_self_manager_rejected(self, db_session, admin, manager):
        with pytest.raises(ValidationError):
            auth_service.update_profile(manager.id, actor=admin, changes={"manager_id": manager.id})

    def test_cycle_rejected(self, db_session, make_profile, admin):
        top = make_profile("top@example.com", role="manager")
        mid = make_profile("mid@example.com", role="manager", manager=top)
        low = make_profile("low@example.com", role="manager", manager=mid)

        with pytest.raises(ValidationError):
            auth_service.update_profile(top.id, actor=admin, changes={"manager_id": low.id})

        db_session.expire_all()
        assert db_session.get(Profile, top.id).manager_id is None

    def test_corrupted_chain_terminates(self, db_session, make_profile):
        a = make_profile("a@example.com", role="manager")
        b = make_profile("b@example.com", role="manager", manager=a)
        # Bypass the service to plant a cycle
        a.manager_id = b.id
        db_session.commit()

        assert auth_service.manager_chain(a.id) == [b.id]


class TestUpdateProfile:

    def test_admin_changes_role_and_manager(self, db_session, admin, requester, other_manager):
        profile = auth_service.update_profile(
            requester.id, actor=admin,
            changes={"role": "procurement", "manager_id": other_manager.id, "cost_center": "CC-7"},
        )
        assert profile.role == "procurement"
        assert profile.manager_id == other_manager.id
        assert profile.cost_center == "CC-7"

    def test_self_may_change_name(self, db_session, requester):
        profile = auth_service.update_profile(requester.id, actor=requester, changes={"full_name": "Renamed"})
        assert profile.full_name == "Renamed"

    def test_self_may_not_change_role(self, db_session, requester):
        with pytest.raises(PermissionDeniedError):
            auth_service.update_profile(requester.id, actor=requester, changes={"role": "procurement"})

        db_session.expire_all()
        assert db_session.get(Profile, requester.id).role == "user"
        assert db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").count() == 1

    def test_manager_may_not_edit_report(self, db_session, manager, requester):
        with pytest.raises(PermissionDeniedError):
            auth_service.update_profile(requester.id, actor=manager, changes={"full_name": "X"})

    def test_invisible_profile_not_found(self, db_session, requester, other_user):
        with pytest.raises(ProfileNotFoundError):
            auth_service.update_profile(other_user.id, actor=requester, changes={"full_name": "X"})

    def test_unknown_field(self, db_session, admin, requester):
        with pytest.raises(ValidationError):
            auth_service.update_profile(requester.id, actor=admin, changes={"password_hash": "x"})

    def test_admin_cannot_deactivate_self(self, db_session, admin):
        with pytest.raises(ValidationError):
            auth_service.update_profile(admin.id, actor=admin, changes={"is_active": False})

    def test_partial_failure_changes_nothing(self, db_session, admin, requester):
        with pytest.raises(ValidationError):
            auth_service.update_profile(
                requester.id, actor=admin, changes={"role": "manager", "manager_id": requester.id}
            )
        db_session.expire_all()
        assert db_session.get(Profile, requester.id).role == "user"

    def test_deactivation_revokes_sessions(self, db_session, admin, requester):
        _, token = session_service.create_session(requester.id)

        auth_service.update_profile(requester.id, actor=admin, changes={"is_active": False})

        assert session_service.validate_session(token) is None
        assert db_session.query(SessionToken).filter_by(profile_id=requester.id, is_revoked=False).count() == 0


class TestAuthenticate:

    def test_success_sets_last_login(self, db_session, requester):
        profile = auth_service.authenticate(" REQUESTER@example.com ", PASSWORD)
        assert profile is not None and profile.id == requester.id
        assert profile.last_login_at is not None

    def test_wrong_password(self, db_session, requester):
        assert auth_service.authenticate(requester.email, "Wrong123!") is None

    def test_non_string_credentials(self, db_session, requester):
        assert auth_service.authenticate(123, PASSWORD) is None
        assert auth_service.authenticate(requester.email, None) is None

    def test_inactive_profile(self, db_session, make_profile):
        make_profile("gone@example.com", is_active=False)
        assert auth_service.authenticate("gone@example.com", PASSWORD) is None


class TestSessions:

    def test_create_and_validate(self, db_session, requester):
        session, token = session_service.create_session(requester.id, user_agent="pytest")

        assert session.token_hash == session_service.hash_token(token)
        assert token not in session.token_hash
        assert session_service.validate_session(token).id == requester.id

    def test_revoke(self, db_session, requester):
        _, token = session_service.create_session(requester.id)

        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_expired(self, db_session, requester):
        session, token = session_service.create_session(requester.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_idle_timeout(self, db_session, requester):
        session, token = session_service.create_session(requester.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.refresh(session)
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_unknown_token(self, db_session):
        assert session_service.validate_session("deadbeef") is None
