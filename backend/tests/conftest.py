"""
Pytest fixtures for shopping request backend tests.

Provides test database setup, profile fixtures for every role, and test client.
"""

import pytest
from shopreq import create_app
from shopreq.extensions import db
from shopreq.models import Profile
from shopreq.services.auth_service import hash_password
from shopreq.services import request_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REQUEST_NUMBER_PREFIX': 'SC',
        'APPROVAL_REQUIRES_ASSIGNED_APPROVER': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash(app):
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_profile(db_session, password_hash):
    """Factory: make_profile("ana@example.com", role="user", manager=boss)."""
    def _make(email, *, role="user", manager=None, full_name=None, is_active=True):
        profile = Profile(
            email=email,
            full_name=full_name or email.split("@")[0].title(),
            password_hash=password_hash,
            role=role,
            manager_id=manager.id if manager is not None else None,
            is_active=is_active,
        )
        db_session.add(profile)
        db_session.commit()
        return profile
    return _make


@pytest.fixture(scope='function')
def manager(make_profile):
    return make_profile("manager@example.com", role="manager")


@pytest.fixture(scope='function')
def other_manager(make_profile):
    return make_profile("other.manager@example.com", role="manager")


@pytest.fixture(scope='function')
def requester(make_profile, manager):
    """A plain user reporting to `manager`."""
    return make_profile("requester@example.com", role="user", manager=manager)


@pytest.fixture(scope='function')
def other_user(make_profile, other_manager):
    return make_profile("other.user@example.com", role="user", manager=other_manager)


@pytest.fixture(scope='function')
def procurement(make_profile):
    return make_profile("procurement@example.com", role="procurement")


@pytest.fixture(scope='function')
def admin(make_profile):
    return make_profile("admin@example.com", role="admin")


def item_payload(**overrides) -> dict:
    item = {
        "item_code": "MAT-001",
        "description": "Steel bolts M8",
        "quantity": "10",
        "unit": "Box",
        "unit_price_cents": 250,
    }
    item.update(overrides)
    return item


def request_payload(items=None, **overrides) -> dict:
    payload = {
        "request_type": "material",
        "justification": "Maintenance stock",
        "items": [item_payload()] if items is None else items,
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope='function')
def pending_request(requester):
    """A request submitted by `requester`, assigned to their manager."""
    return request_service.create_request(requester, request_payload(), submit=True)


@pytest.fixture(scope='function')
def draft_request(requester):
    return request_service.create_request(requester, request_payload(), submit=False)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a profile."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def login_headers(client, profile) -> dict:
    return auth_headers(get_auth_token(client, profile.email))
