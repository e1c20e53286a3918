"""
Shared fixtures.

The API tests never reach PostgreSQL: each test patches execute_raw_sql
(or get_db_session) in the module under test and overrides
get_current_user with one of the user fixtures below.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.core.auth import get_current_user


def make_responder(*rules, default=None):
    """
    side_effect for a patched execute_raw_sql.

    rules are (sql_fragment, result) pairs; the first fragment found in the
    SQL wins. result may be a callable taking the params dict.
    """
    def respond(sql, params=None):
        for fragment, result in rules:
            if fragment in sql:
                return result(params or {}) if callable(result) else result
        return [] if default is None else default
    return respond


@pytest.fixture
def sql_responder():
    return make_responder


@pytest.fixture
def fake_db():
    """A session mock plus the context manager get_db_session() should return."""
    session = MagicMock()
    context = MagicMock()
    context.__enter__.return_value = session
    # exceptions raised inside the block must propagate
    context.__exit__.return_value = False
    return SimpleNamespace(session=session, context=context)


@pytest.fixture
def client():
    # No context manager: startup (migrations, France Travail loop) does not run
    return TestClient(app)


@pytest.fixture
def login_as():
    def _login(user: dict) -> dict:
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    yield _login
    app.dependency_overrides.clear()


@pytest.fixture
def candidate_user():
    return {
        "id": "11111111-1111-1111-1111-111111111111",
        "email": "alice@example.com",
        "name": "Alice Martin",
        "role": "CANDIDATE",
        "city": "Paris",
        "is_active": True,
        "deleted_at": None,
        "memberships": [],
    }


@pytest.fixture
def recruiter_user():
    return {
        "id": "22222222-2222-2222-2222-222222222222",
        "email": "rh@acme.fr",
        "name": "Bruno RH",
        "role": "RECRUITER",
        "city": "Lyon",
        "is_active": True,
        "deleted_at": None,
        "memberships": [{
            "company_id": "cccccccc-cccc-cccc-cccc-cccccccccccc",
            "role_in_company": "ADMIN_RH",
            "is_primary": True,
            "company_name": "Acme",
            "company_status": "VERIFIED",
        }],
    }


@pytest.fixture
def pending_recruiter_user(recruiter_user):
    user = dict(recruiter_user)
    user["memberships"] = [{**recruiter_user["memberships"][0], "company_status": "PENDING"}]
    return user


@pytest.fixture
def admin_user():
    return {
        "id": "33333333-3333-3333-3333-333333333333",
        "email": "admin@careerboost.fr",
        "name": "Admin",
        "role": "ADMIN",
        "city": None,
        "is_active": True,
        "deleted_at": None,
        "memberships": [],
    }
