from unittest.mock import patch

import pytest

from app.core.auth import hash_password, decode_token

ROUTES = "app.api.routes.auth_routes"


@pytest.fixture
def auth_db(fake_db):
    with patch(f"{ROUTES}.get_db_session", return_value=fake_db.context):
        yield fake_db.session


def test_register_candidate(client, auth_db):
    auth_db.execute.return_value.fetchone.return_value = None
    auth_db.execute.return_value.scalar.return_value = "new-user-id"

    response = client.post("/api/auth/register", json={"email": "Alice@Example.com", "name": "Alice"})

    assert response.status_code == 201
    body = response.json()
    assert body["user_id"] == "new-user-id"
    assert len(body["invitation_token"]) > 20
    statements = [str(c.args[0]) for c in auth_db.execute.call_args_list]
    assert any("INSERT INTO candidate_profiles" in s for s in statements)
    assert any("INSERT INTO user_invitations" in s for s in statements)
    # stored lowercased
    assert auth_db.execute.call_args_list[0].args[1] == {"email": "alice@example.com"}


def test_register_duplicate_email(client, auth_db):
    auth_db.execute.return_value.fetchone.return_value = ("existing-id",)
    response = client.post("/api/auth/register", json={"email": "alice@example.com", "name": "Alice"})
    assert response.status_code == 409


def test_recruiter_needs_company(client, auth_db):
    response = client.post("/api/auth/register",
                           json={"email": "rh@acme.fr", "name": "Bruno", "role": "RECRUITER"})
    assert response.status_code == 400
    auth_db.execute.assert_not_called()


def test_recruiter_registration_creates_membership(client, auth_db):
    auth_db.execute.return_value.fetchone.return_value = None
    auth_db.execute.return_value.scalar.return_value = "rh-id"

    with patch(f"{ROUTES}.get_or_create_company", return_value={"id": "company-id"}) as company, \
            patch(f"{ROUTES}.create_membership") as membership:
        response = client.post("/api/auth/register", json={
            "email": "rh@acme.fr", "name": "Bruno", "role": "RECRUITER",
            "company": {"name": "Acme", "domain": "acme.fr"}
        })

    assert response.status_code == 201
    assert company.call_args.args[1:3] == ("Acme", "acme.fr")
    membership.assert_called_once_with(auth_db, "rh-id", "company-id", role="ADMIN_RH", is_primary=True)


def test_admin_self_registration_is_refused(client, auth_db):
    response = client.post("/api/auth/register",
                           json={"email": "x@example.com", "name": "Mallory", "role": "ADMIN"})
    assert response.status_code == 400


def test_set_password_invalid_token(client):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        response = client.post("/api/auth/set-password", json={"token": "nope", "password": "secret1"})
    assert response.status_code == 400


@pytest.mark.parametrize("invitation,message", [
    ({"used_at": "2024-01-01", "expired": False, "is_active": False}, "déjà été utilisé"),
    ({"used_at": None, "expired": True, "is_active": False}, "expiré"),
    ({"used_at": None, "expired": False, "is_active": True}, "déjà activé"),
])
def test_set_password_rejected_invitations(client, invitation, message):
    row = {"id": "inv-1", "user_id": "user-1", **invitation}
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[row]):
        response = client.post("/api/auth/set-password", json={"token": "tok", "password": "secret1"})
    assert response.status_code == 400
    assert message in response.json()["detail"]


def test_set_password_activates_account(client, auth_db):
    row = {"id": "inv-1", "user_id": "user-1", "used_at": None, "expired": False, "is_active": False}
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[row]):
        response = client.post("/api/auth/set-password", json={"token": "tok", "password": "secret1"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert auth_db.execute.call_count == 2


def test_set_password_too_short(client):
    response = client.post("/api/auth/set-password", json={"token": "tok", "password": "123"})
    assert response.status_code == 400


def login_row(**overrides):
    row = {
        "id": "user-1", "role": "CANDIDATE", "name": "Alice", "email": "alice@example.com",
        "password_hash": hash_password("secret1"), "verified": True, "is_active": True,
        "city": "Paris", "deleted_at": None
    }
    row.update(overrides)
    return row


def test_login(client):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[login_row()]):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})

    assert response.status_code == 200
    body = response.json()
    assert decode_token(body["access_token"])["sub"] == "user-1"
    assert "password_hash" not in body["user"]
    assert body["user"]["memberships"] == []


def test_login_wrong_password(client):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[login_row()]):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
    assert response.status_code == 401


def test_login_unknown_email(client):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[]):
        response = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "x"})
    assert response.status_code == 401


def test_login_inactive_account(client):
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[login_row(is_active=False)]):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})
    assert response.status_code == 403


def test_recruiter_login_includes_memberships(client, recruiter_user):
    row = login_row(id=recruiter_user["id"], role="RECRUITER")
    with patch(f"{ROUTES}.execute_raw_sql", return_value=[row]), \
            patch(f"{ROUTES}.get_user_memberships", return_value=recruiter_user["memberships"]):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})
    assert response.json()["user"]["memberships"][0]["company_status"] == "VERIFIED"


def test_verify(client, login_as, candidate_user):
    login_as(candidate_user)
    response = client.get("/api/auth/verify")
    assert response.status_code == 200
    assert response.json() == {"valid": True, "user": {k: v for k, v in candidate_user.items() if k != "deleted_at"}}


def test_verify_requires_token(client):
    response = client.get("/api/auth/verify")
    assert response.status_code in (401, 403)
