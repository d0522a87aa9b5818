from datetime import timedelta

from jose import jwt

import settings
from security import create_access_token, get_password_hash, verify_password


def test_signup_returns_user_and_token(client):
    res = client.post("/api/auth/signup", json={"email": "New@Kamio.in", "password": "secret123", "name": "New"})
    assert res.status_code == 200
    body = res.json()
    assert body["user"]["email"] == "new@kamio.in"
    assert body["user"]["role"] == "user"
    assert "password_hash" not in body["user"]
    claims = jwt.decode(body["token"], settings.JWT_SECRET, algorithms=[settings.ALGORITHM])
    assert claims["sub"] == body["user"]["id"]
    assert claims["email"] == "new@kamio.in"
    assert claims["role"] == "user"


def test_signup_duplicate_email(client, user):
    res = client.post("/api/auth/signup", json={"email": "ASHA@kamio.in", "password": "secret123", "name": "Asha"})
    assert res.status_code == 409
    assert res.json() == {"message": "User already exists"}


def test_signup_rejects_bad_payload(client):
    res = client.post("/api/auth/signup", json={"email": "not-an-email", "password": "x", "name": ""})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid request data"
    assert res.json()["errors"]


def test_login(client, user):
    res = client.post("/api/auth/login", json={"email": "asha@kamio.in", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == user[0]["id"]


def test_login_failures_share_one_message(client, user):
    wrong_password = client.post("/api/auth/login", json={"email": "asha@kamio.in", "password": "nope"})
    unknown_email = client.post("/api/auth/login", json={"email": "ghost@kamio.in", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid credentials"}


def test_profile_requires_token(client):
    res = client.get("/api/profile")
    assert res.status_code == 401
    assert res.json() == {"message": "Access token required"}


def test_profile(client, user, auth_headers):
    res = client.get("/api/profile", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["email"] == "asha@kamio.in"
    assert "password_hash" not in res.json()


def test_expired_token_is_rejected(client, user):
    token = create_access_token(user[0], expires_delta=timedelta(seconds=-1))
    res = client.get("/api/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_token_for_deleted_user_is_rejected(client, storage, user, auth_headers):
    storage.delete_user(user[0]["id"])
    assert client.get("/api/profile", headers=auth_headers).status_code == 401


def test_role_is_read_from_storage_not_token(client, storage, user, auth_headers):
    assert client.get("/api/admin/orders", headers=auth_headers).status_code == 403
    storage.update_user(user[0]["id"], {"role": "admin"})
    assert client.get("/api/admin/orders", headers=auth_headers).status_code == 200


def test_passwords_are_stored_as_bcrypt_hashes(client, storage):
    client.post("/api/auth/signup", json={"email": "hash@kamio.in", "password": "secret123", "name": "Hash"})
    stored = storage.get_user_by_email("hash@kamio.in")["password_hash"]
    assert stored.startswith("$2b$")
    assert verify_password("secret123", stored)
    assert not verify_password("secret124", stored)
    assert get_password_hash("secret123") != stored
