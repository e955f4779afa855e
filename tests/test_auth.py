from datetime import timedelta

import pytest
from jose import jwt

from config import ALGORITHM, SECRET_KEY
from errors import Unauthorized
from security import create_access_token, decode_access_token, hash_password, verify_password


def test_password_hash_roundtrip():
    """Hashed secret verifies, wrong secret does not"""
    hashed = hash_password("hunter2")
    assert hashed != "hunter2"
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)
    assert not verify_password("hunter2", "")


def test_token_carries_user_and_seven_day_expiry():
    token = create_access_token("abc")
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    assert payload["sub"] == "abc"
    assert decode_access_token(token) == "abc"


def test_expired_token_rejected():
    token = create_access_token("abc", expires_delta=timedelta(seconds=-1))
    with pytest.raises(Unauthorized):
        decode_access_token(token)


def test_garbage_token_rejected():
    with pytest.raises(Unauthorized):
        decode_access_token("not-a-jwt")
    with pytest.raises(Unauthorized):
        decode_access_token(None)


def test_signup_then_login(client):
    res = client.post(
        "/signup",
        json={"name": "Ann", "email": "ann@example.com", "password": "pw123456", "school": "Hill"},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "Signup successful"
    assert body["token"] and body["user_id"]

    res = client.post("/login", json={"email": "ann@example.com", "password": "pw123456"})
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["name"] == "Ann"
    assert user["school"] == "Hill"
    assert "password" not in user


def test_signup_duplicate_email(client):
    payload = {"name": "Ann", "email": "ann@example.com", "password": "pw", "school": "Hill"}
    assert client.post("/signup", json=payload).status_code == 201
    res = client.post("/signup", json=payload)
    assert res.status_code == 400
    assert res.json()["error"] == "User already exists"


def test_signup_missing_field_is_validation_error(client):
    res = client.post("/signup", json={"name": "Ann", "email": "ann@example.com", "password": "pw"})
    assert res.status_code == 400
    assert res.json()["error"] == "Missing parameters"


def test_login_wrong_password(client, make_user):
    user = make_user("Ben")
    res = client.post("/login", json={"email": user["email"], "password": "nope"})
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid credentials"


def test_protected_route_requires_token(client):
    res = client.get("/profile")
    assert res.status_code == 401
    assert res.json()["error"] == "Unauthorized"

    res = client.get("/profile", headers={"Authorization": "Bearer junk"})
    assert res.status_code == 401


def test_plain_token_header_accepted(client, make_user):
    user = make_user("Cat")
    res = client.get("/profile", headers={"token": user["token"]})
    assert res.status_code == 200
    assert res.json()["id"] == user["id"]


def test_token_for_missing_user_rejected(client):
    token = create_access_token("5f0000000000000000000000")
    res = client.get("/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401
