import time

import pytest
from jose import jwt

from bookstore import security
from bookstore.security import Capability, Role, has_capability, make_access_token, decode_access_token


def test_token_claims():
    token, exp = make_access_token(
        user_id=7, username="alice", email="alice@example.com", role=Role.ADMIN, full_name="Alice Tester"
    )
    claims = decode_access_token(token)

    assert claims["sub"] == "7"
    assert claims["username"] == "alice"
    assert claims["email"] == "alice@example.com"
    assert claims["role"] == "admin"
    assert claims["name"] == "Alice Tester"
    assert claims["exp"] == exp
    assert claims["exp"] - claims["iat"] == security.JWT_EXPIRE_HOURS * 3600


@pytest.mark.parametrize(
    "role, capability, expected",
    [
        (Role.ADMIN, Capability.MANAGE_CATALOG, True),
        (Role.ADMIN, Capability.MANAGE_ORDERS, True),
        (Role.ADMIN, Capability.VIEW_ALL_ORDERS, True),
        (Role.CUSTOMER, Capability.MANAGE_CATALOG, False),
        (Role.CUSTOMER, Capability.VIEW_ALL_ORDERS, False),
    ],
)
def test_capabilities(role, capability, expected):
    assert has_capability(role, capability) is expected


def test_unknown_role_falls_back_to_customer():
    assert Role.parse("ADMIN") is Role.ADMIN
    assert Role.parse("superuser") is Role.CUSTOMER


def test_password_hash_round_trip():
    hashed = security.hash_password("correct horse")
    assert hashed != "correct horse"
    assert security.verify_password("correct horse", hashed)
    assert not security.verify_password("wrong horse", hashed)


class TestBearerValidation:
    def test_expired_token(self, client):
        now = int(time.time())
        token = jwt.encode(
            {"sub": "1", "role": "customer", "iat": now - 7200, "exp": now - 3600},
            security.JWT_SECRET,
            algorithm=security.ALGO,
        )
        r = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Token expired"

    def test_bad_signature(self, client):
        token = jwt.encode({"sub": "1", "role": "admin"}, "not-the-secret", algorithm=security.ALGO)
        r = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Invalid token"

    def test_token_without_subject(self, client):
        token = jwt.encode({"role": "admin"}, security.JWT_SECRET, algorithm=security.ALGO)
        r = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401

    def test_wrong_scheme(self, client):
        r = client.get("/orders", headers={"Authorization": "Basic abc"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Missing bearer token"
