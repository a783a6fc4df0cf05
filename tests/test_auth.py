"""Tests for api.auth in web mode: bearer tokens, roles and tenant isolation."""

import time
from unittest.mock import patch

import jwt
import pytest
from fastapi.testclient import TestClient

from api.routes import get_secrets, get_store
from main import create_app

SECRET = "test-secret-with-at-least-32-bytes!!"


def token(sub="user-1", company="clinic-a", role="professional", exp_delta=300, **claims):
    payload = {"sub": sub, "exp": int(time.time()) + exp_delta, **claims}
    if company is not None:
        payload["company"] = company
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, SECRET, algorithm="HS256")


def auth(**kwargs):
    return {"Authorization": f"Bearer {token(**kwargs)}"}


@pytest.fixture
def client(db, keychain):
    with patch("api.auth.REQUIRE_AUTH", True), patch("api.auth.AUTH_JWT_SECRET", SECRET):
        app = create_app()
        app.dependency_overrides[get_store] = lambda: db
        app.dependency_overrides[get_secrets] = lambda: keychain
        yield TestClient(app)


class TestTokens:
    def test_health_is_public(self, client):
        assert client.get("/health").status_code == 200

    def test_missing_header(self, client):
        resp = client.get("/patients")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Missing authorization header"

    def test_expired(self, client):
        resp = client.get("/patients", headers=auth(exp_delta=-60))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token expired"

    def test_wrong_secret(self, client):
        bad = jwt.encode(
            {"sub": "u", "company": "c", "exp": int(time.time()) + 60},
            "another-secret-with-at-least-32-bytes", algorithm="HS256",
        )
        resp = client.get("/patients", headers={"Authorization": f"Bearer {bad}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    def test_missing_company(self, client):
        assert client.get("/patients", headers=auth(company=None)).status_code == 401

    def test_valid(self, client):
        resp = client.get("/patients", headers=auth())
        assert resp.status_code == 200
        assert resp.json() == {"items": [], "total": 0}


class TestRoles:
    def test_professional_cannot_read_config(self, client):
        assert client.get("/settings/global-ai-config", headers=auth()).status_code == 403

    def test_unknown_role_is_professional(self, client):
        resp = client.get("/settings/global-ai-config", headers=auth(role="owner"))
        assert resp.status_code == 403

    def test_superadmin(self, client):
        resp = client.get("/settings/global-ai-config", headers=auth(role="superadmin"))
        assert resp.status_code == 200


class TestTenancy:
    def test_patients_isolated(self, client):
        resp = client.post("/patients", json={"name": "Ana"}, headers=auth(company="clinic-a"))
        pid = resp.json()["id"]
        assert resp.json()["created_by"] == "user-1"

        assert client.get(f"/patients/{pid}", headers=auth(company="clinic-a")).status_code == 200
        assert client.get(f"/patients/{pid}", headers=auth(company="clinic-b")).status_code == 404
        assert client.get("/patients", headers=auth(company="clinic-b")).json()["total"] == 0
