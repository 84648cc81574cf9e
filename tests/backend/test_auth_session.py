from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from cognifai.auth import issue_session_token, verify_session_token
from cognifai.config import settings
from cognifai.main import create_app
from cognifai.store import get_store


@pytest.fixture()
def client(store, monkeypatch) -> TestClient:
    monkeypatch.setattr(settings, "disable_session_auth", False)
    monkeypatch.setattr(settings, "firebase_project_id", "cognifai-test")
    monkeypatch.setattr(settings, "session_cookie_name", "cg_session")
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    return TestClient(app)


def _stub_verifier(monkeypatch: pytest.MonkeyPatch, claims: dict | None = None, error: Exception | None = None) -> list[dict]:
    from google.oauth2 import id_token

    calls: list[dict] = []

    def _verify(token: str, request: object, audience: str | None = None, clock_skew_in_seconds: int = 0) -> dict:
        calls.append({"token": token, "audience": audience})
        if error is not None:
            raise error
        return dict(claims or {})

    monkeypatch.setattr(id_token, "verify_firebase_token", _verify)
    return calls


def test_protected_routes_require_session_cookie(client) -> None:
    resp = client.get("/api/topics")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Session cookie is missing"


def test_tampered_cookie_is_rejected(client) -> None:
    client.cookies.set("cg_session", issue_session_token("u1") + "x")
    assert client.get("/api/topics").status_code == 401


def test_firebase_login_issues_session_cookie(client, store, monkeypatch) -> None:
    calls = _stub_verifier(
        monkeypatch,
        {"user_id": "firebase-uid-1", "email": "learner@example.com", "name": "Learner"},
    )

    resp = client.post("/api/auth/firebase", json={"id_token": "token-abc"})

    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == "firebase-uid-1"
    assert calls == [{"token": "token-abc", "audience": "cognifai-test"}]
    cookie = resp.cookies.get("cg_session")
    assert cookie
    assert verify_session_token(cookie)["sub"] == "firebase-uid-1"
    assert store.get_user("firebase-uid-1")["email"] == "learner@example.com"

    client.cookies.set("cg_session", cookie)
    created = client.post("/api/topics", json={"title": "Mine"})
    assert created.status_code == 201
    assert created.json()["userId"] == "firebase-uid-1"


def test_invalid_firebase_token_returns_401(client, monkeypatch) -> None:
    _stub_verifier(monkeypatch, error=ValueError("Token expired"))

    resp = client.post("/api/auth/firebase", json={"id_token": "bad"})

    assert resp.status_code == 401


def test_logout_clears_cookie(client) -> None:
    resp = client.post("/api/auth/logout")

    assert resp.status_code == 200
    assert 'cg_session=""' in resp.headers.get("set-cookie", "")
