"""Pytest configuration: session-less API access and an in-memory Firestore."""

import os
import sys
from pathlib import Path

# Disable session authentication by default so API tests can call endpoints without
# provisioning cookies. Individual tests can override this via monkeypatch when needed.
os.environ.setdefault("DISABLE_SESSION_AUTH", "true")
# Provide a deterministic yet secure-length session secret for tests to satisfy
# 起動時バリデーション。実運用では `.env` で個別に乱数値を設定すること。
os.environ.setdefault("SESSION_SECRET_KEY", "S9kD2fH5jL8pQ1tV4yX7zB0cN3mR6wA9")
os.environ.setdefault("STRICT_MODE", "false")
os.environ.setdefault("FIREBASE_PROJECT_ID", "cognifai-test")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key-0123456789")

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "apps" / "backend"))

import pytest  # noqa: E402

from firestore_fakes import FakeFirestoreClient  # noqa: E402


@pytest.fixture()
def fake_client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture()
def store(fake_client):
    from cognifai.store import AppFirestoreStore

    return AppFirestoreStore(client=fake_client)
