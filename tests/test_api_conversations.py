"""
REST API (/v1/conversations, /v1/users, /v1/health) のテスト
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import create_user
from solace.adapters.storage.memory import InMemoryConversationStore
from solace.api.dependencies import (
    get_verifier,
    reset_dependencies,
    set_admission_controller,
    set_analysis_provider,
    set_response_generator,
    set_store,
)
from solace.api.main import create_app
from solace.domain.models.user import UserRole
from solace.domain.services.admission import AdmissionController, SlidingWindowRateLimiter
from solace.domain.services.analysis import KeywordAnalysisProvider
from solace.domain.services.conversation import GREETING
from solace.domain.services.responses import TemplateResponseGenerator


@pytest.fixture
def api_store():
    """テスト用の依存性を設定"""
    reset_dependencies()
    store = InMemoryConversationStore()
    set_store(store)
    set_analysis_provider(KeywordAnalysisProvider())
    set_response_generator(TemplateResponseGenerator())
    asyncio.run(create_user(store, "alice"))
    asyncio.run(create_user(store, "bob"))
    asyncio.run(create_user(store, "root", role=UserRole.ADMIN))
    yield store
    reset_dependencies()


@pytest.fixture
def client(api_store):
    with TestClient(create_app()) as test_client:
        yield test_client


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {get_verifier().issue_token(user_id)}"}


class TestAuthentication:
    """認証のテスト"""

    def test_missing_token(self, client):
        response = client.get("/v1/conversations")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["detail"]["message"] == "Authentication failed"

    def test_invalid_token(self, client):
        response = client.get("/v1/conversations", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_inactive_user(self, client, api_store):
        asyncio.run(api_store.set_user_active("alice", False))

        response = client.get("/v1/conversations", headers=auth("alice"))

        assert response.status_code == 401


class TestConversations:
    """会話エンドポイントのテスト"""

    def test_start_conversation(self, client):
        """開始すると挨拶メッセージが付く"""
        response = client.post(
            "/v1/conversations",
            json={"title": "Tonight", "initialMood": "anxious"},
            headers=auth("alice"),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Tonight"
        assert data["mood_start"] == "anxious"
        assert data["status"] == "active"
        assert data["user_id"] == "alice"

        details = client.get(f"/v1/conversations/{data['id']}", headers=auth("alice")).json()
        assert details["messages"][0]["content"] == GREETING
        assert details["messages"][0]["role"] == "assistant"

    def test_start_with_invalid_mood(self, client):
        response = client.post(
            "/v1/conversations", json={"initialMood": "ecstatic"}, headers=auth("alice")
        )
        assert response.status_code == 422

    def test_list_conversations(self, client):
        for _ in range(2):
            client.post("/v1/conversations", json={}, headers=auth("alice"))
        client.post("/v1/conversations", json={}, headers=auth("bob"))

        response = client.get("/v1/conversations", headers=auth("alice"))

        assert response.status_code == 200
        data = response.json()
        assert len(data["conversations"]) == 2
        assert data["conversations"][0]["message_count"] == 1
        assert data["limit"] == 10
        assert data["offset"] == 0

    def test_list_limit_validation(self, client):
        response = client.get("/v1/conversations?limit=0", headers=auth("alice"))
        assert response.status_code == 422

    def test_foreign_conversation_is_not_found(self, client):
        """他人の会話は 404"""
        conversation = client.post("/v1/conversations", json={}, headers=auth("bob")).json()

        response = client.get(f"/v1/conversations/{conversation['id']}", headers=auth("alice"))

        assert response.status_code == 404
        assert response.json()["detail"] == {
            "error": "NotFound",
            "message": "Conversation not found",
        }

    def test_end_conversation(self, client):
        conversation = client.post("/v1/conversations", json={}, headers=auth("alice")).json()

        response = client.post(
            f"/v1/conversations/{conversation['id']}/end",
            json={"endMood": "happy"},
            headers=auth("alice"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["mood_end"] == "happy"
        assert data["summary"].startswith("Conversation with 1 messages")

    def test_end_without_body(self, client):
        conversation = client.post("/v1/conversations", json={}, headers=auth("alice")).json()

        response = client.post(
            f"/v1/conversations/{conversation['id']}/end", headers=auth("alice")
        )

        assert response.status_code == 200
        assert response.json()["mood_end"] is None


class TestDeactivateUser:
    """ユーザー非アクティブ化のテスト"""

    def test_requires_admin(self, client):
        response = client.post("/v1/users/bob/deactivate", headers=auth("alice"))
        assert response.status_code == 403

    def test_deactivate(self, client):
        """非アクティブ化後はトークンが無効"""
        token_headers = auth("bob")

        response = client.post("/v1/users/bob/deactivate", headers=auth("root"))

        assert response.status_code == 200
        assert response.json() == {"user_id": "bob", "is_active": False, "closed_connections": 0}
        assert client.get("/v1/conversations", headers=token_headers).status_code == 401

    def test_deactivate_unknown(self, client):
        response = client.post("/v1/users/ghost/deactivate", headers=auth("root"))
        assert response.status_code == 404


class TestRateLimit:
    """レート制限のテスト"""

    def test_429_with_retry_after(self, client):
        set_admission_controller(AdmissionController(
            request_limiter=SlidingWindowRateLimiter(2, 900),
            message_limiter=SlidingWindowRateLimiter(30, 60),
        ))
        headers = auth("alice")

        assert client.get("/v1/conversations", headers=headers).status_code == 200
        second = client.get("/v1/conversations", headers=headers)
        assert second.headers["X-RateLimit-Remaining"] == "0"

        response = client.get("/v1/conversations", headers=headers)

        assert response.status_code == 429
        assert 1 <= int(response.headers["Retry-After"]) <= 900
        assert response.json()["error"] == "RateLimited"

    def test_limit_is_per_user(self, client):
        set_admission_controller(AdmissionController(
            request_limiter=SlidingWindowRateLimiter(1, 900),
            message_limiter=SlidingWindowRateLimiter(30, 60),
        ))

        assert client.get("/v1/conversations", headers=auth("alice")).status_code == 200
        assert client.get("/v1/conversations", headers=auth("bob")).status_code == 200
        assert client.get("/v1/conversations", headers=auth("alice")).status_code == 429

    def test_health_is_exempt(self, client):
        set_admission_controller(AdmissionController(
            request_limiter=SlidingWindowRateLimiter(1, 900),
            message_limiter=SlidingWindowRateLimiter(1, 60),
        ))

        for _ in range(3):
            assert client.get("/v1/health").status_code == 200


class TestServiceEndpoints:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["X-API-Version"] == response.json()["version"]

    def test_health(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["storage"] is True
        assert data["connections"] == 0

    def test_security_headers(self, client):
        response = client.get("/v1/conversations", headers=auth("alice"))

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
