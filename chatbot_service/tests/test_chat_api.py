from __future__ import annotations

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from common.kv.store import InMemoryKeyValueStore
from common.llm.factory import ChatModelConfig, LlmProvider
from common.ratelimit.limiter import FixedWindowRateLimiter

from chatbot_service.app.config import GuildChatConfig, RateLimitConfig, RetryConfig
from chatbot_service.app.main import create_app
from chatbot_service.app.services.chat_service import ChatService
from chatbot_service.app.services.chat_store import ChatStore
from chatbot_service.tests.fakes import FakeChatModel, SleepRecorder


class CountingModelFactory:
    def __init__(self, model: FakeChatModel) -> None:
        self.model = model
        self.calls = 0

    def __call__(self, cfg: ChatModelConfig) -> Any:
        self.calls += 1
        return self.model


@pytest.fixture
def model() -> FakeChatModel:
    return FakeChatModel(*[["Hello", " there"] for _ in range(10)])


@pytest.fixture
def client(model: FakeChatModel) -> TestClient:
    app = create_app()
    app.state.rate_limiter = FixedWindowRateLimiter(InMemoryKeyValueStore())
    app.state.rate_limit_config = RateLimitConfig(limit=3, window_seconds=5.0)
    app.state.chat_service = ChatService(
        ChatModelConfig(provider=LlmProvider.OPENAI, model="gpt-4", api_key="test-key"),
        RetryConfig(max_attempts=3, base_delay_seconds=0.0),
        model_factory=CountingModelFactory(model),
        sleep=SleepRecorder(),
    )
    app.state.chat_store = ChatStore()
    app.state.guild_chat_config = GuildChatConfig(demo_guild_id=None)
    return TestClient(app)


def _frames(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def test_chat_message_streams_ndjson_frames(client: TestClient) -> None:
    resp = client.post(
        "/api/chat/message",
        json={
            "message": "hi",
            "personalityMode": "creative",
            "conversationHistory": [{"role": "user", "content": "earlier"}],
        },
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/x-ndjson")
    frames = _frames(resp.text)
    assert [f["type"] for f in frames] == ["chunk", "chunk", "complete"]
    assert [f["content"] for f in frames[:2]] == ["Hello", " there"]
    assert frames[-1]["message"]["content"] == "Hello there"
    assert frames[-1]["message"]["personalityMode"] == "creative"


def test_chat_prompt_includes_history(client: TestClient, model: FakeChatModel) -> None:
    client.post(
        "/api/chat/message",
        json={"message": "now", "conversationHistory": [{"role": "assistant", "content": "before"}]},
    )

    assert [m.content for m in model.prompts[0][1:]] == ["before", "now"]


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"message": ""}, "INVALID_MESSAGE"),
        ({"message": "   "}, "INVALID_MESSAGE"),
        ({"message": "x" * 10_001}, "MESSAGE_TOO_LONG"),
        ({"message": "hi", "personalityMode": "pirate"}, "INVALID_PERSONALITY"),
    ],
)
def test_chat_message_validation(client: TestClient, model: FakeChatModel, payload: dict, code: str) -> None:
    resp = client.post("/api/chat/message", json=payload)

    assert resp.status_code == 400
    body = resp.json()
    assert body["ok"] is False
    assert body["code"] == code
    assert model.calls == 0


def test_rate_limit_blocks_fourth_request_without_upstream_call(
    client: TestClient, model: FakeChatModel
) -> None:
    for _ in range(3):
        assert client.post("/api/chat/message", json={"message": "hi", "userId": "u1"}).status_code == 200

    resp = client.post("/api/chat/message", json={"message": "hi", "userId": "u1"})

    assert resp.status_code == 429
    assert resp.json() == {
        "ok": False,
        "code": "RATE_LIMIT_EXCEEDED",
        "error": "You have exceeded the chat limit. Please try again later.",
    }
    assert 1 <= int(resp.headers["retry-after"]) <= 5
    assert "X-RateLimit-Reset" in resp.headers
    assert model.calls == 3


def test_rate_limit_ignores_client_chosen_user_id(client: TestClient, model: FakeChatModel) -> None:
    statuses = [
        client.post("/api/chat/message", json={"message": "hi", "userId": f"spoof-{i}"}).status_code
        for i in range(5)
    ]
    other_address = client.post(
        "/api/chat/message",
        json={"message": "hi", "userId": "spoof-0"},
        headers={"X-Forwarded-For": "203.0.113.5"},
    )

    assert statuses == [200, 200, 200, 429, 429]
    assert other_address.status_code == 200
    assert model.calls == 4


def test_rate_limit_uses_trusted_user_header_when_configured(client: TestClient) -> None:
    client.app.state.rate_limit_config = RateLimitConfig(
        limit=3, window_seconds=5.0, trusted_user_header="X-Auth-User"
    )
    for _ in range(3):
        client.post("/api/chat/message", json={"message": "hi"}, headers={"X-Auth-User": "u1"})

    same_user = client.post("/api/chat/message", json={"message": "hi"}, headers={"X-Auth-User": "u1"})
    other_user = client.post("/api/chat/message", json={"message": "hi"}, headers={"X-Auth-User": "u2"})
    no_header = client.post("/api/chat/message", json={"message": "hi"})

    assert same_user.status_code == 429
    assert other_user.status_code == 200
    assert no_header.status_code == 200


def test_invalid_json_body_is_400(client: TestClient) -> None:
    resp = client.post(
        "/api/chat/message",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"


def test_service_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok", "service": "chatbot-service"}
