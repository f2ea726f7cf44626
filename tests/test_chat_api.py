import asyncio
import json
from typing import Any, Dict, List
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from firehub_agent.agent.messages import ResultMessage, StreamEventMessage, SystemMessage
from firehub_agent.agent.service import FireHubAgentService
from firehub_agent.agent.transcript import TranscriptStore
from firehub_agent.main import _event_stream, app
from firehub_agent.models import ChatRequest
from firehub_agent.services.token_store import InMemoryTokenStore

from fakes import FakeProvider, write_transcript


def _frames(body: str) -> List[Dict[str, Any]]:
    """Parse SSE frames into [{"event": ..., "data": {...}}]."""
    frames = []
    for chunk in body.split("\n\n"):
        lines = chunk.splitlines()
        if not lines or lines[0].startswith(":"):
            continue
        event = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        frames.append({"event": event, "data": data})
    return frames


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(
        [
            SystemMessage(subtype="init", session_id="s1"),
            StreamEventMessage(
                event={"type": "content_block_delta", "delta": {"type": "text_delta", "text": "안녕하세요"}}
            ),
            ResultMessage(subtype="success", session_id="s1", usage={"input_tokens": 321}),
        ]
    )


@pytest.fixture
def service(
    provider: FakeProvider, token_store: InMemoryTokenStore, transcripts: TranscriptStore
) -> FireHubAgentService:
    return FireHubAgentService(provider=provider, token_store=token_store, transcripts=transcripts)


@pytest.fixture
def client(service: FireHubAgentService):
    with patch("firehub_agent.main.get_agent_service", return_value=service):
        yield TestClient(app)


def test_health(client: TestClient) -> None:
    response = client.get("/agent/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.parametrize(
    "payload, error",
    [
        ({"userId": 1}, "message is required and must be a string"),
        ({"message": "", "userId": 1}, "message is required and must be a string"),
        ({"message": 42, "userId": 1}, "message is required and must be a string"),
        ({"message": "hi"}, "userId is required and must be a number"),
        ({"message": "hi", "userId": "1"}, "userId is required and must be a number"),
        ({"message": "hi", "userId": True}, "userId is required and must be a number"),
        ({"message": "hi", "userId": 1, "maxTurns": "ten"}, "maxTurns: Input should be a valid integer"),
    ],
)
def test_chat_rejects_invalid_body(
    client: TestClient, provider: FakeProvider, payload: dict, error: str
) -> None:
    response = client.post("/agent/chat", json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": error}
    assert provider.requests == []


def test_chat_rejects_non_json(client: TestClient) -> None:
    response = client.post(
        "/agent/chat", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}


def test_chat_streams_events(
    client: TestClient, token_store: InMemoryTokenStore, provider: FakeProvider
) -> None:
    response = client.post("/agent/chat", json={"message": "hi", "userId": 3})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-accel-buffering"] == "no"
    assert response.text.startswith(":ok\n\n")
    assert _frames(response.text) == [
        {"event": "init", "data": {"type": "init", "sessionId": "s1"}},
        {"event": "text", "data": {"type": "text", "content": "안녕하세요"}},
        {"event": "done", "data": {"type": "done", "sessionId": "s1", "inputTokens": 321}},
    ]
    assert provider.requests[0].user_id == 3
    assert token_store._tokens == {"s1": 321}


def test_chat_upstream_failure_is_framed_as_error(client: TestClient, provider: FakeProvider) -> None:
    provider.messages = [SystemMessage(subtype="init", session_id="s1")]
    provider.error = RuntimeError("CLI crashed")

    response = client.post("/agent/chat", json={"message": "hi", "userId": 3})

    frames = _frames(response.text)
    assert [f["event"] for f in frames] == ["init", "error"]
    assert frames[-1]["data"] == {"type": "error", "message": "CLI crashed"}


def test_chat_orchestration_failure_after_stream_start(
    client: TestClient, service: FireHubAgentService
) -> None:
    with patch.object(service, "prepare_prompt", side_effect=RuntimeError("store down")):
        response = client.post("/agent/chat", json={"message": "hi", "userId": 3, "sessionId": "s1"})

    assert response.status_code == 200
    frames = _frames(response.text)
    assert len(frames) == 1
    assert frames[0]["event"] == "error"


def test_history_returns_messages(client: TestClient, transcripts: TranscriptStore) -> None:
    write_transcript(
        transcripts.path_for("s1"),
        [
            {"type": "user", "uuid": "u1", "timestamp": "t1", "message": {"content": [{"type": "text", "text": "hi"}]}},
            {"type": "assistant", "uuid": "a1", "timestamp": "t2", "message": {"id": "m1", "content": [{"type": "text", "text": "hello"}]}},
        ],
    )
    response = client.get("/agent/history/s1")
    assert response.status_code == 200
    assert response.json() == [
        {"id": "u1", "role": "user", "content": "hi", "timestamp": "t1"},
        {"id": "a1", "role": "assistant", "content": "hello", "timestamp": "t2"},
    ]


def test_history_unknown_session_is_empty(client: TestClient) -> None:
    response = client.get("/agent/history/unknown")
    assert response.status_code == 200
    assert response.json() == []


def test_sessions_placeholder(client: TestClient) -> None:
    assert client.get("/agent/sessions").json()["sessions"] == []


def test_chat_stream_without_result_ends_with_error(client: TestClient, provider: FakeProvider) -> None:
    provider.messages = provider.messages[:2]

    response = client.post("/agent/chat", json={"message": "hi", "userId": 3})

    frames = _frames(response.text)
    assert [f["event"] for f in frames] == ["init", "text", "error"]
    assert frames[-1]["data"] == {"type": "error", "message": "Agent stream ended without a result"}


def test_chat_token_store_failure_is_500(client: TestClient, service: FireHubAgentService) -> None:
    with patch.object(service, "get_token_store", side_effect=RuntimeError("redis gone")):
        response = client.post("/agent/chat", json={"message": "hi", "userId": 3})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


@pytest.mark.asyncio
async def test_client_disconnect_aborts_run(
    token_store: InMemoryTokenStore, transcripts: TranscriptStore
) -> None:
    """Closing the SSE body mid-run sets the abort event and closes the provider stream."""
    provider = FakeProvider([SystemMessage(subtype="init", session_id="s1")], hang=True)
    service = FireHubAgentService(provider=provider, token_store=token_store, transcripts=transcripts)
    abort = asyncio.Event()
    body = _event_stream(service, ChatRequest(message="hi", user_id=1), abort)

    assert await body.__anext__() == ":ok\n\n"
    assert (await body.__anext__()).startswith("event: init\n")
    await body.aclose()

    assert abort.is_set()
    assert provider.closed
