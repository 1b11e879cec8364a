import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from branching_chat.api import create_app
from branching_chat.errors import ProviderTransportError
from branching_chat.llms.base import Roles
from tests.conftest import ScriptedLLM, make_registry


def parse_sse(body: str) -> list[dict]:
    return [json.loads(block[len("data: "):]) for block in body.split("\n\n") if block.startswith("data: ")]


@pytest.fixture
def llms() -> dict[str, ScriptedLLM]:
    return {
        "openai": ScriptedLLM("openai", ["The answer ", "is 4."]),
        "claude": ScriptedLLM("claude", ["4"]),
        "gemini": ScriptedLLM("gemini", ["never sent"]),
    }


@pytest.fixture
def client(settings, store, llms):
    app = create_app(settings, registry=make_registry(llms, without_credentials=["gemini"]), store=store)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def conversation_id(client) -> str:
    response = client.post("/api/conversations", json={})
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_providers_report_credentials(client):
    statuses = {p["provider"]: p["has_credential"] for p in client.get("/api/providers").json()}
    assert statuses == {"claude": True, "gemini": False, "openai": True}


def test_stream_fan_out(client, conversation_id):
    response = client.post(
        f"/api/conversations/{conversation_id}/stream",
        json={"content": "What is 2+2?", "providers": ["openai", "claude", "gemini"]},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    kinds = [e["event"] for e in events]
    assert kinds[0] == "userTurn"
    assert kinds[-1] == "done"
    assert kinds.count("turnStart") == 3
    assert kinds.count("turnEnd") == 3
    user_turn_id = events[0]["data"]["id"]
    starts = {e["data"]["model"]: e["data"] for e in events if e["event"] == "turnStart"}
    assert all(start["parentTurnId"] == user_turn_id for start in starts.values())
    openai_chunks = [e["data"]["content"] for e in events if e["event"] == "chunk" and e["data"]["model"] == "openai"]
    assert openai_chunks == ["The answer ", "is 4."]
    error = next(e["data"] for e in events if e["event"] == "error")
    assert error == {"model": "gemini", "error": "credential not configured", "id": starts["gemini"]["id"]}

    conversation = client.get(f"/api/conversations/{conversation_id}").json()
    assert conversation["title"] == "What is 2+2?"
    contents = {t["model"]: t["content"] for t in conversation["turns"] if t["role"] == "assistant"}
    assert contents == {"openai": "The answer is 4.", "claude": "4", "gemini": "Error: credential not configured"}


def test_branch_endpoint(client, conversation_id):
    client.post(
        f"/api/conversations/{conversation_id}/stream",
        json={"content": "What is 2+2?", "providers": ["openai", "claude"]},
    )

    branch = client.get(f"/api/conversations/{conversation_id}/branches/claude").json()

    assert [(t["role"], t["content"]) for t in branch] == [("user", "What is 2+2?"), ("assistant", "4")]
    root = client.get(f"/api/conversations/{conversation_id}/branches/root").json()
    assert len(root) == 2


def test_non_streaming_turns_endpoint(client, conversation_id, llms):
    llms["claude"].error = ProviderTransportError("claude", "upstream returned 502")

    response = client.post(
        f"/api/conversations/{conversation_id}/turns",
        json={"content": "hello", "providers": ["openai", "claude"]},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["user_turn_created"] is True
    results = {r["provider"]: r for r in body["results"]}
    assert results["openai"]["turn"]["content"] == "The answer is 4."
    assert results["claude"]["outcome"] == "failed"
    assert results["claude"]["turn"]["content"] == "Error: upstream returned 502"


def test_compare_accepts_camel_case(client, conversation_id):
    first = client.post(
        f"/api/conversations/{conversation_id}/turns", json={"content": "hello", "providers": ["openai"]}
    ).json()

    response = client.post(
        f"/api/conversations/{conversation_id}/compare",
        json={"userTurnId": first["user_turn"]["id"], "providers": ["claude"]},
    )

    events = parse_sse(response.text)
    assert events[0] == {"event": "userTurn", "data": {"id": first["user_turn"]["id"]}}
    assert [e["event"] for e in events][-1] == "done"
    branch = client.get(f"/api/conversations/{conversation_id}/branches/claude").json()
    assert [t["content"] for t in branch] == ["hello", "4"]


@pytest.mark.parametrize(
    "body",
    [
        {"content": "", "providers": ["openai"]},
        {"content": "hi", "providers": []},
        {"content": "hi", "providers": ["mystery"]},
        {"content": "hi", "providers": ["openai"], "branchId": "not a branch"},
        {"providers": ["openai"]},
    ],
)
def test_invalid_requests_are_rejected(client, conversation_id, body):
    response = client.post(f"/api/conversations/{conversation_id}/stream", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    assert client.get(f"/api/conversations/{conversation_id}/turns").json() == []


def test_missing_conversation(client):
    response = client.post("/api/conversations/missing/stream", json={"content": "hi", "providers": ["openai"]})

    assert response.status_code == 404
    assert response.json() == {"error": "NotFoundError", "message": "Conversation with id missing not found"}
    assert client.get("/api/conversations/missing/turns").status_code == 404


def test_delete_conversation(client, conversation_id):
    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 204
    assert client.get(f"/api/conversations/{conversation_id}").status_code == 404
    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 404


def test_list_conversations(client, conversation_id):
    client.post("/api/conversations", json={"title": "Second"})

    titles = [c["title"] for c in client.get("/api/conversations").json()]

    assert sorted(titles) == ["New Conversation", "Second"]


def test_cancel_unknown_turn(client):
    response = client.post("/api/turns/unknown/cancel")
    assert response.status_code == 404


async def test_client_disconnect_seals_streamed_content(settings, store):
    llm = ScriptedLLM("openai", ["x", "y", "z"], hold=asyncio.Event())
    app = create_app(settings, registry=make_registry({"openai": llm}), store=store)
    conversation = await store.create_conversation()
    body = json.dumps({"content": "spell xyz", "providers": ["openai"]}).encode()
    path = f"/api/conversations/{conversation.id}/stream"
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"content-type", b"application/json"), (b"content-length", str(len(body)).encode())],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    three_chunks_sent = asyncio.Event()
    sent_chunks = 0
    request_delivered = False

    async def receive():
        nonlocal request_delivered
        if not request_delivered:
            request_delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        await three_chunks_sent.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        nonlocal sent_chunks
        if message["type"] == "http.response.body" and b'"event": "chunk"' in message.get("body", b""):
            sent_chunks += 1
            if sent_chunks == 3:
                three_chunks_sent.set()

    await asyncio.wait_for(app(scope, receive, send), timeout=5)
    for run in app.state.orchestrator.active_runs:
        await asyncio.wait_for(run.wait(), timeout=5)

    replies = [t for t in await store.list_all(conversation.id) if t.role == Roles.ASSISTANT]
    assert len(replies) == 1
    assert replies[0].content == "xyz"
    assert replies[0].sealed
