"""HTTP-level tests for the v1 API."""

import json
import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voidx.core.database import get_async_session, get_session_maker
from voidx.main import app

from helpers import greeting_graph

WORKFLOWS = "/api/v1/workflows"


def headers(account_id):
    return {"X-Account-Id": str(account_id)}


class TrackedSession(AsyncSession):
    opened = []

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.closed = False
        TrackedSession.opened.append(self)

    async def close(self):
        self.closed = True
        await super().close()


def sse_frames(text):
    frames = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


async def _create_workflow(client, account_id, tool_call_name="greeter"):
    response = await client.post(
        f"{WORKFLOWS}/",
        json={"name": "Greeter", "tool_call_name": tool_call_name, "description": "says hello"},
        headers=headers(account_id),
    )
    assert response.status_code == 201
    return response.json()["data"]


class TestAccountHeader:
    @pytest.mark.asyncio
    async def test_missing_header(self, client):
        response = await client.get(f"{WORKFLOWS}/")

        assert response.status_code == 401
        assert response.json()["detail"]["status"] == 401

    @pytest.mark.asyncio
    async def test_header_must_be_uuid(self, client):
        response = await client.get(f"{WORKFLOWS}/", headers={"X-Account-Id": "alice"})

        assert response.status_code == 400


@pytest.mark.asyncio
async def test_runtime_not_initialized(session_maker, account_id):
    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    app.state.runtime = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        response = await http_client.get(f"{WORKFLOWS}/", headers=headers(account_id))

    assert response.status_code == 503
    assert response.json()["detail"]["detail"] == "Application runtime is not initialized"


class TestWorkflowEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client, account_id):
        created = await _create_workflow(client, account_id)

        assert created["tool_call_name"] == "greeter"
        assert created["status"] == "draft"

        response = await client.get(f"{WORKFLOWS}/{created['id']}", headers=headers(account_id))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["data"]["name"] == "Greeter"

    @pytest.mark.asyncio
    async def test_list_returns_items_and_paginator(self, client, account_id):
        await _create_workflow(client, account_id, "first")
        await _create_workflow(client, account_id, "second")

        response = await client.get(f"{WORKFLOWS}/", params={"page_size": 1}, headers=headers(account_id))

        data = response.json()["data"]
        assert len(data["items"]) == 1
        assert data["paginator"]["total_record"] == 2
        assert data["paginator"]["total_page"] == 2

    @pytest.mark.asyncio
    async def test_update_and_delete(self, client, account_id):
        created = await _create_workflow(client, account_id)
        url = f"{WORKFLOWS}/{created['id']}"

        response = await client.patch(url, json={"name": "Renamed"}, headers=headers(account_id))
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Renamed"

        response = await client.delete(url, headers=headers(account_id))
        assert response.status_code == 200

        response = await client.get(url, headers=headers(account_id))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client, account_id):
        response = await client.get(f"{WORKFLOWS}/{uuid.uuid4()}", headers=headers(account_id))

        assert response.status_code == 404
        body = response.json()
        assert body["status"] == 404
        assert body["title"] == "Not Found"

    @pytest.mark.asyncio
    async def test_foreign_workflow(self, client, account_id):
        created = await _create_workflow(client, account_id)

        response = await client.get(f"{WORKFLOWS}/{created['id']}", headers=headers(uuid.uuid4()))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_duplicate_tool_call_name(self, client, account_id):
        await _create_workflow(client, account_id)

        response = await client.post(
            f"{WORKFLOWS}/", json={"name": "Other", "tool_call_name": "greeter"}, headers=headers(account_id)
        )

        assert response.status_code == 409
        assert response.json()["title"] == "Conflict"

    @pytest.mark.asyncio
    async def test_invalid_draft_graph(self, client, account_id):
        created = await _create_workflow(client, account_id)
        graph = greeting_graph()
        graph["edges"] = graph["edges"][:1]

        response = await client.put(
            f"{WORKFLOWS}/{created['id']}/draft-graph", json=graph, headers=headers(account_id)
        )

        assert response.status_code == 400
        assert response.json()["title"] == "Validation Failed"


class TestDebugStream:
    @pytest.mark.asyncio
    async def test_debug_then_publish(self, client, account_id):
        created = await _create_workflow(client, account_id)
        url = f"{WORKFLOWS}/{created['id']}"

        response = await client.put(f"{url}/draft-graph", json=greeting_graph(), headers=headers(account_id))
        assert response.status_code == 200
        assert [n["title"] for n in response.json()["data"]["nodes"]] == ["Start", "Greet", "End"]

        response = await client.post(f"{url}/debug", json={"inputs": {"name": "Ada"}}, headers=headers(account_id))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = sse_frames(response.text)
        assert frames[0][0] == "workflow:started"
        assert frames[0][1]["workflow_id"] == created["id"]
        assert {name for name, _ in frames[1:-1]} == {"workflow:node"}
        name, data = frames[-1]
        assert name == "workflow:completed"
        assert data["status"] == "succeeded"
        assert data["outputs"] == {"result": "Hello Ada"}
        assert data["workflow_result_id"] == frames[0][1]["workflow_result_id"]

        response = await client.post(f"{url}/publish", headers=headers(account_id))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "published"
        assert response.json()["data"]["node_count"] == 3

    @pytest.mark.asyncio
    async def test_debug_run_uses_its_own_session(self, client, engine, account_id):
        created = await _create_workflow(client, account_id)
        url = f"{WORKFLOWS}/{created['id']}"
        await client.put(f"{url}/draft-graph", json=greeting_graph(), headers=headers(account_id))

        request_sessions = []

        async def tracked_request_session():
            async with async_sessionmaker(engine, expire_on_commit=False)() as session:
                request_sessions.append(session)
                yield session

        TrackedSession.opened = []
        tracked_maker = async_sessionmaker(engine, class_=TrackedSession, expire_on_commit=False)
        app.dependency_overrides[get_async_session] = tracked_request_session
        app.dependency_overrides[get_session_maker] = lambda: tracked_maker

        response = await client.post(f"{url}/debug", json={"inputs": {"name": "Ada"}}, headers=headers(account_id))

        assert sse_frames(response.text)[-1][1]["status"] == "succeeded"
        assert request_sessions == []
        assert len(TrackedSession.opened) == 1
        assert TrackedSession.opened[0].closed

        response = await client.get(url, headers=headers(account_id))
        assert response.json()["data"]["is_debug_passed"] is True

    @pytest.mark.asyncio
    async def test_debug_session_closed_when_run_cannot_start(self, client, engine, account_id):
        TrackedSession.opened = []
        tracked_maker = async_sessionmaker(engine, class_=TrackedSession, expire_on_commit=False)
        app.dependency_overrides[get_session_maker] = lambda: tracked_maker

        response = await client.post(
            f"{WORKFLOWS}/{uuid.uuid4()}/debug", json={"inputs": {}}, headers=headers(account_id)
        )

        assert response.status_code == 404
        assert [session.closed for session in TrackedSession.opened] == [True]

    @pytest.mark.asyncio
    async def test_publish_without_debug(self, client, account_id):
        created = await _create_workflow(client, account_id)

        response = await client.post(f"{WORKFLOWS}/{created['id']}/publish", headers=headers(account_id))

        assert response.status_code == 400


class TestDatasetEndpoints:
    @pytest.mark.asyncio
    async def test_create_dataset_and_hit_test_empty(self, client, account_id):
        response = await client.post(
            "/api/v1/datasets/", json={"name": "Manuals", "description": "product docs"}, headers=headers(account_id)
        )

        assert response.status_code == 201
        dataset = response.json()["data"]
        assert dataset["name"] == "Manuals"

        response = await client.post(
            f"/api/v1/datasets/{dataset['id']}/hit", json={"query": "warranty"}, headers=headers(account_id)
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"items": []}

    @pytest.mark.asyncio
    async def test_duplicate_dataset_name(self, client, account_id):
        payload = {"name": "Manuals"}
        await client.post("/api/v1/datasets/", json=payload, headers=headers(account_id))

        response = await client.post("/api/v1/datasets/", json=payload, headers=headers(account_id))

        assert response.status_code == 409


@pytest.mark.asyncio
async def test_root_echoes_correlation_id(client):
    response = await client.get("/", headers={"X-Correlation-ID": "trace-1"})

    assert response.status_code == 200
    assert response.json()["health"] == "/health"
    assert response.headers["X-Correlation-ID"] == "trace-1"
