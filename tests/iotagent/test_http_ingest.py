"""Tests for the HTTP ingestion server."""

from unittest.mock import MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils

from iotagent.http_ingest import IngestServer
from iotagent.producer import ProducerState, PublishBuffer


@pytest.fixture
def agent():
    agent = MagicMock()
    agent.group_id = "iotagent-test"
    agent.producer.is_ready = True
    agent.producer.state = ProducerState.READY
    agent.producer.buffer = PublishBuffer()
    agent.supervisor.tenants = ["acme"]
    return agent


@pytest_asyncio.fixture
async def http(agent):
    server = IngestServer(agent)
    async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
        yield client


HEADERS = {"x-tenant-id": "acme", "x-device-id": "d1"}


class TestDataEndpoint:

    @pytest.mark.asyncio
    async def test_put_forwards_update(self, http, agent):
        response = await http.put("/", json={"temperature": 21.5}, headers=HEADERS)

        assert response.status == 200
        agent.update_attrs.assert_called_once_with("d1", "acme", {"temperature": 21.5}, {})

    @pytest.mark.asyncio
    async def test_post_on_any_path(self, http, agent):
        response = await http.post("/chemsen/readings", json={"ph": 7}, headers=HEADERS)

        assert response.status == 200
        agent.update_attrs.assert_called_once_with("d1", "acme", {"ph": 7}, {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["x-tenant-id", "x-device-id"])
    async def test_missing_headers(self, http, agent, missing):
        headers = {k: v for k, v in HEADERS.items() if k != missing}
        response = await http.put("/", json={"temperature": 21.5}, headers=headers)

        assert response.status == 400
        assert await response.json() == {"message": "missing device and tenant information"}
        agent.update_attrs.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_json(self, http, agent):
        response = await http.put(
            "/", data="{not json", headers={**HEADERS, "Content-Type": "application/json"}
        )

        assert response.status == 400
        agent.update_attrs.assert_not_called()

    @pytest.mark.asyncio
    async def test_body_not_utf8(self, http, agent):
        response = await http.put(
            "/",
            data=b"\xff\xfe{}",
            headers={**HEADERS, "Content-Type": "application/json; charset=utf-8"},
        )

        assert response.status == 400
        agent.update_attrs.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_object_body(self, http, agent):
        response = await http.put("/", json=[1, 2, 3], headers=HEADERS)

        assert response.status == 400
        agent.update_attrs.assert_not_called()


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_liveness(self, http):
        response = await http.get("/health/live")
        body = await response.json()

        assert response.status == 200
        assert body["status"] == "alive"
        assert body["group_id"] == "iotagent-test"

    @pytest.mark.asyncio
    async def test_ready(self, http):
        response = await http.get("/health/ready")
        body = await response.json()

        assert response.status == 200
        assert body["checks"]["producer_state"] == "ready"
        assert body["checks"]["tenants"] == ["acme"]

    @pytest.mark.asyncio
    async def test_not_ready(self, http, agent):
        agent.producer.is_ready = False
        agent.producer.state = ProducerState.CONNECTING

        response = await http.get("/health/ready")

        assert response.status == 503
        assert (await response.json())["status"] == "not_ready"


@pytest.mark.asyncio
async def test_server_start_stop(agent):
    server = IngestServer(agent, host="127.0.0.1", port=0)
    await server.start()
    try:
        assert server.actual_port
        async with aiohttp.ClientSession() as session:
            async with session.put(
                f"http://127.0.0.1:{server.actual_port}/", json={"on": True}, headers=HEADERS
            ) as response:
                assert response.status == 200
    finally:
        await server.stop()

    agent.update_attrs.assert_called_once_with("d1", "acme", {"on": True}, {})
