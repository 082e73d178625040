"""
Tests for the cloud agents client: endpoint derivation, RPC payloads and
the build/log streams.
"""

import json

import httpx
import jwt
import pytest

from lkcli.agents.client import BETA_MESSAGE, VERSION_HEADER, AgentClient, agents_base_url, encode_secrets
from lkcli.core.errors import PermissionDeniedError, TransportError
from lkcli.core.models import ProjectContext

SECRET = "agent-secret-agent-secret-agent-1234"


def _make_project() -> ProjectContext:
    return ProjectContext(name="p", url="wss://proj-ab12.livekit.cloud", api_key="APIkey", api_secret=SECRET)


def _make_client(handler) -> AgentClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AgentClient(_make_project(), client=http)


class TestEndpoint:
    def test_cloud(self):
        assert agents_base_url("wss://proj-ab12.livekit.cloud") == "https://agents.livekit.cloud"

    def test_local(self):
        assert agents_base_url("ws://localhost:7880") == "http://localhost:7880"

    def test_override(self):
        assert agents_base_url("wss://proj-ab12.livekit.cloud", "https://agents.test/") == "https://agents.test"


class TestRPC:
    def test_encode_secrets(self):
        assert encode_secrets({"B": "2", "A": "1"}) == [{"name": "A", "value": "MQ=="}, {"name": "B", "value": "Mg=="}]

    @pytest.mark.asyncio
    async def test_create_agent_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"agent_id": "CA_1"})

        async with _make_client(handler) as client:
            resp = await client.create_agent("bot", secrets={"A": "1"}, regions=["us-east"])

        assert resp == {"agent_id": "CA_1"}
        request = seen[0]
        assert str(request.url) == "https://agents.livekit.cloud/twirp/livekit.CloudAgent/CreateAgent"
        assert json.loads(request.content) == {
            "agent_name": "bot",
            "secrets": [{"name": "A", "value": "MQ=="}],
            "replicas": 1,
            "max_replicas": 10,
            "cpu_req": "1",
            "regions": ["us-east"],
        }
        assert VERSION_HEADER in request.headers
        claims = jwt.decode(request.headers["Authorization"].removeprefix("Bearer "), SECRET, algorithms=["HS256"])
        assert claims["agent"] == {"admin": True}

    @pytest.mark.asyncio
    async def test_permission_denied_points_to_beta(self):
        def handler(request):
            return httpx.Response(403, json={"code": "permission_denied", "msg": "no"})

        async with _make_client(handler) as client:
            with pytest.raises(PermissionDeniedError) as exc:
                await client.list_agents("bot")
        assert str(exc.value) == BETA_MESSAGE

    @pytest.mark.asyncio
    async def test_client_settings(self):
        body = {"params": [{"name": "python_min_sdk_version", "value": "1.0.0"}, {"value": "orphan"}]}
        async with _make_client(lambda request: httpx.Response(200, json=body)) as client:
            assert await client.get_client_settings() == {"python_min_sdk_version": "1.0.0"}


class TestStreams:
    @pytest.mark.asyncio
    async def test_build_renders_until_complete(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"Step 1\nBuild complete\nafter\n")

        lines = []
        async with _make_client(handler) as client:
            renderer = await client.build("CA_1", lines.append)

        assert lines == ["Step 1", "Build complete"]
        assert renderer.done
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "https://agents.livekit.cloud/build?agent_id=CA_1"

    @pytest.mark.asyncio
    async def test_logs_params(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"hello\n")

        lines = []
        async with _make_client(handler) as client:
            await client.stream_logs("CA_1", "", lines.append)
        assert lines == ["hello"]
        assert seen[0].url.params["log_type"] == "deploy"

    @pytest.mark.asyncio
    async def test_stream_forbidden(self):
        async with _make_client(lambda request: httpx.Response(403, json={"msg": "nope"})) as client:
            with pytest.raises(PermissionDeniedError, match="failed to get logs: nope"):
                await client.stream_logs("CA_1", "deploy", print)

    @pytest.mark.asyncio
    async def test_build_sent_once_on_transport_error(self):
        seen = []

        def handler(request):
            seen.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        async with _make_client(handler) as client:
            with pytest.raises(TransportError, match="failed to build agent"):
                await client.build("CA_1", print)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_logs_reconnect_after_transport_error(self):
        seen = []

        def handler(request):
            seen.append(request)
            if len(seen) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=b"hello\n")

        lines = []
        async with _make_client(handler) as client:
            await client.stream_logs("CA_1", "deploy", lines.append)
        assert lines == ["hello"]
        assert len(seen) == 2
