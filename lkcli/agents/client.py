"""
Cloud agents service client.

Twirp RPCs go to livekit.CloudAgent on the agents endpoint; builds and
log tails are plain HTTP streams on the same host. Every request carries
an agent-admin bearer token and the CLI version header.
"""

import base64
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from lkcli.core.config import get_settings
from lkcli.core.errors import PermissionDeniedError, ProtocolError, TransportError
from lkcli.core.models import ProjectContext
from lkcli.core.token import AccessToken, AgentGrant
from lkcli.services.twirp import TwirpClient

from .logs import LogRenderer, stream_until_closed

logger = structlog.get_logger()

VERSION_HEADER = "X-LIVEKIT-CLI-VERSION"
BETA_SIGNUP_URL = "https://forms.gle/GkGNNTiMt2qyfnu78"
BETA_MESSAGE = f"agent hosting is disabled for this project -- join the beta program here [{BETA_SIGNUP_URL}]"

ADMIN = AgentGrant(admin=True)

_SUBDOMAIN_PREFIX = re.compile(r"^https://[a-zA-Z0-9\-]+\.")


def agents_base_url(project_url: str, override: str = "") -> str:
    """Agents endpoint for a project url."""
    url = project_url
    if url.startswith("ws"):
        url = "http" + url[2:]
    if override:
        return override.rstrip("/")
    if "localhost" not in url and "127.0.0.1" not in url:
        url = _SUBDOMAIN_PREFIX.sub("https://agents.", url)
    return url.rstrip("/")


def encode_secrets(secrets: dict[str, str]) -> list[dict[str, str]]:
    """AgentSecret messages; values are bytes on the wire."""
    return [
        {"name": name, "value": base64.b64encode(value.encode()).decode()}
        for name, value in sorted(secrets.items())
    ]


class AgentClient(TwirpClient):
    service = "livekit.CloudAgent"

    def __init__(self, project: ProjectContext, **kwargs: Any):
        settings = get_settings()
        kwargs.setdefault("base_url", agents_base_url(project.url, settings.agents_url))
        headers = {VERSION_HEADER: settings.cli_version, **(kwargs.pop("extra_headers", None) or {})}
        super().__init__(project, extra_headers=headers, **kwargs)
        logger.debug("agents_endpoint", url=self.base_url)

    async def _agent_call(self, method: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            return await self.call(method, payload, agent=ADMIN)
        except PermissionDeniedError as e:
            raise PermissionDeniedError(BETA_MESSAGE, status=e.status, code=e.code) from e

    # Lifecycle

    async def create_agent(
        self,
        name: str,
        *,
        secrets: dict[str, str] | None = None,
        replicas: int = 1,
        max_replicas: int = 10,
        cpu_req: str = "1",
        regions: list[str] | None = None,
    ) -> dict:
        payload: dict[str, Any] = {
            "agent_name": name,
            "secrets": encode_secrets(secrets or {}),
            "replicas": replicas,
            "max_replicas": max_replicas,
            "cpu_req": cpu_req,
        }
        if regions:
            payload["regions"] = regions
        return await self._agent_call("CreateAgent", payload)

    async def deploy_agent(
        self,
        name: str,
        *,
        secrets: dict[str, str] | None = None,
        replicas: int = 1,
        max_replicas: int = 10,
        cpu_req: str = "1",
    ) -> dict:
        payload: dict[str, Any] = {
            "agent_name": name,
            "replicas": replicas,
            "max_replicas": max_replicas,
            "cpu_req": cpu_req,
        }
        if secrets:
            payload["secrets"] = encode_secrets(secrets)
        return await self._agent_call("DeployAgent", payload)

    async def update_agent(
        self,
        name: str,
        *,
        secrets: dict[str, str] | None = None,
        replicas: int = 1,
        max_replicas: int = 10,
        cpu_req: str = "1",
    ) -> dict:
        payload: dict[str, Any] = {
            "agent_name": name,
            "replicas": replicas,
            "max_replicas": max_replicas,
            "cpu_req": cpu_req,
        }
        if secrets:
            payload["secrets"] = encode_secrets(secrets)
        return await self._agent_call("UpdateAgent", payload)

    async def rollback_agent(self, name: str, version: str) -> dict:
        return await self._agent_call("RollbackAgent", {"agent_name": name, "version": version})

    async def delete_agent(self, name: str) -> dict:
        return await self._agent_call("DeleteAgent", {"agent_name": name})

    async def list_agents(self, name: str = "", agent_id: str = "") -> list[dict]:
        payload = {}
        if name:
            payload["agent_name"] = name
        if agent_id:
            payload["agent_id"] = agent_id
        resp = await self._agent_call("ListAgents", payload)
        return resp.get("agents", [])

    async def list_agent_versions(self, name: str) -> list[dict]:
        resp = await self._agent_call("ListAgentVersions", {"agent_name": name})
        return resp.get("versions", [])

    async def list_agent_secrets(self, name: str) -> list[dict]:
        resp = await self._agent_call("ListAgentSecrets", {"agent_name": name})
        return resp.get("secrets", [])

    async def update_agent_secrets(self, name: str, secrets: dict[str, str], overwrite: bool = False) -> dict:
        return await self._agent_call(
            "UpdateAgentSecrets",
            {"agent_name": name, "secrets": encode_secrets(secrets), "overwrite": overwrite},
        )

    async def get_client_settings(self) -> dict[str, str]:
        resp = await self._agent_call("GetClientSettings", {})
        return {p["name"]: p.get("value", "") for p in resp.get("params", []) if p.get("name")}

    # Private links

    async def create_private_link(self, name: str, region: str, port: int, endpoint: str) -> dict:
        payload = {"name": name, "region": region, "port": port, "aws": {"endpoint": endpoint}}
        return await self.call("CreatePrivateLink", payload, agent=ADMIN, action="unable to create private link")

    async def list_private_links(self) -> list[dict]:
        resp = await self.call("ListPrivateLinks", {}, agent=ADMIN, action="unable to list private link")
        return resp.get("items", [])

    async def destroy_private_link(self, link_id: str) -> dict:
        return await self.call(
            "DestroyPrivateLink", {"private_link_id": link_id}, agent=ADMIN, action="unable to delete private link"
        )

    async def get_private_link_health_status(self, link_id: str) -> dict | None:
        resp = await self.call(
            "GetPrivateLinkHealthStatus",
            {"private_link_id": link_id},
            agent=ADMIN,
            action="unable to get health status for private link",
        )
        return resp.get("value")

    # Streams

    def _stream_headers(self) -> dict[str, str]:
        token = AccessToken(self.project.api_key, self.project.api_secret).with_agent_grants(ADMIN).to_jwt()
        return {"Authorization": f"Bearer {token}", **self.extra_headers}

    @asynccontextmanager
    async def _open_stream(self, method: str, path: str, params: dict[str, str], action: str, attempts: int = 0):
        """Open a long-lived response, retrying connection failures up to `attempts` times."""
        settings = get_settings()
        url = f"{self.base_url}{path}"
        timeout = httpx.Timeout(settings.http_timeout, read=None)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts or settings.upload_attempts),
                wait=wait_exponential(multiplier=0.5, max=8),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    request = self.client.build_request(
                        method, url, params=params, headers=self._stream_headers(), timeout=timeout
                    )
                    response = await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            raise TransportError(f"{action}: {type(e).__name__}: {e}") from e

        try:
            if response.status_code != 200:
                await response.aread()
                raise _stream_error(response, action)
            yield response
        finally:
            await response.aclose()

    async def build(self, agent_id: str, sink: Callable[[str], None]) -> LogRenderer:
        """Trigger a build and render its progress until it finishes."""
        # a resent POST would start a second build
        params = {"agent_id": agent_id}
        async with self._open_stream("POST", "/build", params, "failed to build agent", attempts=1) as response:
            return await stream_until_closed(_lines(response), sink)

    async def stream_logs(self, agent_id: str, log_type: str, sink: Callable[[str], None]) -> LogRenderer:
        params = {"agent_id": agent_id, "log_type": log_type or "deploy"}
        async with self._open_stream("GET", "/logs", params, "failed to get logs") as response:
            return await stream_until_closed(_lines(response), sink)


async def _lines(response: httpx.Response) -> AsyncIterator[str]:
    try:
        async for line in response.aiter_lines():
            yield line
    except httpx.RequestError as e:
        raise TransportError(f"log stream interrupted: {type(e).__name__}: {e}") from e


def _stream_error(response: httpx.Response, action: str) -> ProtocolError:
    try:
        msg = response.json().get("msg", "")
    except ValueError:
        msg = response.text.strip()
    msg = msg or f"{response.status_code} {response.reason_phrase}"
    if response.status_code in (401, 403):
        return PermissionDeniedError(f"{action}: {msg}", status=response.status_code)
    return ProtocolError(f"{action}: {msg}", status=response.status_code)
