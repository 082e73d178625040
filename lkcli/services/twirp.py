"""
Base client for LiveKit Twirp services.

Requests are JSON POSTs to {base}/twirp/{service}/{Method}, authorized with
a short-lived bearer token carrying just the grants the call needs. Field
names on the wire are the proto (snake_case) names.
"""

import json
import shlex
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from lkcli.core.config import get_settings
from lkcli.core.errors import (
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    ProtocolError,
    TransportError,
)
from lkcli.core.models import ProjectContext
from lkcli.core.token import AccessToken, AgentGrant, SIPGrant, VideoGrant

logger = structlog.get_logger()

TWIRP_PREFIX = "/twirp"
TOKEN_TTL = 10 * 60

_PERMISSION_CODES = {"permission_denied", "unauthenticated"}


def twirp_error(response: httpx.Response, action: str | None = None) -> ProtocolError | NotFoundError:
    """Build the error for a non-2xx Twirp response."""
    code = ""
    msg = ""
    try:
        body = response.json()
        code = body.get("code", "")
        msg = body.get("msg", "")
    except ValueError:
        msg = response.text.strip()
    msg = msg or f"{response.status_code} {response.reason_phrase}"
    text = f"{action}: {msg}" if action else msg

    if code in _PERMISSION_CODES:
        return PermissionDeniedError(text, status=response.status_code, code=code)
    if code == "not_found":
        return NotFoundError(text)
    return ProtocolError(text, status=response.status_code, code=code or None)


def curl_command(url: str, headers: dict[str, str], payload: dict) -> str:
    parts = ["curl", "-X", "POST"]
    for key, value in headers.items():
        parts += ["-H", f"{key}: {value}"]
    parts += ["-d", json.dumps(payload), url]
    return " ".join(shlex.quote(p) for p in parts)


class TwirpClient:
    """Typed wrapper around one Twirp service."""

    service: str = ""

    def __init__(
        self,
        project: ProjectContext,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        on_curl: Callable[[str], None] | None = None,
        extra_headers: dict[str, str] | None = None,
    ):
        settings = get_settings()
        self.project = project
        self.base_url = (base_url or project.http_url).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout)
        self.on_curl = on_curl
        self.extra_headers = dict(extra_headers or {})

    def _auth_header(
        self,
        video: VideoGrant | None = None,
        sip: SIPGrant | None = None,
        agent: AgentGrant | None = None,
    ) -> str:
        at = AccessToken(self.project.api_key, self.project.api_secret).with_ttl(TOKEN_TTL)
        if video is not None:
            at.with_grants(video)
        if sip is not None:
            at.with_sip_grants(sip)
        if agent is not None:
            at.with_agent_grants(agent)
        return f"Bearer {at.to_jwt()}"

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        video: VideoGrant | None = None,
        sip: SIPGrant | None = None,
        agent: AgentGrant | None = None,
        timeout: float | None = None,
        action: str | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{TWIRP_PREFIX}/{self.service}/{method}"
        payload = payload or {}
        headers = {
            "Authorization": self._auth_header(video, sip, agent),
            "Content-Type": "application/json",
            **self.extra_headers,
        }

        if self.on_curl is not None:
            self.on_curl(curl_command(url, headers, payload))
            return {}

        kwargs: dict[str, Any] = {"json": payload, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self.client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("twirp_timeout", service=self.service, method=method)
            raise OperationTimeoutError(f"{action or method} timed out") from e
        except httpx.RequestError as e:
            logger.error("twirp_request_error", service=self.service, method=method, error=repr(e))
            raise TransportError(f"{action or method}: {type(e).__name__}: {e}") from e

        if response.status_code // 100 != 2:
            logger.debug(
                "twirp_call_failed",
                service=self.service,
                method=method,
                status=response.status_code,
            )
            raise twirp_error(response, action)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"{action or method}: malformed response") from e

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()
