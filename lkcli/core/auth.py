"""
Auth Broker: device-authorization handshake with the cloud identity service.

Flow:
1. POST /cli/auth?device_name=... returns a verification token
2. The user confirms at {dashboard}/cli/confirm-auth?t=<token>
3. POST /cli/claim?t=<token> is polled until it returns credentials
   (401 = still pending, 404 = access denied)

Revocation signs its bearer with the sha256 of the api secret as identity,
so tokens minted before a key rotation cannot revoke the new key.
"""

import asyncio
import time

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from .config import get_settings
from .errors import OperationTimeoutError, PermissionDeniedError, ProtocolError, TransportError
from .models import Project
from .strings import hash_string
from .token import AccessToken

logger = structlog.get_logger()

CREATE_TOKEN_ENDPOINT = "/cli/auth"
CLAIM_KEY_ENDPOINT = "/cli/claim"
CONFIRM_AUTH_ENDPOINT = "/cli/confirm-auth"
REVOKE_KEY_ENDPOINT = "/cli/revoke"


class VerificationToken(BaseModel):
    identifier: str = ""
    token: str = ""
    expires: int = 0  # Unix seconds
    device_name: str = ""

    def is_expired(self, now: float | None = None) -> bool:
        return not self.token or (now if now is not None else time.time()) > self.expires


class ClaimedKey(BaseModel):
    """Credentials returned once the user approves the device."""

    key: str
    secret: str
    project_id: str = ""
    project_name: str = ""
    owner_id: str = ""
    description: str = ""
    url: str


class AuthBroker:
    """Client for the cloud CLI-auth endpoints."""

    def __init__(
        self,
        server_url: str | None = None,
        dashboard_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.server_url = (server_url or settings.cloud_api_url).rstrip("/")
        self.dashboard_url = (dashboard_url or settings.dashboard_url).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout)
        self.verification_token: VerificationToken | None = None

    async def request_verification_token(self, device_name: str) -> VerificationToken:
        try:
            response = await self.client.post(
                f"{self.server_url}{CREATE_TOKEN_ENDPOINT}",
                params={"device_name": device_name},
            )
        except httpx.RequestError as e:
            logger.error("auth_token_request_error", error=repr(e))
            raise TransportError(f"unable to request verification token: {e}") from e

        if response.status_code != 200:
            logger.error("auth_token_request_failed", status=response.status_code)
            raise TransportError(f"unable to request verification token: {response.status_code} {response.reason_phrase}")

        try:
            self.verification_token = VerificationToken.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"unable to request verification token: malformed response: {e}") from e
        logger.debug("auth_token_received", identifier=self.verification_token.identifier)
        return self.verification_token

    def confirm_url(self, token: VerificationToken | None = None) -> str:
        token = token or self.verification_token
        return str(httpx.URL(f"{self.dashboard_url}{CONFIRM_AUTH_ENDPOINT}", params={"t": token.token}))

    async def claim(self) -> ClaimedKey | None:
        """Try to claim credentials once. Returns None while approval is pending."""
        token = self.verification_token
        if token is None or token.is_expired():
            raise OperationTimeoutError("session expired")

        try:
            response = await self.client.post(
                f"{self.server_url}{CLAIM_KEY_ENDPOINT}",
                params={"t": token.token},
            )
        except httpx.RequestError as e:
            raise TransportError(f"unable to claim key: {e}") from e

        if response.status_code == 404:
            raise PermissionDeniedError("access denied", status=404)
        if response.status_code == 401:
            return None
        if response.status_code // 100 != 2:
            raise ProtocolError(
                f"unable to claim key: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )

        try:
            return ClaimedKey.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"unable to claim key: malformed response: {e}") from e

    async def _poll(self, interval: float) -> ClaimedKey:
        while True:
            await asyncio.sleep(interval)
            key = await self.claim()
            if key is not None:
                return key
            logger.debug("auth_claim_pending")

    async def poll_for_key(self, interval: float | None = None, timeout: float | None = None) -> ClaimedKey:
        """Poll the claim endpoint until success, expiry, denial or timeout."""
        settings = get_settings()
        interval = settings.auth_poll_interval if interval is None else interval
        timeout = settings.auth_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._poll(interval), timeout=timeout)
        except TimeoutError as e:
            raise OperationTimeoutError("session claim timed out") from e

    async def revoke(self, project: Project) -> None:
        """Revoke the project's key server-side. Raises on any non-200 answer."""
        token = (
            AccessToken(project.api_key, project.api_secret)
            .with_identity(hash_string(project.api_secret))
            .to_jwt()
        )
        try:
            response = await self.client.delete(
                f"{self.server_url}{REVOKE_KEY_ENDPOINT}",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise TransportError(f"unable to revoke key: {e}") from e
        if response.status_code != 200:
            logger.error("auth_revoke_failed", status=response.status_code, project=project.name)
            raise PermissionDeniedError("access denied", status=response.status_code)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
