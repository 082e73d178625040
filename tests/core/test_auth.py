"""
Tests for the device-authorization handshake against a mocked cloud API.
"""

import time

import httpx
import jwt
import pytest

from lkcli.core.auth import AuthBroker, VerificationToken
from lkcli.core.errors import OperationTimeoutError, PermissionDeniedError, TransportError
from lkcli.core.store import make_project
from lkcli.core.strings import hash_string

SERVER = "https://cloud-api.test"
DASHBOARD = "https://dash.test"

CLAIMED = {
    "key": "APIclaimed",
    "secret": "claimed-secret",
    "project_id": "p_1",
    "project_name": "My Project",
    "url": "wss://myproj-ab12.livekit.cloud",
}


def _make_broker(handler) -> AuthBroker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthBroker(server_url=SERVER, dashboard_url=DASHBOARD, client=client)


def _token_json() -> dict:
    return {"identifier": "id1", "token": "tok1", "expires": int(time.time()) + 600, "device_name": "laptop"}


class TestVerificationToken:
    @pytest.mark.asyncio
    async def test_request_and_confirm_url(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_token_json())

        broker = _make_broker(handler)
        token = await broker.request_verification_token("laptop")

        assert token.token == "tok1"
        assert seen[0].url.path == "/cli/auth"
        assert seen[0].url.params["device_name"] == "laptop"
        assert broker.confirm_url() == f"{DASHBOARD}/cli/confirm-auth?t=tok1"
        await broker.close()

    @pytest.mark.asyncio
    async def test_request_failure(self):
        broker = _make_broker(lambda request: httpx.Response(500))
        with pytest.raises(TransportError, match="unable to request verification token"):
            await broker.request_verification_token("laptop")

    def test_expiry(self):
        assert VerificationToken(token="t", expires=100).is_expired(now=101)
        assert not VerificationToken(token="t", expires=100).is_expired(now=99)
        assert VerificationToken(token="", expires=10**12).is_expired()


class TestPollForKey:
    """Claim polling: 401 is pending, 404 is denial."""

    @pytest.mark.asyncio
    async def test_pending_then_claimed(self):
        answers = iter([httpx.Response(401), httpx.Response(401), httpx.Response(200, json=CLAIMED)])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/cli/auth":
                return httpx.Response(200, json=_token_json())
            return next(answers)

        broker = _make_broker(handler)
        await broker.request_verification_token("laptop")
        key = await broker.poll_for_key(interval=0, timeout=5)
        assert key.key == "APIclaimed"
        assert key.url == CLAIMED["url"]

    @pytest.mark.asyncio
    async def test_denied(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/cli/auth":
                return httpx.Response(200, json=_token_json())
            return httpx.Response(404)

        broker = _make_broker(handler)
        await broker.request_verification_token("laptop")
        with pytest.raises(PermissionDeniedError, match="access denied"):
            await broker.poll_for_key(interval=0, timeout=5)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/cli/auth":
                return httpx.Response(200, json=_token_json())
            return httpx.Response(401)

        broker = _make_broker(handler)
        await broker.request_verification_token("laptop")
        with pytest.raises(OperationTimeoutError, match="timed out"):
            await broker.poll_for_key(interval=0.01, timeout=0.05)

    @pytest.mark.asyncio
    async def test_no_session(self):
        broker = _make_broker(lambda request: httpx.Response(200))
        with pytest.raises(OperationTimeoutError, match="session expired"):
            await broker.claim()


class TestRevoke:
    @pytest.mark.asyncio
    async def test_bearer_identity_is_secret_hash(self):
        project = make_project("p", "wss://p.livekit.cloud", "APIkey", "the-secret")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        await _make_broker(handler).revoke(project)

        request = seen[0]
        assert request.method == "DELETE"
        assert request.url.path == "/cli/revoke"
        bearer = request.headers["Authorization"].removeprefix("Bearer ")
        claims = jwt.decode(bearer, "the-secret", algorithms=["HS256"])
        assert claims["sub"] == hash_string("the-secret")

    @pytest.mark.asyncio
    async def test_rejected(self):
        project = make_project("p", "wss://p.livekit.cloud", "APIkey", "the-secret")
        with pytest.raises(PermissionDeniedError):
            await _make_broker(lambda request: httpx.Response(403)).revoke(project)
