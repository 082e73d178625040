"""
Access tokens for LiveKit services.

Tokens are HS256 JWTs signed with the project's api secret. The issuer is
the api key, the subject is the participant identity, and capabilities are
carried in the `video`, `sip` and `agent` grant objects.
"""

import time
import uuid
from typing import Any

import jwt
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import CredentialsError, InputError

DEFAULT_TTL = 6 * 60 * 60

TRACK_SOURCES = {
    "camera": "CAMERA",
    "microphone": "MICROPHONE",
    "screen_share": "SCREEN_SHARE",
    "screen_share_audio": "SCREEN_SHARE_AUDIO",
}


class _Grant(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_claims(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class VideoGrant(_Grant):
    """Room capabilities; unset fields are omitted from the token."""

    room_create: bool | None = None
    room_list: bool | None = None
    room_record: bool | None = None
    room_admin: bool | None = None
    room_join: bool | None = None
    room: str | None = None
    destination_room: str | None = None
    can_publish: bool | None = None
    can_subscribe: bool | None = None
    can_publish_data: bool | None = None
    can_publish_sources: list[str] | None = None
    can_update_own_metadata: bool | None = None
    ingress_admin: bool | None = None
    hidden: bool | None = None
    recorder: bool | None = None
    agent: bool | None = None

    def has_permissions(self) -> bool:
        return any(
            getattr(self, f)
            for f in ("room_create", "room_list", "room_record", "room_admin", "room_join", "ingress_admin")
        )

    def set_publish_sources(self, sources: list[str]) -> None:
        resolved = []
        for s in sources:
            if s not in TRACK_SOURCES:
                raise InputError(f"invalid source: {s}")
            resolved.append(TRACK_SOURCES[s])
        self.can_publish_sources = resolved


class SIPGrant(_Grant):
    admin: bool | None = None
    call: bool | None = None


class AgentGrant(_Grant):
    admin: bool | None = None


class RoomAgentDispatch(_Grant):
    agent_name: str
    metadata: str = ""


class RoomConfiguration(_Grant):
    name: str = ""
    agents: list[RoomAgentDispatch] = Field(default_factory=list)


class ClaimGrants(BaseModel):
    """Decoded token payload."""

    identity: str = ""
    name: str = ""
    metadata: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    video: VideoGrant | None = None
    sip: SIPGrant | None = None
    agent: AgentGrant | None = None
    room_preset: str = ""
    room_config: RoomConfiguration | None = None
    sha256: str = ""
    issuer: str = ""
    expires_at: int = 0


class AccessToken:
    """Builder for signed access tokens."""

    def __init__(self, api_key: str, api_secret: str):
        if not api_key or not api_secret:
            raise CredentialsError("api-key and api-secret are required to sign tokens")
        self.api_key = api_key
        self.api_secret = api_secret
        self.identity = ""
        self.name = ""
        self.metadata = ""
        self.attributes: dict[str, str] = {}
        self.ttl: float = DEFAULT_TTL
        self.video: VideoGrant | None = None
        self.sip: SIPGrant | None = None
        self.agent: AgentGrant | None = None
        self.room_config: RoomConfiguration | None = None
        self.room_preset = ""
        self.sha256 = ""

    def with_identity(self, identity: str) -> "AccessToken":
        self.identity = identity
        return self

    def with_name(self, name: str) -> "AccessToken":
        self.name = name
        return self

    def with_metadata(self, metadata: str) -> "AccessToken":
        self.metadata = metadata
        return self

    def with_attributes(self, attributes: dict[str, str]) -> "AccessToken":
        self.attributes = dict(attributes)
        return self

    def with_ttl(self, seconds: float) -> "AccessToken":
        if seconds <= 0:
            raise InputError("token validity must be positive")
        self.ttl = seconds
        return self

    def with_grants(self, grant: VideoGrant) -> "AccessToken":
        self.video = grant
        return self

    def with_sip_grants(self, grant: SIPGrant) -> "AccessToken":
        self.sip = grant
        return self

    def with_agent_grants(self, grant: AgentGrant) -> "AccessToken":
        self.agent = grant
        return self

    def with_room_config(self, config: RoomConfiguration) -> "AccessToken":
        self.room_config = config
        return self

    def with_room_preset(self, preset: str) -> "AccessToken":
        self.room_preset = preset
        return self

    def with_sha256(self, digest: str) -> "AccessToken":
        self.sha256 = digest
        return self

    def to_jwt(self) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": self.api_key,
            "nbf": now,
            "exp": now + int(self.ttl),
            "jti": self.identity or uuid.uuid4().hex,
        }
        if self.identity:
            claims["sub"] = self.identity
        if self.name:
            claims["name"] = self.name
        if self.metadata:
            claims["metadata"] = self.metadata
        if self.attributes:
            claims["attributes"] = self.attributes
        if self.video is not None:
            claims["video"] = self.video.to_claims()
        if self.sip is not None:
            claims["sip"] = self.sip.to_claims()
        if self.agent is not None:
            claims["agent"] = self.agent.to_claims()
        if self.room_config is not None:
            claims["roomConfig"] = self.room_config.to_claims()
        if self.room_preset:
            claims["roomPreset"] = self.room_preset
        if self.sha256:
            claims["sha256"] = self.sha256
        return jwt.encode(claims, self.api_secret, algorithm="HS256")


def decode_token(token: str, api_secret: str, *, verify: bool = True) -> ClaimGrants:
    """Decode and optionally verify a token produced by AccessToken."""
    try:
        if verify:
            payload = jwt.decode(token, api_secret, algorithms=["HS256"], leeway=10)
        else:
            payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise CredentialsError(f"invalid token: {e}") from e

    return ClaimGrants(
        identity=payload.get("sub", ""),
        name=payload.get("name", ""),
        metadata=payload.get("metadata", ""),
        attributes=payload.get("attributes", {}),
        video=VideoGrant.model_validate(payload["video"]) if "video" in payload else None,
        sip=SIPGrant.model_validate(payload["sip"]) if "sip" in payload else None,
        agent=AgentGrant.model_validate(payload["agent"]) if "agent" in payload else None,
        room_preset=payload.get("roomPreset", ""),
        room_config=RoomConfiguration.model_validate(payload["roomConfig"]) if "roomConfig" in payload else None,
        sha256=payload.get("sha256", ""),
        issuer=payload.get("iss", ""),
        expires_at=payload.get("exp", 0),
    )
