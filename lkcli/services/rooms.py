"""
RoomService client: rooms, participants, tracks and data messages.
"""

import base64
from typing import Any

from lkcli.core.token import VideoGrant

from .twirp import TwirpClient


class RoomClient(TwirpClient):
    service = "livekit.RoomService"

    @staticmethod
    def _admin(room: str) -> VideoGrant:
        return VideoGrant(room_admin=True, room=room)

    async def create_room(self, name: str, **options: Any) -> dict:
        payload = {"name": name, **{k: v for k, v in options.items() if v not in (None, "", 0)}}
        return await self.call("CreateRoom", payload, video=VideoGrant(room_create=True), action="unable to create room")

    async def list_rooms(self, names: list[str] | None = None) -> list[dict]:
        resp = await self.call("ListRooms", {"names": names or []}, video=VideoGrant(room_list=True))
        return resp.get("rooms", [])

    async def delete_room(self, room: str) -> None:
        await self.call("DeleteRoom", {"room": room}, video=VideoGrant(room_create=True), action="unable to delete room")

    async def update_room_metadata(self, room: str, metadata: str) -> dict:
        return await self.call("UpdateRoomMetadata", {"room": room, "metadata": metadata}, video=self._admin(room))

    async def list_participants(self, room: str) -> list[dict]:
        resp = await self.call("ListParticipants", {"room": room}, video=self._admin(room))
        return resp.get("participants", [])

    async def get_participant(self, room: str, identity: str) -> dict:
        return await self.call("GetParticipant", {"room": room, "identity": identity}, video=self._admin(room))

    async def remove_participant(self, room: str, identity: str) -> None:
        await self.call("RemoveParticipant", {"room": room, "identity": identity}, video=self._admin(room))

    async def update_participant(
        self,
        room: str,
        identity: str,
        *,
        metadata: str | None = None,
        name: str | None = None,
        permission: dict | None = None,
        attributes: dict[str, str] | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"room": room, "identity": identity}
        if metadata is not None:
            payload["metadata"] = metadata
        if name is not None:
            payload["name"] = name
        if permission is not None:
            payload["permission"] = permission
        if attributes:
            payload["attributes"] = attributes
        return await self.call("UpdateParticipant", payload, video=self._admin(room))

    async def forward_participant(self, room: str, identity: str, destination_room: str) -> None:
        await self.call(
            "ForwardParticipant",
            {"room": room, "identity": identity, "destination_room": destination_room},
            video=VideoGrant(room_admin=True, room=room, destination_room=destination_room),
        )

    async def move_participant(self, room: str, identity: str, destination_room: str) -> None:
        await self.call(
            "MoveParticipant",
            {"room": room, "identity": identity, "destination_room": destination_room},
            video=VideoGrant(room_admin=True, room=room, destination_room=destination_room),
        )

    async def mute_published_track(self, room: str, identity: str, track_sid: str, muted: bool) -> dict:
        return await self.call(
            "MutePublishedTrack",
            {"room": room, "identity": identity, "track_sid": track_sid, "muted": muted},
            video=self._admin(room),
        )

    async def update_subscriptions(self, room: str, identity: str, track_sids: list[str], subscribe: bool) -> None:
        await self.call(
            "UpdateSubscriptions",
            {"room": room, "identity": identity, "track_sids": track_sids, "subscribe": subscribe},
            video=self._admin(room),
        )

    async def send_data(
        self,
        room: str,
        data: bytes,
        *,
        topic: str = "",
        destination_identities: list[str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "room": room,
            "data": base64.b64encode(data).decode(),
            "kind": "RELIABLE",
            "destination_identities": destination_identities or [],
        }
        if topic:
            payload["topic"] = topic
        await self.call("SendData", payload, video=self._admin(room))
