"""
Ingress, Egress, Replay and agent-dispatch service clients.
"""

from typing import Any

from lkcli.core.token import VideoGrant

from .twirp import TwirpClient


class IngressClient(TwirpClient):
    service = "livekit.Ingress"

    _grant = VideoGrant(ingress_admin=True)

    async def create_ingress(self, request: dict[str, Any]) -> dict:
        return await self.call("CreateIngress", request, video=self._grant, action="unable to create ingress")

    async def update_ingress(self, ingress_id: str, request: dict[str, Any]) -> dict:
        return await self.call(
            "UpdateIngress", {"ingress_id": ingress_id, **request}, video=self._grant, action="unable to update ingress"
        )

    async def list_ingress(self, room: str = "", ingress_id: str = "") -> list[dict]:
        payload = {k: v for k, v in {"room_name": room, "ingress_id": ingress_id}.items() if v}
        resp = await self.call("ListIngress", payload, video=self._grant)
        return resp.get("items", [])

    async def delete_ingress(self, ingress_id: str) -> dict:
        return await self.call(
            "DeleteIngress", {"ingress_id": ingress_id}, video=self._grant, action="unable to delete ingress"
        )


class EgressClient(TwirpClient):
    service = "livekit.Egress"

    _grant = VideoGrant(room_record=True)

    START_METHODS = {
        "room-composite": "StartRoomCompositeEgress",
        "web": "StartWebEgress",
        "participant": "StartParticipantEgress",
        "track-composite": "StartTrackCompositeEgress",
        "track": "StartTrackEgress",
    }

    async def start(self, kind: str, request: dict[str, Any]) -> dict:
        return await self.call(self.START_METHODS[kind], request, video=self._grant, action="unable to start egress")

    async def list_egress(self, room: str = "", egress_id: str = "", active: bool = False) -> list[dict]:
        payload: dict[str, Any] = {"active": active}
        if room:
            payload["room_name"] = room
        if egress_id:
            payload["egress_id"] = egress_id
        resp = await self.call("ListEgress", payload, video=self._grant)
        return resp.get("items", [])

    async def update_layout(self, egress_id: str, layout: str) -> dict:
        return await self.call("UpdateLayout", {"egress_id": egress_id, "layout": layout}, video=self._grant)

    async def update_stream(self, egress_id: str, add_urls: list[str], remove_urls: list[str]) -> dict:
        return await self.call(
            "UpdateStream",
            {"egress_id": egress_id, "add_output_urls": add_urls, "remove_output_urls": remove_urls},
            video=self._grant,
        )

    async def stop_egress(self, egress_id: str) -> dict:
        return await self.call("StopEgress", {"egress_id": egress_id}, video=self._grant, action="unable to stop egress")


class ReplayClient(TwirpClient):
    service = "replay.Replay"

    _grant = VideoGrant(room_record=True)

    async def list_replays(self, room: str = "") -> list[dict]:
        resp = await self.call("ListReplays", {"room_name": room} if room else {}, video=self._grant)
        replays = resp.get("replays", [])
        return sorted(replays, key=lambda r: int(r.get("start_time", 0) or 0))

    async def load(self, replay_id: str, room: str, offset_ms: int = 0) -> dict:
        return await self.call(
            "Playback",
            {"replay_id": replay_id, "playback_room": room, "seek_offset": offset_ms},
            video=self._grant,
            action="unable to load replay",
        )

    async def seek(self, playback_id: str, offset_ms: int) -> dict:
        return await self.call("Seek", {"playback_id": playback_id, "seek_offset": offset_ms}, video=self._grant)

    async def close_playback(self, playback_id: str) -> dict:
        return await self.call("Close", {"playback_id": playback_id}, video=self._grant)

    async def delete(self, replay_id: str) -> dict:
        return await self.call("DeleteReplay", {"replay_id": replay_id}, video=self._grant, action="unable to delete replay")


class DispatchClient(TwirpClient):
    service = "livekit.AgentDispatchService"

    async def create_dispatch(self, room: str, agent_name: str, metadata: str = "") -> dict:
        return await self.call(
            "CreateDispatch",
            {"room": room, "agent_name": agent_name, "metadata": metadata},
            video=VideoGrant(room_admin=True, room=room),
            action="unable to dispatch agent",
        )

    async def list_dispatch(self, room: str) -> list[dict]:
        resp = await self.call("ListDispatch", {"room": room}, video=VideoGrant(room_admin=True, room=room))
        return resp.get("agent_dispatches", [])

    async def delete_dispatch(self, room: str, dispatch_id: str) -> dict:
        return await self.call(
            "DeleteDispatch",
            {"room": room, "dispatch_id": dispatch_id},
            video=VideoGrant(room_admin=True, room=room),
        )
