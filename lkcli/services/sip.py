"""
SIP service client: trunks, dispatch rules and SIP participants.
"""

from typing import Any

from lkcli.core.token import SIPGrant, VideoGrant

from .twirp import TwirpClient

ADMIN = SIPGrant(admin=True)


class SIPClient(TwirpClient):
    service = "livekit.SIP"

    # Trunks

    async def create_inbound_trunk(self, trunk: dict[str, Any]) -> dict:
        return await self.call("CreateSIPInboundTrunk", {"trunk": trunk}, sip=ADMIN, action="unable to create inbound trunk")

    async def create_outbound_trunk(self, trunk: dict[str, Any]) -> dict:
        return await self.call("CreateSIPOutboundTrunk", {"trunk": trunk}, sip=ADMIN, action="unable to create outbound trunk")

    async def list_inbound_trunks(self, trunk_ids: list[str] | None = None) -> list[dict]:
        resp = await self.call("ListSIPInboundTrunk", {"trunk_ids": trunk_ids or []}, sip=ADMIN)
        return resp.get("items", [])

    async def list_outbound_trunks(self, trunk_ids: list[str] | None = None) -> list[dict]:
        resp = await self.call("ListSIPOutboundTrunk", {"trunk_ids": trunk_ids or []}, sip=ADMIN)
        return resp.get("items", [])

    async def update_inbound_trunk(self, trunk_id: str, replace: dict[str, Any]) -> dict:
        return await self.call(
            "UpdateSIPInboundTrunk",
            {"sip_trunk_id": trunk_id, "replace": replace},
            sip=ADMIN,
            action="unable to update inbound trunk",
        )

    async def update_outbound_trunk(self, trunk_id: str, replace: dict[str, Any]) -> dict:
        return await self.call(
            "UpdateSIPOutboundTrunk",
            {"sip_trunk_id": trunk_id, "replace": replace},
            sip=ADMIN,
            action="unable to update outbound trunk",
        )

    async def delete_trunk(self, trunk_id: str) -> dict:
        return await self.call("DeleteSIPTrunk", {"sip_trunk_id": trunk_id}, sip=ADMIN, action="unable to delete trunk")

    # Dispatch rules

    async def create_dispatch_rule(self, rule: dict[str, Any]) -> dict:
        return await self.call(
            "CreateSIPDispatchRule", {"dispatch_rule": rule}, sip=ADMIN, action="unable to create dispatch rule"
        )

    async def list_dispatch_rules(self, rule_ids: list[str] | None = None) -> list[dict]:
        resp = await self.call("ListSIPDispatchRule", {"dispatch_rule_ids": rule_ids or []}, sip=ADMIN)
        return resp.get("items", [])

    async def update_dispatch_rule(self, rule_id: str, replace: dict[str, Any]) -> dict:
        return await self.call(
            "UpdateSIPDispatchRule",
            {"sip_dispatch_rule_id": rule_id, "replace": replace},
            sip=ADMIN,
            action="unable to update dispatch rule",
        )

    async def delete_dispatch_rule(self, rule_id: str) -> dict:
        return await self.call(
            "DeleteSIPDispatchRule",
            {"sip_dispatch_rule_id": rule_id},
            sip=ADMIN,
            action="unable to delete dispatch rule",
        )

    # Participants

    async def create_participant(self, request: dict[str, Any], timeout: float | None = None) -> dict:
        return await self.call(
            "CreateSIPParticipant",
            request,
            sip=SIPGrant(call=True),
            timeout=timeout,
            action="unable to create SIP participant",
        )

    async def transfer_participant(self, room: str, identity: str, transfer_to: str, play_dialtone: bool = False) -> dict:
        return await self.call(
            "TransferSIPParticipant",
            {
                "room_name": room,
                "participant_identity": identity,
                "transfer_to": transfer_to,
                "play_dialtone": play_dialtone,
            },
            video=VideoGrant(room_admin=True, room=room),
            sip=SIPGrant(call=True),
            action="unable to transfer SIP participant",
        )
