"""
Phone-number service client.

A number's dispatch rules are whichever SIP dispatch rules list it in their
trunk_ids; the number's own sip_dispatch_rule_id is a legacy singleton that
this client never writes. Commands that show a number fetch it and the
dispatch rules concurrently and join the two.
"""

import base64
import json
from typing import Any

import structlog

from lkcli.core.errors import InputError, NotFoundError
from lkcli.core.token import SIPGrant

from .gather import gather_pair
from .sip import SIPClient
from .twirp import TwirpClient

logger = structlog.get_logger()

ADMIN = SIPGrant(admin=True)
STATUSES = ("active", "pending", "released", "offline")


def encode_page_token(offset: int, limit: int) -> dict[str, str]:
    token = json.dumps({"offset": offset, "limit": limit}).encode()
    return {"encrypted_token": base64.urlsafe_b64encode(token).decode()}


def decode_page_token(page_token: dict | None) -> tuple[int, int] | None:
    if not page_token or not page_token.get("encrypted_token"):
        return None
    try:
        raw = json.loads(base64.urlsafe_b64decode(page_token["encrypted_token"]))
        return int(raw.get("offset", 0)), int(raw.get("limit", 0))
    except (ValueError, TypeError):
        return None


def rules_for_number(number: dict, rules: list[dict]) -> list[str]:
    """Ids of dispatch rules whose trunk_ids reference the number."""
    keys = {number.get("id"), number.get("e164_format")} - {None, ""}
    return [r["sip_dispatch_rule_id"] for r in rules if keys & set(r.get("trunk_ids", []))]


def attach_rules(numbers: list[dict], rules: list[dict]) -> list[dict]:
    out = []
    for n in numbers:
        out.append({**n, "sip_dispatch_rule_ids": rules_for_number(n, rules)})
    return out


class PhoneNumberClient(TwirpClient):
    service = "livekit.PhoneNumberService"

    def __init__(self, *args: Any, sip: SIPClient | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.sip = sip or SIPClient(self.project, base_url=self.base_url, client=self.client, on_curl=self.on_curl)

    async def search(self, country_code: str = "", area_code: str = "", limit: int = 50) -> list[dict]:
        payload: dict[str, Any] = {"limit": limit}
        if country_code:
            payload["country_code"] = country_code
        if area_code:
            payload["area_code"] = area_code
        resp = await self.call("SearchPhoneNumbers", payload, sip=ADMIN, action="unable to search phone numbers")
        return resp.get("items", [])

    async def purchase(self, numbers: list[str]) -> list[dict]:
        if not numbers:
            raise InputError("at least one phone number must be provided")
        resp, rules = await gather_pair(
            self.call("PurchasePhoneNumber", {"phone_numbers": numbers}, sip=ADMIN, action="unable to purchase phone numbers"),
            self.sip.list_dispatch_rules(),
        )
        return attach_rules(resp.get("phone_numbers", []), rules)

    async def list_numbers(
        self,
        limit: int = 50,
        offset: int = 0,
        statuses: list[str] | None = None,
        dispatch_rule_id: str = "",
    ) -> dict:
        payload: dict[str, Any] = {"page_token": encode_page_token(offset, limit)}
        if statuses:
            bad = [s for s in statuses if s.lower() not in STATUSES]
            if bad:
                raise InputError(f"invalid status: {bad[0]}")
            payload["statuses"] = [f"PHONE_NUMBER_STATUS_{s.upper()}" for s in statuses]

        resp, rules = await gather_pair(
            self.call("ListPhoneNumbers", payload, sip=ADMIN, action="unable to list phone numbers"),
            self.sip.list_dispatch_rules(),
        )
        items = attach_rules(resp.get("items", []), rules)
        if dispatch_rule_id:
            items = [n for n in items if dispatch_rule_id in n["sip_dispatch_rule_ids"]]
        next_page = decode_page_token(resp.get("next_page_token"))
        return {
            "items": items,
            "total_count": resp.get("total_count", len(items)),
            "offline_count": resp.get("offline_count", 0),
            "next_offset": next_page[0] if next_page else None,
        }

    @staticmethod
    def _lookup(number_id: str, number: str) -> dict[str, str]:
        if not number_id and not number:
            raise InputError("either --id or --number must be provided")
        if number_id and number:
            raise InputError("only one of --id or --number can be provided")
        return {"id": number_id} if number_id else {"phone_number": number}

    async def get(self, number_id: str = "", number: str = "") -> dict:
        resp, rules = await gather_pair(
            self.call("GetPhoneNumber", self._lookup(number_id, number), sip=ADMIN, action="unable to get phone number"),
            self.sip.list_dispatch_rules(),
        )
        item = resp.get("phone_number")
        if not item:
            raise NotFoundError("phone number not found")
        return attach_rules([item], rules)[0]

    async def update(self, number_id: str = "", number: str = "", dispatch_rule_id: str = "") -> dict:
        """
        Attach a number to a dispatch rule.

        The rule's trunk_ids gains the number; the number record itself is
        only re-read.
        """
        lookup = self._lookup(number_id, number)
        resp, rules = await gather_pair(
            self.call("GetPhoneNumber", lookup, sip=ADMIN, action="unable to update phone number"),
            self.sip.list_dispatch_rules(),
        )
        item = resp.get("phone_number")
        if not item:
            raise NotFoundError("phone number not found")

        if dispatch_rule_id:
            rule = next((r for r in rules if r.get("sip_dispatch_rule_id") == dispatch_rule_id), None)
            if rule is None:
                raise NotFoundError(f"dispatch rule {dispatch_rule_id} not found")
            trunk_ids = list(rule.get("trunk_ids", []))
            key = item.get("id") or item.get("e164_format")
            if key not in trunk_ids:
                trunk_ids.append(key)
                updated = await self.sip.update_dispatch_rule(dispatch_rule_id, {**rule, "trunk_ids": trunk_ids})
                rules = [updated if r is rule else r for r in rules]
                logger.info("dispatch_rule_number_attached", rule=dispatch_rule_id, number=key)

        return attach_rules([item], rules)[0]

    async def release(self, ids: list[str] | None = None, numbers: list[str] | None = None) -> None:
        if not ids and not numbers:
            raise InputError("either --ids or --numbers must be provided")
        if ids and numbers:
            raise InputError("only one of --ids or --numbers can be provided")
        payload = {"ids": ids} if ids else {"phone_numbers": numbers}
        await self.call("ReleasePhoneNumbers", payload, sip=ADMIN, action="unable to release phone numbers")
