"""
Tests for the phone-number client and its dispatch-rule join.
"""

import json

import httpx
import pytest

from lkcli.core.errors import InputError, NotFoundError
from lkcli.core.models import ProjectContext
from lkcli.services.phone_numbers import (
    PhoneNumberClient,
    attach_rules,
    decode_page_token,
    encode_page_token,
)

NUMBER = {"id": "PN_1", "e164_format": "+15550001", "status": "PHONE_NUMBER_STATUS_ACTIVE"}
RULES = [
    {"sip_dispatch_rule_id": "SDR_1", "trunk_ids": ["+15550001"]},
    {"sip_dispatch_rule_id": "SDR_2", "trunk_ids": ["TR_x"]},
]


def _make_client(routes: dict, seen: list | None = None) -> PhoneNumberClient:
    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        if seen is not None:
            seen.append((method, json.loads(request.content)))
        return httpx.Response(200, json=routes[method])

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    project = ProjectContext(url="https://proj.livekit.cloud", api_key="APIkey", api_secret="secret-secret")
    return PhoneNumberClient(project, client=http)


class TestHelpers:
    def test_page_token_round_trip(self):
        assert decode_page_token(encode_page_token(50, 25)) == (50, 25)

    def test_empty_page_token(self):
        assert decode_page_token(None) is None
        assert decode_page_token({"encrypted_token": "!!!"}) is None

    def test_attach_rules_matches_id_or_e164(self):
        numbers = attach_rules([NUMBER, {"id": "TR_x"}], RULES)
        assert numbers[0]["sip_dispatch_rule_ids"] == ["SDR_1"]
        assert numbers[1]["sip_dispatch_rule_ids"] == ["SDR_2"]


class TestPhoneNumberClient:
    @pytest.mark.asyncio
    async def test_list_joins_rules_and_filters(self):
        client = _make_client(
            {
                "ListPhoneNumbers": {"items": [NUMBER, {"id": "PN_2"}], "total_count": 2},
                "ListSIPDispatchRule": {"items": RULES},
            }
        )
        page = await client.list_numbers(dispatch_rule_id="SDR_1")
        assert [n["id"] for n in page["items"]] == ["PN_1"]
        assert page["total_count"] == 2
        assert page["next_offset"] is None

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_status(self):
        client = _make_client({})
        with pytest.raises(InputError, match="invalid status"):
            await client.list_numbers(statuses=["lost"])

    @pytest.mark.asyncio
    async def test_update_appends_to_rule_trunks(self):
        seen = []
        client = _make_client(
            {
                "GetPhoneNumber": {"phone_number": {"id": "PN_2", "e164_format": "+15550002"}},
                "ListSIPDispatchRule": {"items": RULES},
                "UpdateSIPDispatchRule": {"sip_dispatch_rule_id": "SDR_2", "trunk_ids": ["TR_x", "PN_2"]},
            },
            seen,
        )
        number = await client.update(number_id="PN_2", dispatch_rule_id="SDR_2")

        assert number["sip_dispatch_rule_ids"] == ["SDR_2"]
        update = next(body for method, body in seen if method == "UpdateSIPDispatchRule")
        assert update["replace"]["trunk_ids"] == ["TR_x", "PN_2"]
        assert not any(method == "UpdatePhoneNumber" for method, _ in seen)

    @pytest.mark.asyncio
    async def test_update_unknown_rule(self):
        client = _make_client({"GetPhoneNumber": {"phone_number": NUMBER}, "ListSIPDispatchRule": {"items": []}})
        with pytest.raises(NotFoundError, match="dispatch rule SDR_9 not found"):
            await client.update(number="+15550001", dispatch_rule_id="SDR_9")

    @pytest.mark.asyncio
    async def test_lookup_needs_exactly_one_key(self):
        client = _make_client({})
        with pytest.raises(InputError):
            await client.get()
        with pytest.raises(InputError):
            await client.get(number_id="PN_1", number="+15550001")

    @pytest.mark.asyncio
    async def test_release_by_numbers(self):
        seen = []
        client = _make_client({"ReleasePhoneNumbers": {}}, seen)
        await client.release(numbers=["+15550001"])
        assert seen == [("ReleasePhoneNumbers", {"phone_numbers": ["+15550001"]})]
