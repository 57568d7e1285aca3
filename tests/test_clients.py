"""Attio / SmartLead / Slack clients and the tools built on them, over a mocked transport."""

import json
from typing import (
    Any,
    Callable,
    List,
)

import httpx
import pytest

from crmpilot.clients.attio import (
    AttioClient,
    AttioError,
    CompanyUpdate,
    PersonInfo,
    latest_number,
)
from crmpilot.clients.slack import (
    SlackClient,
    SlackError,
)
from crmpilot.clients.smartlead import (
    SmartLeadClient,
    SmartLeadError,
)
from crmpilot.memory.kv_store import KVStore
from crmpilot.tools.attio_tools import build_attio_tools
from crmpilot.tools.slack_tools import build_slack_tools
from crmpilot.tools.smartlead_tools import (
    POSITIVE_LEADS_KEY,
    POSITIVE_LEADS_NAMESPACE,
    build_smartlead_tools,
)
from crmpilot.tools.stripe_tools import build_stripe_tools

PERSON = {
    "data": [
        {
            "id": {"record_id": "person_1"},
            "values": {"company": [{"target_record_id": "company_1"}]},
        }
    ]
}
COMPANY = {
    "data": {
        "id": {"record_id": "company_1"},
        "values": {"credits_bought": [{"value": 100}, {"value": 250}]},
    }
}
LEAD = {
    "id": 7,
    "custom_fields": {"custom_lead_status": "neutral"},
    "lead_campaign_data": [{"campaign_id": 42}],
}


def _transport(handler: Callable[[httpx.Request], httpx.Response], seen: List[httpx.Request]):
    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(record))


def _body(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


def _attio(seen: List[httpx.Request]) -> AttioClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/people/records/query"):
            return httpx.Response(200, json=PERSON)
        if request.method == "GET" and request.url.path.endswith("/companies/records/company_1"):
            return httpx.Response(200, json=COMPANY)
        if request.method == "PATCH":
            return httpx.Response(200, json={"data": _body(request)["data"]})
        return httpx.Response(404, text="not found")

    return AttioClient("token", client=_transport(handler, seen))


def _smartlead(seen: List[httpx.Request], lead: Any = LEAD) -> SmartLeadClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/leads/"):
            return httpx.Response(200, json=lead)
        return httpx.Response(200, text="<html>ok</html>", headers={"content-type": "text/html"})

    return SmartLeadClient("sl-key", client=_transport(handler, seen))


# ---------------------------------------------------------------------------
# Attio
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "attribute, expected",
    [
        (None, 0),
        ([], 0),
        ([{"value": 5}], 5),
        ([{"value": 5}, {"value": {"currency_value": 12.5}}], 12.5),
        ([3, "7"], 7),
        ({"value": "oops"}, 0),
    ],
)
def test_latest_number(attribute, expected) -> None:
    assert latest_number(attribute) == expected


@pytest.mark.asyncio
async def test_record_stripe_purchase_adds_to_latest_credits() -> None:
    seen: List[httpx.Request] = []
    await _attio(seen).record_stripe_purchase("buyer@example.com", 500, 1_700_000_000)

    patch = seen[-1]
    assert patch.method == "PATCH"
    assert patch.url.path == "/v2/objects/companies/records/company_1"
    assert patch.headers["authorization"] == "Bearer token"
    assert _body(patch) == {
        "data": {
            "values": {
                "credits_bought": 750,
                "last_credit_purchase": "2023-11-14T22:13:20Z",
            }
        }
    }


@pytest.mark.asyncio
async def test_record_stripe_purchase_without_company_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"id": {"record_id": "p"}, "values": {}}]})

    client = AttioClient("token", client=_transport(handler, []))
    with pytest.raises(AttioError, match="No company linked to buyer@example.com"):
        await client.record_stripe_purchase("buyer@example.com", 500, 0)


@pytest.mark.asyncio
async def test_assert_person_upserts_by_email() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"id": {"record_id": "person_1"}}})

    client = AttioClient("token", client=_transport(handler, seen))
    await client.assert_person(
        PersonInfo.model_validate({"email": "a@example.com", "firstName": "Ada", "lastName": "L"})
    )

    [request] = seen
    assert request.method == "PUT"
    assert request.url.params["matching_attribute"] == "email_addresses"
    values = _body(request)["data"]["values"]
    assert values["email_addresses"] == [{"email_address": "a@example.com"}]
    assert values["name"]["full_name"] == "Ada L"


@pytest.mark.asyncio
async def test_attio_errors_carry_status_and_body() -> None:
    client = AttioClient("token", client=_transport(lambda r: httpx.Response(403, text="nope"), []))
    with pytest.raises(AttioError, match="403: nope"):
        await client.get_person_by_record_id("x")


@pytest.mark.asyncio
async def test_attio_requires_a_token() -> None:
    with pytest.raises(AttioError, match="ATTIO_AUTH_TOKEN"):
        await AttioClient(None, client=_transport(lambda r: httpx.Response(200), [])).request(
            "GET", "/self"
        )


@pytest.mark.asyncio
async def test_attio_tools_validate_and_forward() -> None:
    seen: List[httpx.Request] = []
    tools = build_attio_tools(_attio(seen))

    assert tools.names() == [
        "getPersonByEmail",
        "getPersonByClerkID",
        "getPersonByRecordID",
        "assertPerson",
        "getCompanyByPersonEmail",
        "getCompanyByRecordID",
        "updateCompany",
    ]
    company = await tools.get("getCompanyByPersonEmail").executor({"email": "a@example.com"})
    assert company == COMPANY

    await tools.get("updateCompany").executor(
        {"companyId": "company_1", "updateObject": {"hasOnboarded": True}}
    )
    assert _body(seen[-1]) == {"data": {"values": {"has_onboarded": True}}}

    update_schema = tools.get("updateCompany").descriptor.input_schema
    assert update_schema["required"] == ["companyId", "updateObject"]


@pytest.mark.asyncio
async def test_stripe_tools_record_purchases() -> None:
    seen: List[httpx.Request] = []
    tools = build_stripe_tools(_attio(seen))
    await tools.get("recordStripePurchase").executor(
        {"email": "buyer@example.com", "amount": 100, "timestamp": 0}
    )
    assert _body(seen[-1])["data"]["values"]["credits_bought"] == 350


def test_company_update_drops_unset_fields() -> None:
    update = CompanyUpdate.model_validate({"creditsBought": 10})
    assert update.model_dump(exclude_none=True) == {"credits_bought": 10}


# ---------------------------------------------------------------------------
# SmartLead
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_set_lead_status_posts_to_the_first_campaign() -> None:
    seen: List[httpx.Request] = []
    result = await _smartlead(seen).set_lead_status("lead@example.com", "positive")

    lookup, update = seen
    assert lookup.url.params["email"] == "lead@example.com"
    assert lookup.url.params["api_key"] == "sl-key"
    assert update.url.path == "/api/v1/campaigns/42/leads/7"
    assert _body(update)["custom_fields"] == {"custom_lead_status": "positive"}
    assert result == {"success": True, "message": "<html>ok</html>"}


@pytest.mark.asyncio
async def test_set_lead_status_unknown_lead() -> None:
    with pytest.raises(SmartLeadError, match="Person not found in SmartLead"):
        await _smartlead([], lead={}).set_lead_status("lead@example.com", "positive")


@pytest.mark.asyncio
async def test_smartlead_error_message() -> None:
    client = SmartLeadClient(
        "k", client=_transport(lambda r: httpx.Response(500, text="boom"), [])
    )
    with pytest.raises(SmartLeadError, match="SmartLead API call failed: 500 Internal Server Error"):
        await client.get_lead("lead@example.com")


@pytest.mark.asyncio
async def test_smartlead_requires_a_key() -> None:
    with pytest.raises(SmartLeadError, match="SMARTLEAD_API_KEY"):
        await SmartLeadClient(None).get_lead("lead@example.com")


@pytest.mark.asyncio
async def test_positive_status_queues_the_lead_once(tmp_path) -> None:
    kv = KVStore(tmp_path)
    tools = build_smartlead_tools(_smartlead([]), kv)
    for _ in range(2):
        result = await tools.get("SMARTLEAD_SET_LEAD_STATUS_POSITIVE").executor(
            {"email": "lead@example.com"}
        )
        assert result["success"] is True

    queued = await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)
    assert queued.data == ["lead@example.com"]


@pytest.mark.asyncio
async def test_lead_status_tool() -> None:
    tools = build_smartlead_tools(_smartlead([]))
    assert await tools.get("SMARTLEAD_GET_LEAD_STATUS").executor({"email": "lead@example.com"}) == {
        "lead_status": "neutral"
    }


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_ping_mentions_everyone() -> None:
    seen: List[httpx.Request] = []
    client = SlackClient(
        "https://hooks.slack.test/x", client=_transport(lambda r: httpx.Response(200), seen)
    )
    result = await build_slack_tools(client).get("pingSlack").executor(
        {"personToPing": ["U1", "U2"], "inbox": "jeff@agentuity.com", "fromEmail": "a@example.com"}
    )

    assert result["success"] is True
    text = _body(seen[0])["text"]
    assert "<@U1> <@U2>" in text
    assert "a@example.com" in text and "jeff@agentuity.com" in text


@pytest.mark.asyncio
async def test_ping_requires_someone() -> None:
    tools = build_slack_tools(SlackClient("https://hooks.slack.test/x"))
    with pytest.raises(ValueError):
        await tools.get("pingSlack").executor(
            {"personToPing": [], "inbox": "i", "fromEmail": "f"}
        )


@pytest.mark.asyncio
async def test_slack_without_webhook() -> None:
    with pytest.raises(SlackError):
        await SlackClient(None).post("hi")
