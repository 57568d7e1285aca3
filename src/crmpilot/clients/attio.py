"""
Thin async client for the Attio REST API.

Only the record operations the CRM agents need are wrapped.  Every method returns the decoded JSON
body as-is; non-2xx responses raise :class:`AttioError` with the status and body text.
"""

import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
)

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

logger = logging.getLogger(__name__)

ATTIO_BASE_URL = "https://api.attio.com/v2"


class AttioError(RuntimeError):
    """Raised when Attio answers with an error status or an unexpected shape."""


class PersonInfo(BaseModel):
    """Fields accepted when upserting a person."""

    email: str
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    user_id: str | None = Field(None, alias="userId")
    account_creation_date: str | None = Field(None, alias="accountCreationDate")
    lead_source: str | None = Field(None, alias="leadSource")

    model_config = ConfigDict(populate_by_name=True)


class CompanyUpdate(BaseModel):
    """Company attributes that may be patched; unset fields are left untouched."""

    org_id: str | None = Field(None, alias="orgId")
    has_onboarded: bool | None = Field(None, alias="hasOnboarded")
    credits_bought: float | None = Field(None, alias="creditsBought")
    last_credit_purchase: str | None = Field(None, alias="lastCreditPurchase")
    account_creation_date: str | None = Field(None, alias="accountCreationDate")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------
def record_id(record: Any) -> str | None:
    """Return ``data.id.record_id`` of a single-record response."""
    try:
        return record["data"]["id"]["record_id"]
    except (KeyError, TypeError):
        return None


def first_record_id(query_result: Any) -> str | None:
    """Return the record id of the first hit of a query response."""
    try:
        return query_result["data"][0]["id"]["record_id"]
    except (KeyError, IndexError, TypeError):
        return None


def _number(raw: Any) -> float:
    if raw is None:
        return 0
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return 0
    if isinstance(raw, dict):
        for key in ("amount", "value", "currency_value"):
            if key in raw:
                return _number(raw[key])
    return 0


def latest_number(attribute: Any) -> float:
    """
    Read a numeric Attio attribute.

    Attio returns attribute values as a list of historic entries, newest last, each either a bare
    number or an object with ``value`` / ``amount`` / ``currency_value``.  Missing values read as 0.
    """
    if not attribute:
        return 0
    if isinstance(attribute, list):
        latest = attribute[-1]
        return _number(latest.get("value", latest) if isinstance(latest, dict) else latest)
    if isinstance(attribute, dict) and "value" in attribute:
        return _number(attribute["value"])
    return _number(attribute)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class AttioClient:
    """People and company operations against one Attio workspace."""

    def __init__(
        self,
        auth_token: str | None,
        client: httpx.AsyncClient | None = None,
        base_url: str = ATTIO_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        self._auth_token = auth_token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, body: Dict[str, Any] | None = None) -> Any:
        if not self._auth_token:
            raise AttioError("ATTIO_AUTH_TOKEN is not set")
        url = f"{self._base_url}{path}"
        logger.debug("Attio %s %s", method, path)
        try:
            response = await self._client.request(
                method,
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self._auth_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise AttioError(f"Attio {method} {path} failed: {exc}") from exc
        if response.is_error:
            raise AttioError(f"Attio {method} {path} -> {response.status_code}: {response.text}")
        return response.json()

    # -- people --------------------------------------------------------------
    async def assert_person(self, person: PersonInfo) -> Any:
        """Create or update a person, matching on email address."""
        values: Dict[str, Any] = {"email_addresses": [{"email_address": person.email}]}
        if person.first_name or person.last_name:
            name: Dict[str, str] = {}
            if person.first_name:
                name["first_name"] = person.first_name
            if person.last_name:
                name["last_name"] = person.last_name
            if person.first_name and person.last_name:
                name["full_name"] = f"{person.first_name} {person.last_name}"
            values["name"] = name
        if person.user_id:
            values["user_id"] = person.user_id
        if person.account_creation_date:
            values["account_creation_date"] = person.account_creation_date
        if person.lead_source:
            values["lead_source"] = person.lead_source
        return await self.request(
            "PUT",
            "/objects/people/records?matching_attribute=email_addresses",
            {"data": {"values": values}},
        )

    async def get_person_by_email(self, email: str) -> Any:
        return await self.request(
            "POST", "/objects/people/records/query", {"filter": {"email_addresses": email}}
        )

    async def get_person_by_clerk_id(self, clerk_id: str) -> Any:
        return await self.request(
            "POST", "/objects/people/records/query", {"filter": {"user_id": clerk_id}}
        )

    async def get_person_by_record_id(self, record: str) -> Any:
        return await self.request("GET", f"/objects/people/records/{record}")

    # -- companies -----------------------------------------------------------
    async def get_company_by_record_id(self, record: str) -> Any:
        return await self.request("GET", f"/objects/companies/records/{record}")

    async def get_company_by_person_email(self, email: str) -> Any:
        """Follow the person's ``company`` reference; ``None`` when there is no link."""
        person = await self.get_person_by_email(email)
        try:
            company_id = person["data"][0]["values"]["company"][0]["target_record_id"]
        except (KeyError, IndexError, TypeError):
            return None
        return await self.get_company_by_record_id(company_id)

    async def update_company(self, company_id: str, update: CompanyUpdate) -> Any:
        values = update.model_dump(exclude_none=True)
        return await self.request(
            "PATCH", f"/objects/companies/records/{company_id}", {"data": {"values": values}}
        )

    async def record_stripe_purchase(self, email: str, amount: float, timestamp: float) -> Any:
        """
        Add *amount* (cents) to the buyer's company ``credits_bought`` and stamp
        ``last_credit_purchase`` with *timestamp* (unix seconds).
        """
        company = await self.get_company_by_person_email(email)
        company_id = record_id(company)
        if company_id is None:
            raise AttioError(f"No company linked to {email}")

        current = latest_number(company["data"].get("values", {}).get("credits_bought"))
        purchased_at = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        logger.info("Recording purchase of %s for %s (company %s)", amount, email, company_id)
        return await self.update_company(
            company_id,
            CompanyUpdate(
                credits_bought=current + amount,
                last_credit_purchase=purchased_at.isoformat().replace("+00:00", "Z"),
            ),
        )
