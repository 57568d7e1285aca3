"""Thin async client for the SmartLead API."""

import logging
from typing import (
    Any,
    Dict,
)

import httpx

logger = logging.getLogger(__name__)

SMARTLEAD_BASE_URL = "https://server.smartlead.ai/api/v1"


class SmartLeadError(RuntimeError):
    """Raised when SmartLead answers with an error or a lead cannot be resolved."""


class SmartLeadClient:
    """Lead lookup, lead status and thread replies."""

    def __init__(
        self,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
        base_url: str = SMARTLEAD_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        body: Dict[str, Any] | None = None,
    ) -> Any:
        """
        Call SmartLead with the API key appended to the query string.

        SmartLead answers some successful writes with HTML; those come back as
        ``{"success": True, "message": <body>}``.
        """
        if not self._api_key:
            raise SmartLeadError("SMARTLEAD_API_KEY environment variable is not set")
        query = dict(params or {})
        query["api_key"] = self._api_key
        try:
            response = await self._client.request(
                method, f"{self._base_url}{path}", params=query, json=body
            )
        except httpx.HTTPError as exc:
            raise SmartLeadError(f"SmartLead API call failed: {exc}") from exc

        if response.is_error:
            raise SmartLeadError(
                f"SmartLead API call failed: {response.status_code} {response.reason_phrase}"
                f" - Response: {response.text}"
            )
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        logger.debug("SmartLead returned non-JSON body for %s %s", method, path)
        return {"success": True, "message": response.text}

    async def get_lead(self, email: str) -> Dict[str, Any]:
        lead = await self.request("GET", "/leads/", params={"email": email.strip()})
        return lead if isinstance(lead, dict) else {}

    async def get_lead_status(self, email: str) -> str | None:
        lead = await self.get_lead(email)
        return (lead.get("custom_fields") or {}).get("custom_lead_status")

    async def set_lead_status(self, email: str, status: str) -> Any:
        """Set the ``custom_lead_status`` field on the lead's first campaign."""
        lead = await self.get_lead(email)
        lead_id = lead.get("id")
        campaigns = lead.get("lead_campaign_data") or []
        campaign_id = campaigns[0].get("campaign_id") if campaigns else None
        if not lead_id or not campaign_id:
            raise SmartLeadError("Person not found in SmartLead or missing campaign/lead id.")
        return await self.request(
            "POST",
            f"/campaigns/{campaign_id}/leads/{lead_id}",
            body={"email": email, "custom_fields": {"custom_lead_status": status}},
        )

    async def reply_to_thread(self, campaign_id: str, stats_id: str, email_body: str) -> Any:
        logger.info("Sending SmartLead reply (campaign=%s, stats_id=%s)", campaign_id, stats_id)
        return await self.request(
            "POST",
            f"/campaigns/{campaign_id}/reply-email-thread",
            body={"email_stats_id": stats_id, "email_body": email_body},
        )
