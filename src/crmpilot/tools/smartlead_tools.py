"""
SmartLead tools.

Setting a lead positive also queues its email under ``agent-crm-positive-leads/emails`` so the
lead-reply job can draft an answer later.
"""

import logging
from typing import (
    Any,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)

from crmpilot.clients.smartlead import SmartLeadClient
from crmpilot.memory.kv_store import KVStore
from crmpilot.tools import Toolset
from crmpilot.tools.attio_tools import EmailArgs

logger = logging.getLogger(__name__)

POSITIVE_LEADS_NAMESPACE = "agent-crm-positive-leads"
POSITIVE_LEADS_KEY = "emails"


class SendReplyArgs(BaseModel):
    campaign_id: str = Field(..., description="The campaign ID for the email sequence.")
    email: str = Field(..., description="The email address of the lead to reply to.")
    email_body: str = Field(..., min_length=1, description="The body of the email reply to send.")
    stats_id: str = Field(..., description="The stats ID of the email to reply to.")


def appended(current: Any, item: Any) -> List[Any]:
    """*current* as a list with *item* added once."""
    items = list(current) if isinstance(current, list) else []
    if item not in items:
        items.append(item)
    return items


async def queue_positive_lead(kv: KVStore, email: str) -> None:
    await kv.update(
        POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY, lambda current: appended(current, email)
    )


def build_smartlead_tools(client: SmartLeadClient, kv: KVStore | None = None) -> Toolset:
    tools = Toolset("smartlead")

    @tools.tool("SMARTLEAD_GET_LEAD_STATUS", EmailArgs)
    async def get_lead_status(args: EmailArgs) -> Any:
        """Get the lead status from SmartLead for a given email address."""
        return {"lead_status": await client.get_lead_status(args.email)}

    @tools.tool("SMARTLEAD_SET_LEAD_STATUS_POSITIVE", EmailArgs)
    async def set_lead_status_positive(args: EmailArgs) -> Any:
        """Set the lead status to 'positive' in SmartLead for a given email address."""
        result = await client.set_lead_status(args.email, "positive")
        if kv is not None:
            await queue_positive_lead(kv, args.email)
        return {"success": True, "result": result}

    @tools.tool("SMARTLEAD_SEND_EMAIL_REPLY", SendReplyArgs)
    async def send_email_reply(args: SendReplyArgs) -> Any:
        """Send an email reply through SmartLead by email stats and campaign ID."""
        response = await client.reply_to_thread(args.campaign_id, args.stats_id, args.email_body)
        return {
            "success": True,
            "email_stats_id": args.stats_id,
            "message": "Email reply sent successfully",
            "response": response,
        }

    return tools
