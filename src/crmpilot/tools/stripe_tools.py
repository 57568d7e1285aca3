"""Tools for turning Stripe purchases into Attio credits."""

from typing import Any

from pydantic import (
    BaseModel,
    Field,
)

from crmpilot.clients.attio import AttioClient
from crmpilot.tools import Toolset
from crmpilot.tools.attio_tools import EmailArgs


class PurchaseArgs(BaseModel):
    email: str = Field(..., min_length=3, description="Buyer email")
    amount: float = Field(..., description="Amount in cents")
    timestamp: float = Field(..., description="Unix seconds of the purchase")


def build_stripe_tools(client: AttioClient) -> Toolset:
    tools = Toolset("stripe")

    @tools.tool("getPersonByEmail", EmailArgs)
    async def get_person_by_email(args: EmailArgs) -> Any:
        """Lookup a person in Attio by email."""
        return await client.get_person_by_email(args.email)

    @tools.tool("recordStripePurchase", PurchaseArgs)
    async def record_stripe_purchase(args: PurchaseArgs) -> Any:
        """Increment company's creditsBought and set lastCreditPurchase."""
        return await client.record_stripe_purchase(args.email, args.amount, args.timestamp)

    return tools
