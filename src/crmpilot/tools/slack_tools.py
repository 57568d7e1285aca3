"""Slack notification tool."""

from typing import (
    Any,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)

from crmpilot.clients.slack import SlackClient
from crmpilot.tools import Toolset


class PingArgs(BaseModel):
    personToPing: List[str] = Field(..., min_length=1, description="Slack user IDs to mention")
    inbox: str = Field(..., description="Inbox the reply landed in")
    fromEmail: str = Field(..., description="Email address the reply came from")


def build_slack_tools(client: SlackClient) -> Toolset:
    tools = Toolset("slack")

    @tools.tool("pingSlack", PingArgs)
    async def ping_slack(args: PingArgs) -> Any:
        """Ping people in the team Slack channel about a new email reply."""
        text = await client.ping(args.personToPing, args.inbox, args.fromEmail)
        return {"success": True, "message": text}

    return tools
