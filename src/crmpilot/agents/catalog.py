"""
Agent catalog.

Every agent is the same orchestration loop; what differs is the instruction text, the tools, the
result style and the optional verifier / router / evaluator wired in here.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from crmpilot.agent.agent_loop import (
    AgentDefinition,
    Orchestrator,
)
from crmpilot.agent.broker import (
    ComposioBroker,
    ToolBroker,
)
from crmpilot.agent.judge import Judge
from crmpilot.agent.llm import (
    BaseLLM,
    load_llm,
)
from crmpilot.agent.planner_interface import Planner
from crmpilot.agent.sufficiency import SufficiencyEvaluator
from crmpilot.clients.attio import AttioClient
from crmpilot.clients.slack import SlackClient
from crmpilot.clients.smartlead import SmartLeadClient
from crmpilot.config import Settings
from crmpilot.core.schema import ResultStyle
from crmpilot.memory.kv_store import KVStore
from crmpilot.tools import merge_toolsets
from crmpilot.tools.attio_tools import build_attio_tools
from crmpilot.tools.slack_tools import build_slack_tools
from crmpilot.tools.smartlead_tools import build_smartlead_tools
from crmpilot.tools.stripe_tools import build_stripe_tools
from crmpilot.webhooks.router import (
    clerk_router,
    smartlead_router,
    stripe_router,
)
from crmpilot.webhooks.verification import make_stripe_verifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------
STRIPE_PROMPT = """\
You handle Stripe webhook events.

# Target events
- charge.succeeded
- payment_intent.succeeded

# Extraction rules
- email = data.object.billing_details.email OR data.object.receipt_email OR
  data.object.charges.data[0].billing_details.email
- amount = cents: charge -> data.object.amount OR intent -> data.object.amount_received
- timestamp = data.object.created

# Workflow
1. ALWAYS call getPersonByEmail(email) first.
2. Then call recordStripePurchase(email, amount, timestamp).
3. Stop when done (make no further tool calls).

No other tools are needed for a single purchase event.
"""

CLERK_PROMPT = """\
You are processing webhooks from Clerk. Your job is to manage people and companies in Attio based
on Clerk user and organization events.

## Webhook structure
All webhooks contain a `type` field that determines the action.
Extract the primary email from `data.email_addresses[0].email_address`.
Convert timestamps from Unix milliseconds to ISO strings.

## Workflow by event type

### user.created
1. Use `assertPerson` with email, firstName (`data.first_name`), lastName (`data.last_name`),
   userId (`data.id`) and accountCreationDate (`data.created_at` as ISO string).
2. If the person has a company domain, use `getCompanyByPersonEmail` to check the link.

### user.updated
1. Use `getPersonByClerkID` to find the existing person.
2. If found, use `assertPerson` to update them with the new information.

### organization.created
1. Use `getPersonByClerkID` with `data.created_by` to find the creator.
2. If found, use `getCompanyByPersonEmail` to find their company.
3. If the company exists, use `updateCompany` to set orgId to `[data.id] data.name`.

### organization.updated
1. Find the company for the organization.
2. Use `updateCompany` with hasOnboarded = `data.public_metadata.hasonboarded`.

## Error handling
If a person is not found when expected, continue with what can still be done. Company failures
must not stop person updates.
"""

SMARTLEAD_PROMPT = """\
You are receiving email webhooks from SmartLead. You are responsible for managing people in Attio
based on email interactions.

The webhook has event_type EMAIL_REPLY with these important fields:
- from_email: the email of the person in our organization who sent the original email
- to_email: the email of the potential lead
- to_name: the name of the potential lead
- reply_message.html: the body of the email reply

## Workflow
1. Use pingSlack to ping the person who sent the original email: "U08993W8V0T" for Jeff Haynie,
   "U088UL77GDV" for Rick Blalock, "U08993W8V0T" if you can't tell.
   USAGE: pingSlack(personToPing=[id], inbox=from_email, fromEmail=to_email)
2. If the reply shows interest, call SMARTLEAD_SET_LEAD_STATUS_POSITIVE with the lead's email.
3. Make sure the lead exists in Attio (assertPerson with the lead's email and name).
"""

ATTIO_CHAT_PROMPT = """\
You are an assistant with access to Attio CRM tools. Help the user with the request in the
payload. You can use any of the available Attio tools to search, create, update, or manage
records. When you are done, explain what you did and what you found.
"""

ATTIO_LOOKUP_PROMPT = """\
Use the provided Attio CRM tools to find the object in Attio that the request asks for. Stop
making tool calls when you have found the answer.

## Guidelines
1. Do not repeat tool calls. If a tool call does not give you what you want, never duplicate it.
2. Use all READ tools at your disposal. If the tool you expect doesn't work, try something else.
3. NEVER use WRITE/UPDATE tools. These are off limits.

We use the CUSTOM Attio attributes `user_id` and `org_id`. To search for them you must nest them
inside an `attributes` field, e.g.
"ATTIO_FIND_RECORD": {"object_id": <object>, "attributes": {"user_id": <value>}}
"""


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
@dataclass
class Integrations:
    """External API clients shared by all agents."""

    attio: AttioClient
    smartlead: SmartLeadClient
    slack: SlackClient

    @classmethod
    def from_settings(cls, settings: Settings) -> "Integrations":
        return cls(
            attio=AttioClient(settings.ATTIO_AUTH_TOKEN),
            smartlead=SmartLeadClient(settings.SMARTLEAD_API_KEY),
            slack=SlackClient(settings.SLACK_WEBHOOK),
        )

    async def aclose(self) -> None:
        await self.attio.aclose()
        await self.smartlead.aclose()
        await self.slack.aclose()


def kv_root(settings: Settings) -> Path:
    return Path(settings.DATA_DIR) / "kv"


def build_llm(settings: Settings) -> BaseLLM:
    if settings.LLM_PROVIDER.lower() == "openai":
        return load_llm("openai", api_key=settings.OPENAI_API_KEY)
    return load_llm(settings.LLM_PROVIDER, api_key=settings.ANTHROPIC_API_KEY)


def build_broker(settings: Settings) -> ToolBroker | None:
    """Remote tools are only available with a Composio API key."""
    if not settings.COMPOSIO_API_KEY:
        logger.warning("COMPOSIO_API_KEY is not set; agents run with local tools only")
        return None
    return ComposioBroker(api_key=settings.COMPOSIO_API_KEY)


def build_agents(
    settings: Settings,
    llm: BaseLLM,
    kv: KVStore,
    integrations: Integrations,
) -> Dict[str, AgentDefinition]:
    """Return the configured agents keyed by name."""
    attio_tools = build_attio_tools(integrations.attio)
    evaluator = SufficiencyEvaluator(
        llm,
        model=settings.JUDGE_MODEL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        kv=kv,
    )

    agents = [
        AgentDefinition(
            name="stripe",
            description="Stripe purchase webhooks -> Attio credits",
            prompt=STRIPE_PROMPT,
            toolset=build_stripe_tools(integrations.attio),
            max_iterations=settings.MAX_ITERATIONS,
            result_style=ResultStyle.STRUCTURED,
            verify_webhook=make_stripe_verifier(settings.STRIPE_SIGNING_SECRET),
            router=stripe_router(),
        ),
        AgentDefinition(
            name="clerk",
            description="Clerk user and organization events -> Attio people and companies",
            prompt=CLERK_PROMPT,
            toolset=attio_tools,
            max_iterations=settings.MAX_ITERATIONS,
            router=clerk_router(),
        ),
        AgentDefinition(
            name="smartlead",
            description="SmartLead email replies -> Slack ping and lead status",
            prompt=SMARTLEAD_PROMPT,
            toolset=merge_toolsets(
                "smartlead",
                [
                    attio_tools,
                    build_slack_tools(integrations.slack),
                    build_smartlead_tools(integrations.smartlead, kv),
                ],
            ),
            max_iterations=settings.MAX_ITERATIONS,
            router=smartlead_router(kv),
        ),
        AgentDefinition(
            name="attio-chat",
            description="Free-text questions answered from Attio",
            prompt=ATTIO_CHAT_PROMPT,
            remote_toolkits=("ATTIO",),
            identity=settings.COMPOSIO_USER_ID,
            max_iterations=settings.MAX_ITERATIONS,
        ),
        AgentDefinition(
            name="attio-lookup",
            description="Read-only Attio lookups that stop once the answer is found",
            prompt=ATTIO_LOOKUP_PROMPT,
            remote_toolkits=("ATTIO",),
            identity=settings.COMPOSIO_USER_ID,
            max_iterations=settings.MAX_ITERATIONS,
            result_style=ResultStyle.STRUCTURED,
            evaluator=evaluator,
        ),
    ]
    return {agent.name: agent for agent in agents}


def build_orchestrator(
    agent: AgentDefinition,
    settings: Settings,
    llm: BaseLLM,
    broker: ToolBroker | None = None,
) -> Orchestrator:
    planner = Planner(
        llm,
        model=settings.PLANNER_MODEL,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    judge = Judge(
        llm,
        model=settings.JUDGE_MODEL,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    return Orchestrator(
        agent, planner, judge, broker=broker, tool_timeout=settings.TOOL_TIMEOUT_SECONDS
    )
