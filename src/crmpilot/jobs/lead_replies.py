"""
Deferred replies to positive leads.

The SmartLead agent queues interested leads in the KV store and the SmartLead router stores each
lead's latest reply.  This job drafts an answer for every queued lead with one LLM call: a drafted
answer is sent through SmartLead, while ``INVALID`` (the model could not answer every question)
pings the owner on Slack instead.  Handled leads are archived and removed from the queue.
"""

import asyncio
import logging
from typing import List

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from crmpilot.agent.llm import (
    BaseLLM,
    LLMError,
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
from crmpilot.tools.smartlead_tools import (
    POSITIVE_LEADS_KEY,
    POSITIVE_LEADS_NAMESPACE,
    appended,
)
from crmpilot.webhooks.router import EMAILS_NAMESPACE

logger = logging.getLogger(__name__)

ARCHIVE_KEY = "archive"
INVALID = "INVALID"

JEFF_SLACK_ID = "U08993W8V0T"
RICK_SLACK_ID = "U088UL77GDV"

REPLY_PROMPT = """\
# Task
The email is from a lead who is interested in our services. Suggest a reply to it. If the reply
needs anything outside the Known Facts below, a human will respond instead and you must not
generate a reply. You are writing on behalf of {owner}, so reply as if you are them.

# Tone & Voice
- Sound like internal communication, not marketing, and not overly professional
- No corporate jargon or buzzwords
- Be personable and genuine
- Don't overcomplicate the response with unnecessary sentences

# Known Facts
You know the following information, and only this information:
1. Calendar links for setting up a meeting:
   - Jeff Haynie: https://cal.com/jeffhaynie/15min
   - Rick Blalock: https://cal.com/rblalock/15min
2. You do not know anyone's availability. If someone suggests a specific date or time, reply with
   something like "You can find a time on my calendar here: [LINK]" without mentioning their slot.
3. Pricing: https://agentuity.com/pricing
4. Docs: https://agentuity.dev/Introduction
5. Open-ended requests (e.g. partnership) are handled like meeting requests: send the calendar
   link and only express openness to talk.
6. You do not know specific technical facts about the company or internal affairs.

# Workflow
1. Determine all of the questions the lead is asking (if any).
2. Determine whether each question can be answered using your Known Facts.
3. If every question can be answered, write the reply.
4. Otherwise output '{invalid}'.

# Input
The email is from: {lead}
The email is to: {owner}
The email body is:
{body}

# Output
Output EXACTLY one of:
1. The email body including greeting and signature, with no reasoning.
2. '{invalid}' with no other text.
"""


class StoredReply(BaseModel):
    from_email: str
    body: str = ""
    campaign_id: str = ""
    stats_id: str = ""


class JobReport(BaseModel):
    """Outcome of one job run."""

    replied: List[str] = Field(default_factory=list)
    escalated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.replied) + len(self.escalated)

    @property
    def message(self) -> str:
        return f"Finished processing positive emails. {self.processed} emails processed."


def owner_slack_id(owner_email: str) -> str:
    lowered = owner_email.lower()
    if "rick" in lowered or "blalock" in lowered:
        return RICK_SLACK_ID
    return JEFF_SLACK_ID


class LeadReplyJob:
    def __init__(
        self,
        llm: BaseLLM,
        model: str,
        kv: KVStore,
        smartlead: SmartLeadClient,
        slack: SlackClient,
        max_tokens: int = 1000,
        timeout: float | None = 60.0,
    ) -> None:
        self.llm = llm
        self.model = model
        self.kv = kv
        self.smartlead = smartlead
        self.slack = slack
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def run(self) -> JobReport:
        report = JobReport()
        queued = await self.kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)
        if not queued.exists or not isinstance(queued.data, list):
            logger.info("No positive leads queued")
            return report

        for lead in queued.data:
            stored = await self.kv.get(EMAILS_NAMESPACE, lead)
            if not stored.exists:
                logger.warning("No stored reply for positive lead %s", lead)
                report.skipped.append(lead)
                continue
            try:
                reply = StoredReply.model_validate(stored.data)
                escalated = await self.handle(lead, reply)
            except (
                asyncio.TimeoutError,
                ValidationError,
                LLMError,
                SmartLeadError,
                SlackError,
            ) as exc:
                logger.error("Could not handle lead %s: %s", lead, exc)
                report.failed.append(lead)
                continue
            (report.escalated if escalated else report.replied).append(lead)
            await self.archive(lead)

        logger.info("%s", report.message)
        return report

    async def handle(self, lead: str, reply: StoredReply) -> bool:
        """Answer or escalate one lead; return ``True`` when it was escalated to a human."""
        draft = await self.draft(lead, reply)
        if draft == INVALID:
            await self.slack.post(
                f":mailbox: *Email!*\n<@{owner_slack_id(reply.from_email)}>, you have a new reply "
                f"from {lead} and I couldn't figure out a response. Check your inbox ({lead})."
            )
            return True
        await self.smartlead.reply_to_thread(reply.campaign_id, reply.stats_id, draft)
        return False

    async def draft(self, lead: str, reply: StoredReply) -> str:
        prompt = REPLY_PROMPT.format(
            owner=reply.from_email, lead=lead, body=reply.body, invalid=INVALID
        )
        response = await asyncio.wait_for(
            self.llm.complete(prompt, model=self.model, max_tokens=self.max_tokens),
            timeout=self.timeout,
        )
        text = response.text().strip()
        return INVALID if text.strip("'\"") == INVALID or not text else text

    async def archive(self, lead: str) -> None:
        """Move *lead* from the queue to the archive as soon as it has been handled."""
        await self.kv.update(
            POSITIVE_LEADS_NAMESPACE, ARCHIVE_KEY, lambda current: appended(current, lead)
        )
        await self.kv.update(
            POSITIVE_LEADS_NAMESPACE,
            POSITIVE_LEADS_KEY,
            lambda current: [item for item in current or [] if item != lead],
        )
