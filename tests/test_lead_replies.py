"""Deferred lead replies: draft, send or escalate, then archive."""

from typing import (
    Any,
    List,
    Tuple,
)

import pytest
from conftest import FakeLLM

from crmpilot.agent.llm import LLMError
from crmpilot.jobs.lead_replies import (
    ARCHIVE_KEY,
    RICK_SLACK_ID,
    LeadReplyJob,
    owner_slack_id,
)
from crmpilot.memory.kv_store import KVStore
from crmpilot.tools.smartlead_tools import (
    POSITIVE_LEADS_KEY,
    POSITIVE_LEADS_NAMESPACE,
    queue_positive_lead,
)
from crmpilot.webhooks.router import EMAILS_NAMESPACE


class RecordingSmartLead:
    def __init__(self) -> None:
        self.replies: List[Tuple[str, str, str]] = []

    async def reply_to_thread(self, campaign_id: str, stats_id: str, email_body: str) -> Any:
        self.replies.append((campaign_id, stats_id, email_body))
        return {"success": True}


class RecordingSlack:
    def __init__(self) -> None:
        self.posts: List[str] = []

    async def post(self, text: str) -> None:
        self.posts.append(text)


async def _queue(kv: KVStore, *leads: str) -> None:
    await kv.set(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY, list(leads))
    for index, lead in enumerate(leads):
        await kv.set(
            EMAILS_NAMESPACE,
            lead,
            {
                "from_email": "rick@agentuity.com",
                "body": f"Question number {index}?",
                "campaign_id": "42",
                "stats_id": f"stats-{index}",
            },
        )


def _job(llm: FakeLLM, kv: KVStore) -> Tuple[LeadReplyJob, RecordingSmartLead, RecordingSlack]:
    smartlead, slack = RecordingSmartLead(), RecordingSlack()
    job = LeadReplyJob(llm, model="m", kv=kv, smartlead=smartlead, slack=slack)  # type: ignore[arg-type]
    return job, smartlead, slack


@pytest.mark.asyncio
async def test_nothing_queued(tmp_path) -> None:
    job, smartlead, slack = _job(FakeLLM(), KVStore(tmp_path))
    report = await job.run()
    assert report.processed == 0
    assert report.message == "Finished processing positive emails. 0 emails processed."


@pytest.mark.asyncio
async def test_reply_escalate_and_skip(tmp_path) -> None:
    kv = KVStore(tmp_path)
    await _queue(kv, "a@example.com", "b@example.com")
    queued = await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)
    await kv.set(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY, queued.data + ["ghost@example.com"])

    llm = FakeLLM("Hi!\n\nGrab a time here: https://cal.com/rblalock/15min\n\nRick", "'INVALID'")
    job, smartlead, slack = _job(llm, kv)
    report = await job.run()

    assert report.replied == ["a@example.com"]
    assert report.escalated == ["b@example.com"]
    assert report.skipped == ["ghost@example.com"]
    assert report.message == "Finished processing positive emails. 2 emails processed."

    assert smartlead.replies == [
        ("42", "stats-0", "Hi!\n\nGrab a time here: https://cal.com/rblalock/15min\n\nRick")
    ]
    [ping] = slack.posts
    assert f"<@{RICK_SLACK_ID}>" in ping and "b@example.com" in ping
    assert "Question number 0?" in llm.prompts[0]

    remaining = await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)
    assert remaining.data == ["ghost@example.com"]
    archive = await kv.get(POSITIVE_LEADS_NAMESPACE, ARCHIVE_KEY)
    assert archive.data == ["a@example.com", "b@example.com"]


@pytest.mark.asyncio
async def test_failures_stay_queued(tmp_path) -> None:
    kv = KVStore(tmp_path)
    await _queue(kv, "a@example.com")
    job, smartlead, slack = _job(FakeLLM(LLMError("overloaded")), kv)
    report = await job.run()

    assert report.failed == ["a@example.com"]
    assert smartlead.replies == [] and slack.posts == []
    assert (await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)).data == ["a@example.com"]


@pytest.mark.parametrize(
    "owner, expected",
    [("rick@agentuity.com", RICK_SLACK_ID), ("jeff@agentuity.com", "U08993W8V0T")],
)
def test_owner_slack_id(owner: str, expected: str) -> None:
    assert owner_slack_id(owner) == expected


@pytest.mark.asyncio
async def test_malformed_stored_reply_fails_only_that_lead(tmp_path) -> None:
    """Leads handled before a bad record are dequeued, so a rerun never mails them twice."""

    kv = KVStore(tmp_path)
    await _queue(kv, "a@example.com", "b@example.com")
    await kv.set(EMAILS_NAMESPACE, "b@example.com", {"from_email": None, "body": "hi"})

    job, smartlead, slack = _job(FakeLLM("Thanks, talk soon!"), kv)
    report = await job.run()

    assert report.replied == ["a@example.com"]
    assert report.failed == ["b@example.com"]
    assert len(smartlead.replies) == 1
    assert (await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)).data == ["b@example.com"]

    rerun = await job.run()
    assert rerun.failed == ["b@example.com"]
    assert rerun.replied == []
    assert len(smartlead.replies) == 1


@pytest.mark.asyncio
async def test_leads_queued_during_a_run_stay_queued(tmp_path) -> None:
    kv = KVStore(tmp_path)
    await _queue(kv, "a@example.com")

    class QueueingLLM(FakeLLM):
        """Simulates a webhook queueing another lead while a reply is being drafted."""

        async def complete(self, prompt, tools=None, *, model, max_tokens):  # type: ignore[override]
            await queue_positive_lead(kv, "late@example.com")
            return await super().complete(prompt, tools, model=model, max_tokens=max_tokens)

    job, smartlead, slack = _job(QueueingLLM("Sounds good."), kv)
    report = await job.run()

    assert report.replied == ["a@example.com"]
    assert (await kv.get(POSITIVE_LEADS_NAMESPACE, POSITIVE_LEADS_KEY)).data == [
        "late@example.com"
    ]
