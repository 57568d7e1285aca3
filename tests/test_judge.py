"""Tests for the judge: deterministic screening first, then the LLM verdict."""

import asyncio

import pytest
from conftest import (
    APPROVE,
    FakeLLM,
)

from crmpilot.agent.judge import (
    Judge,
    JudgeResponseError,
    screen_calls,
)
from crmpilot.agent.llm import LLMError
from crmpilot.core.schema import (
    HistoryEntry,
    TaskContext,
    ToolCall,
    ToolDescriptor,
    ToolResult,
)

TASK = TaskContext(prompt="Sync the contact.", payload={"email": "a@example.com"})
TOOLS = [
    ToolDescriptor(
        name="findContact",
        input_schema={
            "type": "object",
            "properties": {"email": {"type": "string"}},
            "required": ["email"],
        },
    ),
    ToolDescriptor(name="createContact"),
]
FIND = ToolCall(id="t1", name="findContact", arguments={"email": "a@example.com"})


def _entry(iteration: int, call: ToolCall, is_error: bool = False) -> HistoryEntry:
    return HistoryEntry(
        iteration=iteration,
        calls=[call],
        results=[ToolResult(tool_use_id=call.id, name=call.name, content={}, is_error=is_error)],
    )


@pytest.mark.asyncio
async def test_empty_proposal_is_approved_without_llm() -> None:
    llm = FakeLLM()
    verdict = await Judge(llm, model="m").review(TASK, TOOLS, [], [])
    assert verdict.approved
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_unknown_tool_is_rejected_without_llm() -> None:
    llm = FakeLLM()
    verdict = await Judge(llm, model="m").review(
        TASK, TOOLS, [ToolCall(id="x", name="dropDatabase")], []
    )
    assert not verdict.approved
    assert "not an allowed tool" in verdict.reason
    assert llm.calls == 0


def test_missing_required_argument() -> None:
    problems = screen_calls([ToolCall(id="x", name="findContact", arguments={})], TOOLS, [])
    assert problems == ["'findContact' is missing required arguments: email."]


def test_duplicate_of_successful_call_is_rejected_despite_unrelated_calls() -> None:
    """Re-submitting an identical successful call is rejected no matter what happened since."""

    history = [
        _entry(1, FIND),
        _entry(2, ToolCall(id="t2", name="createContact", arguments={"name": "A"})),
        _entry(3, ToolCall(id="t3", name="findContact", arguments={"email": "b@example.com"})),
    ]
    again = ToolCall(id="t9", name="findContact", arguments={"email": "a@example.com"})
    problems = screen_calls([again], TOOLS, history)
    assert len(problems) == 1
    assert "already succeeded" in problems[0]


def test_failed_calls_do_not_count_as_duplicates() -> None:
    history = [_entry(1, FIND, is_error=True)]
    assert screen_calls([FIND.model_copy(update={"id": "t2"})], TOOLS, history) == []


@pytest.mark.asyncio
async def test_llm_verdict_is_used_after_screening() -> None:
    llm = FakeLLM('{"decision": "reject", "reason": "wrong email"}')
    verdict = await Judge(llm, model="m").review(TASK, TOOLS, [FIND], [])
    assert verdict.decision == "reject"
    assert verdict.reason == "wrong email"
    assert "findContact" in llm.prompts[0]
    assert llm.tools == [[]]


def test_code_fence_is_tolerated() -> None:
    verdict = Judge.parse_response(f"```json\n{APPROVE}\n```")
    assert verdict.approved


@pytest.mark.parametrize(
    "text",
    [
        f"Sure! Here is my verdict: {APPROVE}",
        '{"decision": "maybe", "reason": "?"}',
        "approve",
        "   ",
    ],
)
def test_anything_but_a_verdict_object_raises(text: str) -> None:
    with pytest.raises(JudgeResponseError, match="Judge response could not be parsed"):
        Judge.parse_response(text)


@pytest.mark.asyncio
async def test_llm_failure_raises() -> None:
    with pytest.raises(JudgeResponseError):
        await Judge(FakeLLM(LLMError("overloaded")), model="m").review(TASK, TOOLS, [FIND], [])


@pytest.mark.asyncio
async def test_timeout_raises() -> None:
    class SlowLLM(FakeLLM):
        async def complete(self, prompt, tools=None, *, model, max_tokens):  # type: ignore[override]
            await asyncio.sleep(5)

    with pytest.raises(JudgeResponseError, match="No answer within"):
        await Judge(SlowLLM(), model="m", timeout=0.05).review(TASK, TOOLS, [FIND], [])
