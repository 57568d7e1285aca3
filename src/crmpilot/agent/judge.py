"""
Judge for crmpilot.

The judge reviews, and never re-proposes, the planner's candidate calls.  Review happens in two
stages:

1. Deterministic screening: argument shape, membership in the allowed tool set, presence of the
   schema's required arguments, and exact duplicates of calls that already succeeded.  A failure
   here rejects without spending an LLM call.
2. An independently prompted LLM call for everything that cannot be a fixed rule (plausible
   arguments, in scope for the task, not dangerous).  Its answer must be exactly one JSON object
   ``{"decision": "approve" | "reject", "reason": "..."}``.
"""

import asyncio
import logging
from typing import (
    List,
    Sequence,
)

from pydantic import ValidationError

from crmpilot.agent.history import (
    call_view,
    render_history,
    successful_signatures,
)
from crmpilot.agent.llm import (
    BaseLLM,
    LLMError,
)
from crmpilot.common import (
    strip_code_fences,
    to_json,
)
from crmpilot.core.schema import (
    HistoryEntry,
    JudgeVerdict,
    TaskContext,
    ToolCall,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)


class JudgeResponseError(RuntimeError):
    """Raised when no verdict can be obtained from the judge."""


def screen_calls(
    calls: Sequence[ToolCall],
    descriptors: Sequence[ToolDescriptor],
    history: Sequence[HistoryEntry],
) -> List[str]:
    """Return the rule violations of *calls*; an empty list means the calls pass screening."""
    allowed = {descriptor.name: descriptor for descriptor in descriptors}
    done = successful_signatures(history)
    problems: List[str] = []

    for call in calls:
        descriptor = allowed.get(call.name)
        if descriptor is None:
            problems.append(f"'{call.name}' is not an allowed tool.")
            continue
        missing = [name for name in descriptor.required_arguments() if name not in call.arguments]
        if missing:
            problems.append(f"'{call.name}' is missing required arguments: {', '.join(missing)}.")
        if call.signature() in done:
            problems.append(
                f"'{call.name}' with arguments {to_json(call.arguments)} already succeeded; "
                "duplicate calls are not allowed."
            )
    return problems


class Judge:
    """Approves or rejects the planner's proposed calls."""

    PROMPT = """\
You are the Judge. You are given the task an agent is working on, the list of allowed tools, the
tool calls already executed, and the tool calls the agent now proposes.

You must approve or reject the proposed calls by responding ONLY with valid JSON in this exact
format:
{{"decision": "approve", "reason": "explanation"}}
OR
{{"decision": "reject", "reason": "explanation"}}

Approval rules
- The tool calls are in the correct format.
- The proposed tools are within the allowed tools.
- The arguments are correct and plausible for each tool.
- The calls serve the task and are not dangerous.
- The calls do not repeat a call that already succeeded.

Task
{task}

Allowed tools
{tools}

Executed so far
{history}

Proposed calls
{calls}

Respond ONLY with the JSON decision object, no other text.
"""

    def __init__(
        self,
        llm: BaseLLM,
        model: str,
        max_tokens: int = 1000,
        timeout: float | None = 60.0,
    ) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def build_prompt(
        self,
        task: TaskContext,
        descriptors: Sequence[ToolDescriptor],
        calls: Sequence[ToolCall],
        history: Sequence[HistoryEntry],
    ) -> str:
        return self.PROMPT.format(
            task=task.prompt.strip(),
            tools=to_json([descriptor.model_dump() for descriptor in descriptors]),
            history=render_history(history) or "nothing",
            calls=to_json([call_view(call) for call in calls]),
        )

    async def review(
        self,
        task: TaskContext,
        descriptors: Sequence[ToolDescriptor],
        calls: Sequence[ToolCall],
        history: Sequence[HistoryEntry],
    ) -> JudgeVerdict:
        """
        Return a verdict for *calls*.

        Raises
        ------
        JudgeResponseError
            If the LLM call fails, times out or does not answer with a verdict object.
        """
        if not calls:
            return JudgeVerdict(decision="approve", reason="No tool calls proposed.")

        problems = screen_calls(calls, descriptors, history)
        if problems:
            logger.info("Judge screening rejected calls: %s", problems)
            return JudgeVerdict(decision="reject", reason=" ".join(problems))

        prompt = self.build_prompt(task, descriptors, calls, history)
        try:
            response = await asyncio.wait_for(
                self.llm.complete(prompt, model=self.model, max_tokens=self.max_tokens),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise JudgeResponseError(
                f"Judge response could not be parsed. No answer within {self.timeout}s"
            ) from exc
        except LLMError as exc:
            raise JudgeResponseError(f"Judge response could not be parsed. {exc}") from exc

        return self.parse_response(response.text())

    @staticmethod
    def parse_response(text: str) -> JudgeVerdict:
        """Decode the judge's answer; anything but a verdict object is an error."""
        if not text.strip():
            raise JudgeResponseError("Judge response could not be parsed. No judge response found.")
        try:
            return JudgeVerdict.model_validate_json(strip_code_fences(text))
        except ValidationError as exc:
            logger.error("Judge response that failed to parse: %s", text)
            raise JudgeResponseError(
                f"Judge response could not be parsed. Raw response: {text}"
            ) from exc
