"""
Optional post-execution check: did the latest tool results answer the request?

The evaluator is a third, separate LLM call.  When it says the results are not sufficient, its
reason becomes guidance for the next planning round; with a KV store attached the guidance is also
remembered per agent and shown to future runs.
"""

import asyncio
import logging
from typing import (
    Any,
    List,
    Sequence,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

from crmpilot.agent.history import render_entry
from crmpilot.agent.llm import (
    BaseLLM,
    LLMError,
)
from crmpilot.common import strip_code_fences
from crmpilot.core.schema import (
    HistoryEntry,
    TaskContext,
)
from crmpilot.memory.kv_store import KVStore

logger = logging.getLogger(__name__)

GUIDELINES_NAMESPACE = "agent-guidelines"


class SufficiencyVerdict(BaseModel):
    sufficient: bool
    reason: str = ""


class SufficiencyEvaluator:
    """Judges whether the latest executed calls satisfy the original request."""

    PROMPT = """\
You are analyzing whether tool call results successfully answer a request.

Original request:
{request}

Latest tool calls and results:
{latest}

Analyze if these results contain the information needed to answer the original request.
Respond with a JSON object in this exact format, and nothing else:
{{"sufficient": true or false, "reason": "why the results do or do not answer the request"}}
"""

    def __init__(
        self,
        llm: BaseLLM,
        model: str,
        max_tokens: int = 500,
        timeout: float | None = 60.0,
        kv: KVStore | None = None,
        max_guidelines: int = 20,
    ) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.kv = kv
        self.max_guidelines = max_guidelines

    async def evaluate(
        self, task: TaskContext, history: Sequence[HistoryEntry]
    ) -> SufficiencyVerdict:
        """Evaluate the most recent history entry; any failure counts as "not sufficient"."""
        if not history:
            return SufficiencyVerdict(sufficient=False, reason="Nothing has been executed yet.")

        prompt = self.PROMPT.format(
            request=task.render_payload(), latest=render_entry(history[-1])
        )
        try:
            response = await asyncio.wait_for(
                self.llm.complete(prompt, model=self.model, max_tokens=self.max_tokens),
                timeout=self.timeout,
            )
            return SufficiencyVerdict.model_validate_json(strip_code_fences(response.text()))
        except (asyncio.TimeoutError, LLMError, ValidationError) as exc:
            logger.warning("Could not evaluate tool results: %s", exc)
            return SufficiencyVerdict(sufficient=False, reason="Could not parse analysis result")

    async def load_guidelines(self, agent_name: str) -> List[str]:
        if self.kv is None:
            return []
        record = await self.kv.get(GUIDELINES_NAMESPACE, agent_name)
        return list(record.data) if record.exists and isinstance(record.data, list) else []

    async def remember(self, agent_name: str, guidance: str) -> None:
        """Persist *guidance* for future runs of *agent_name*, newest last, without repeats."""
        if self.kv is None or not guidance:
            return

        def add(current: Any) -> List[str]:
            guidelines = list(current) if isinstance(current, list) else []
            if guidance not in guidelines:
                guidelines.append(guidance)
            return guidelines[-self.max_guidelines :]

        await self.kv.update(GUIDELINES_NAMESPACE, agent_name, add)
