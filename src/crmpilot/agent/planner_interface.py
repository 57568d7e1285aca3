"""
Planner for crmpilot.

The planner is one LLM round-trip: it sees the agent's instructions, the event payload, everything
executed so far and (when the judge said no) the rejected calls with the judge's reason, and it
answers with zero or more ``tool_use`` blocks plus optional text.

The response is decoded with pydantic.  Zero tool-use blocks is the normal "done" signal; a block
that does not decode is a :class:`PlannerResponseError`, never an empty plan.
"""

import asyncio
import logging
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Sequence,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from crmpilot.agent.history import (
    render_history,
    render_rejection,
)
from crmpilot.agent.llm import (
    BaseLLM,
    LLMError,
)
from crmpilot.core.schema import (
    HistoryEntry,
    Rejection,
    TaskContext,
    ToolCall,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)


class PlannerResponseError(RuntimeError):
    """Raised when the planner's answer cannot be decoded into tool calls."""


# ---------------------------------------------------------------------------
# Pydantic models for response validation
# ---------------------------------------------------------------------------
class TextBlock(BaseModel):
    type: Literal["text"]
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"]
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    input: Dict[str, Any]


class OtherBlock(BaseModel):
    """Block kinds the planner does not act on (e.g. thinking)."""

    type: str

    @field_validator("type")
    @classmethod
    def _not_actionable(cls, value: str) -> str:
        if value in {"text", "tool_use"}:
            raise ValueError(f"malformed '{value}' block")
        return value


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, OtherBlock], Field(union_mode="left_to_right")
]
_BLOCKS = TypeAdapter(List[ContentBlock])


class PlannerProposal(BaseModel):
    """Decoded planner answer for one iteration."""

    calls: List[ToolCall] = Field(default_factory=list)
    commentary: str | None = None
    turn: Dict[str, Any] = Field(default_factory=dict)  # assistant turn as returned by the LLM


class Planner:
    """Proposes the next batch of tool calls."""

    PREAMBLE = """\
You will receive a payload and instructions that describe what you need to do.
Carry out the instructions with the provided tools.  Several independent tool calls may be made at
once.  Never repeat a tool call that already succeeded.  When nothing is left to do, do not call
any tool: reply with a short summary of what was done.
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
        history: Sequence[HistoryEntry],
        last_rejection: Rejection | None = None,
        guidance: Sequence[str] = (),
    ) -> str:
        """Concatenate instructions, payload, history, rejection and guidance sections."""
        sections = [
            self.PREAMBLE,
            f"Instructions:\n{task.prompt.strip()}",
            f"Payload:\n{task.render_payload()}",
        ]
        if history:
            sections.append(
                f"Tool calls made so far and their results ({len(history)} iterations):\n"
                f"{render_history(history)}"
            )
        if last_rejection is not None:
            sections.append(
                "The Judge rejected the most recent tool calls:\n" + render_rejection(last_rejection)
            )
        if guidance:
            sections.append(
                "Guidance from earlier attempts:\n" + "\n".join(f"- {line}" for line in guidance)
            )
        return "\n\n---\n\n".join(sections)

    async def propose(
        self,
        task: TaskContext,
        descriptors: Sequence[ToolDescriptor],
        history: Sequence[HistoryEntry],
        last_rejection: Rejection | None = None,
        guidance: Sequence[str] = (),
    ) -> PlannerProposal:
        """
        Run one planning round-trip.

        Raises
        ------
        PlannerResponseError
            If the LLM call fails, times out or returns blocks that do not decode.
        """
        prompt = self.build_prompt(task, history, last_rejection, guidance)
        logger.debug("Planner prompt:\n%s", prompt)

        try:
            response = await asyncio.wait_for(
                self.llm.complete(
                    prompt, list(descriptors), model=self.model, max_tokens=self.max_tokens
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise PlannerResponseError(
                f"Planner response unparsable: no answer within {self.timeout}s"
            ) from exc
        except LLMError as exc:
            raise PlannerResponseError(f"Planner response unparsable: {exc}") from exc

        return self.parse_response(response.content)

    @staticmethod
    def parse_response(content: Any) -> PlannerProposal:
        """Decode content blocks into tool calls + commentary."""
        try:
            blocks = _BLOCKS.validate_python(content)
        except ValidationError as exc:
            logger.error("Failed to parse planner response: %s", exc)
            raise PlannerResponseError(f"Planner response unparsable: {content!r}") from exc

        calls: List[ToolCall] = []
        texts: List[str] = []
        for block in blocks:
            if isinstance(block, ToolUseBlock):
                calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))
            elif isinstance(block, TextBlock):
                texts.append(block.text)
            else:
                logger.debug("Ignoring planner block of type '%s'", block.type)

        ids = [call.id for call in calls]
        if len(set(ids)) != len(ids):
            raise PlannerResponseError(f"Planner response unparsable: duplicate tool_use ids {ids}")

        commentary = "\n".join(text.strip() for text in texts if text.strip()) or None
        return PlannerProposal(
            calls=calls,
            commentary=commentary,
            turn={"role": "assistant", "content": list(content)},
        )
