"""
Schema definitions for planner <-> judge <-> orchestrator <-> tool messages.

These data models serve as the contract between the planner LLM, the judge LLM, the orchestration
loop, and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

import json
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class TaskContext(BaseModel):
    """Immutable input of one agent run."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(..., description="Instruction text bound to the agent")
    payload: Any = Field(None, description="Structured or textual data from the triggering event")
    identity: str = Field("default", description="Broker identity selecting account credentials")

    def render_payload(self) -> str:
        """Serialize the payload the way it is shown to the LLM."""
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, indent=2, default=str)


class ToolDescriptor(BaseModel):
    """Name, description and argument schema of a tool, in the shape the LLM expects."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def required_arguments(self) -> List[str]:
        """Return the argument names the schema marks as required."""
        required = self.input_schema.get("required") or []
        return [str(name) for name in required]


class ToolCall(BaseModel):
    """A call that the planner wants the agent to execute."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Correlates the call with its result")
    name: str = Field(..., min_length=1, description="Registered tool name")
    arguments: Dict[str, Any] = Field(
        default_factory=dict, description="Keyword arguments for the tool"
    )

    def signature(self) -> str:
        """Canonical text form of name + arguments, used for duplicate detection."""
        return f"{self.name}:{json.dumps(self.arguments, sort_keys=True, default=str)}"


class ToolResult(BaseModel):
    """Outcome of one tool call."""

    tool_use_id: str
    name: str
    content: Any = None
    is_error: bool = False


class JudgeVerdict(BaseModel):
    """Approve / reject decision produced by the judge."""

    decision: Literal["approve", "reject"]
    reason: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.decision == "approve"


class Rejection(BaseModel):
    """The calls rejected in the previous iteration and why."""

    calls: List[ToolCall]
    reason: str = ""


class HistoryEntry(BaseModel):
    """One executed iteration: the approved calls and their results."""

    iteration: int
    calls: List[ToolCall]
    results: List[ToolResult]

    def successful_signatures(self) -> List[str]:
        """Signatures of the calls in this entry whose results are not errors."""
        failed = {result.tool_use_id for result in self.results if result.is_error}
        return [call.signature() for call in self.calls if call.id not in failed]


class RunStatus(str, Enum):
    """Terminal state of an agent run."""

    DONE = "done"
    EXHAUSTED = "exhausted"
    VERIFICATION_FAILED = "verification_failed"
    PLANNER_ERROR = "planner_error"
    JUDGE_ERROR = "judge_error"
    SKIPPED = "skipped"


class ResultStyle(str, Enum):
    """How an agent reports its outcome to the caller."""

    TEXT = "text"
    STRUCTURED = "structured"


class AgentResult(BaseModel):
    """Final result of one agent run."""

    success: bool
    status: RunStatus
    output: Optional[str] = None  # Final user-facing text
    summary: str = ""
    iterations: int = 0
    exhausted: bool = False
    execution_log: List[HistoryEntry] = Field(default_factory=list)
    error: Optional[str] = None

    def as_text(self) -> str:
        """Render the result as a single string."""
        if self.error:
            return self.error
        return self.output or self.summary

    def as_structured(self) -> Dict[str, Any]:
        """Render the result as the audit-log object returned to webhook callers."""
        body: Dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "executionLog": [entry.model_dump(mode="json") for entry in self.execution_log],
            "iterations": self.iterations,
            "summary": self.summary,
            "exhausted": self.exhausted,
        }
        if self.output is not None:
            body["output"] = self.output
        if self.error:
            body["error"] = self.error
        return body
