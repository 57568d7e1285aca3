"""Rendering of execution history and rejections into prompt sections."""

from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from crmpilot.common import to_json
from crmpilot.core.schema import (
    HistoryEntry,
    Rejection,
    ToolCall,
)


def call_view(call: ToolCall) -> Dict[str, Any]:
    return {"id": call.id, "name": call.name, "arguments": call.arguments}


def render_entry(entry: HistoryEntry) -> str:
    """Render one executed iteration as call/result pairs."""
    pairs: List[Dict[str, Any]] = []
    results = {result.tool_use_id: result for result in entry.results}
    for call in entry.calls:
        result = results.get(call.id)
        pairs.append(
            {
                "call": call_view(call),
                "result": result.content if result is not None else None,
                "is_error": result.is_error if result is not None else True,
            }
        )
    return f"Iteration {entry.iteration}:\n{to_json(pairs)}"


def render_history(history: Sequence[HistoryEntry]) -> str:
    """Render every entry, oldest first."""
    return "\n\n".join(render_entry(entry) for entry in history)


def render_rejection(rejection: Rejection) -> str:
    calls = to_json([call_view(call) for call in rejection.calls])
    return f"{calls}\nReason: {rejection.reason}"


def successful_signatures(history: Sequence[HistoryEntry]) -> set[str]:
    """Signatures of all calls that were executed without error."""
    signatures: set[str] = set()
    for entry in history:
        signatures.update(entry.successful_signatures())
    return signatures
