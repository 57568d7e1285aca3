"""Merges local and remote tools into one registry, dispatches tool calls and wraps errors."""

import asyncio
import json
import logging
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Sequence,
)

from crmpilot.agent.broker import ToolBroker
from crmpilot.core.schema import (
    ToolCall,
    ToolDescriptor,
    ToolResult,
)
from crmpilot.tools import LocalTool

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class Provenance(str, Enum):
    """Which source must execute a tool call."""

    LOCAL = "local"
    REMOTE = "remote"
    UNKNOWN = "unknown"


def _error_content(exc: BaseException) -> str:
    return f"Error: {exc}" if str(exc) else f"Error: {type(exc).__name__}"


def _result_content(value: Any) -> Any:
    """Make sure a tool's return value can be rendered into the next prompt."""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        if hasattr(value, "model_dump"):
            return value.model_dump(mode="json")
        return str(value)


class ToolRegistry:
    """
    One flat callable surface over local tools and broker-backed remote tools.

    The registry is built once per run; its descriptor list is what both the planner and the
    judge see for the whole run.
    """

    def __init__(
        self,
        local_tools: Mapping[str, LocalTool],
        remote_tools: Mapping[str, ToolDescriptor],
        broker: ToolBroker | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._local = dict(local_tools)
        self._remote = dict(remote_tools)
        self._broker = broker
        self._timeout = timeout

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    @classmethod
    def build(
        cls,
        local_tools: Iterable[LocalTool],
        remote_specs: Iterable[ToolDescriptor],
        broker: ToolBroker | None = None,
        timeout: float | None = 30.0,
    ) -> "ToolRegistry":
        """
        Merge local tools with remote descriptors.

        A remote descriptor whose name is already taken by a local tool (or by an earlier remote
        descriptor) is logged and dropped; local tools always win.
        """
        local: Dict[str, LocalTool] = {}
        for tool in local_tools:
            if tool.name in local:
                raise ValueError(f"Tool '{tool.name}' is registered twice.")
            local[tool.name] = tool

        remote: Dict[str, ToolDescriptor] = {}
        for spec in remote_specs:
            if spec.name in local:
                logger.warning("Dropping remote tool '%s': name collides with a local tool", spec.name)
                continue
            if spec.name in remote:
                logger.warning("Dropping duplicate remote tool '%s'", spec.name)
                continue
            remote[spec.name] = spec

        logger.debug("Tool registry built: local=%s remote=%s", list(local), list(remote))
        return cls(local, remote, broker=broker, timeout=timeout)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #
    @property
    def descriptors(self) -> List[ToolDescriptor]:
        """Merged descriptors, local tools first."""
        return [tool.descriptor for tool in self._local.values()] + list(self._remote.values())

    def names(self) -> List[str]:
        return [descriptor.name for descriptor in self.descriptors]

    def classify(self, call: ToolCall) -> Provenance:
        """Return which source must execute *call*."""
        if call.name in self._local:
            return Provenance.LOCAL
        if call.name in self._remote:
            return Provenance.REMOTE
        return Provenance.UNKNOWN

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #
    async def dispatch_local(self, call: ToolCall) -> ToolResult:
        """Run one local tool; failures become an error result, never an exception."""
        tool = self._local.get(call.name)
        if tool is None:
            return self._not_found(call)

        try:
            logger.debug("Executing tool '%s' with args=%s", call.name, call.arguments)
            value = await asyncio.wait_for(tool.executor(call.arguments), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool '%s' timed out after %ss", call.name, self._timeout)
            return ToolResult(
                tool_use_id=call.id,
                name=call.name,
                content=f"Error: Tool '{call.name}' timed out after {self._timeout}s",
                is_error=True,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unhandled error in tool '%s'", call.name)
            return ToolResult(
                tool_use_id=call.id, name=call.name, content=_error_content(exc), is_error=True
            )

        return ToolResult(tool_use_id=call.id, name=call.name, content=_result_content(value))

    async def dispatch_remote(
        self, calls: Sequence[ToolCall], identity: str, turn: Mapping[str, Any]
    ) -> Dict[str, ToolResult]:
        """
        Hand every remote call of one planner turn to the broker in a single request.

        The turn is rebuilt so that it contains only the remote ``tool_use`` blocks; local
        tool-use blocks are filtered out, other blocks are kept as they were.
        """
        if not calls:
            return {}

        if self._broker is None:
            exc = ToolExecutionError("No broker configured for remote tools")
            return {
                call.id: ToolResult(
                    tool_use_id=call.id, name=call.name, content=_error_content(exc), is_error=True
                )
                for call in calls
            }

        remote_ids = {call.id for call in calls}
        filtered_turn = dict(turn)
        filtered_turn["content"] = [
            block
            for block in turn.get("content", [])
            if block.get("type") != "tool_use" or block.get("id") in remote_ids
        ]

        try:
            raw = await asyncio.wait_for(
                self._broker.execute(identity, filtered_turn, calls), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Broker timed out after %ss", self._timeout)
            raw = None
            error = f"Error: Remote tool execution timed out after {self._timeout}s"
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Broker failed for calls %s", [call.name for call in calls])
            raw = None
            error = _error_content(exc)

        results: Dict[str, ToolResult] = {}
        for call in calls:
            if raw is None:
                results[call.id] = ToolResult(
                    tool_use_id=call.id, name=call.name, content=error, is_error=True
                )
                continue
            value = raw.get(call.id)
            is_error = value is None or (
                isinstance(value, dict)
                and (value.get("successful") is False or bool(value.get("error")))
            )
            results[call.id] = ToolResult(
                tool_use_id=call.id,
                name=call.name,
                content=_result_content(value) if value is not None else "Error: No result",
                is_error=is_error,
            )
        return results

    async def execute(
        self, calls: Sequence[ToolCall], identity: str, turn: Mapping[str, Any]
    ) -> List[ToolResult]:
        """
        Execute one approved batch.

        Local calls run concurrently, remote calls go to the broker as one batch alongside them;
        results come back in the order of *calls*.
        """
        local_calls: List[ToolCall] = []
        remote_calls: List[ToolCall] = []
        results: Dict[str, ToolResult] = {}

        for call in calls:
            provenance = self.classify(call)
            if provenance is Provenance.LOCAL:
                local_calls.append(call)
            elif provenance is Provenance.REMOTE:
                remote_calls.append(call)
            else:
                results[call.id] = self._not_found(call)

        if local_calls:
            logger.info("Executing local tools: %s", [call.name for call in local_calls])
        if remote_calls:
            logger.info("Executing remote tools: %s", [call.name for call in remote_calls])

        local_results, remote_results = await asyncio.gather(
            asyncio.gather(*(self.dispatch_local(call) for call in local_calls)),
            self.dispatch_remote(remote_calls, identity, turn),
        )
        for result in local_results:
            results[result.tool_use_id] = result
        results.update(remote_results)

        return [results[call.id] for call in calls]

    @staticmethod
    def _not_found(call: ToolCall) -> ToolResult:
        logger.warning("No executor found for tool '%s'", call.name)
        return ToolResult(
            tool_use_id=call.id,
            name=call.name,
            content=f"Error: No executor found for tool {call.name}",
            is_error=True,
        )
