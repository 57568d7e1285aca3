"""
Remote tool broker.

Remote tools are described and executed by a third-party broker (Composio) on behalf of an
*identity*, which selects the connected external accounts.  The broker's execution contract is
turn-scoped: it receives an assistant turn with ``tool_use`` blocks and executes every block in it.
"""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Protocol,
    Sequence,
)

from crmpilot.core.schema import (
    ToolCall,
    ToolDescriptor,
)

logger = logging.getLogger(__name__)


class BrokerError(RuntimeError):
    """Raised when the broker cannot list or execute tools."""


class ToolBroker(Protocol):
    """What the orchestrator needs from a remote tool broker."""

    async def fetch_tools(
        self,
        identity: str,
        slugs: Sequence[str] = (),
        toolkits: Sequence[str] = (),
    ) -> List[ToolDescriptor]:
        """Return descriptors for the requested tools."""

    async def execute(
        self, identity: str, turn: Mapping[str, Any], calls: Sequence[ToolCall]
    ) -> Dict[str, Any]:
        """Execute the ``tool_use`` blocks of *turn*; return results keyed by call id."""


class ComposioBroker:
    """Composio SDK with its Anthropic provider."""

    def __init__(self, api_key: str | None = None, client: Any = None) -> None:
        if client is None:
            # Lazy import - the SDK is only needed when remote tools are used
            from composio import Composio  # pylint: disable=import-outside-toplevel
            from composio_anthropic import (  # pylint: disable=import-outside-toplevel
                AnthropicProvider,
            )

            client = Composio(api_key=api_key, provider=AnthropicProvider())
        self._client = client

    async def fetch_tools(
        self,
        identity: str,
        slugs: Sequence[str] = (),
        toolkits: Sequence[str] = (),
    ) -> List[ToolDescriptor]:
        kwargs: Dict[str, Any] = {}
        if slugs:
            kwargs["tools"] = list(slugs)
        if toolkits:
            kwargs["toolkits"] = list(toolkits)
        if not kwargs:
            return []

        try:
            raw_tools = await asyncio.to_thread(self._client.tools.get, identity, **kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            raise BrokerError(f"Failed to fetch remote tools: {exc}") from exc

        descriptors = [ToolDescriptor.model_validate(_as_dict(tool)) for tool in raw_tools]
        logger.debug("Fetched %d remote tools for '%s'", len(descriptors), identity)
        return descriptors

    async def execute(
        self, identity: str, turn: Mapping[str, Any], calls: Sequence[ToolCall]
    ) -> Dict[str, Any]:
        # Imported here for the same reason as the SDK itself
        from anthropic.types import Message  # pylint: disable=import-outside-toplevel

        message = Message.model_validate(
            {
                "id": turn.get("id") or "msg_crmpilot",
                "type": "message",
                "role": "assistant",
                "model": turn.get("model") or "unknown",
                "content": list(turn.get("content", [])),
                "stop_reason": "tool_use",
                "stop_sequence": None,
                "usage": {"input_tokens": 0, "output_tokens": 0},
            }
        )
        try:
            outputs = await asyncio.to_thread(
                self._client.provider.handle_tool_calls, user_id=identity, response=message
            )
        except Exception as exc:  # pylint: disable=broad-except
            raise BrokerError(f"Broker failed to execute tool calls: {exc}") from exc

        # The provider answers in tool_use block order
        ordered_ids = [
            block["id"] for block in turn.get("content", []) if block.get("type") == "tool_use"
        ]
        outputs = list(outputs or [])
        if len(outputs) != len(ordered_ids):
            logger.warning(
                "Broker returned %d results for %d calls", len(outputs), len(ordered_ids)
            )
        results = {call_id: _as_dict(output) for call_id, output in zip(ordered_ids, outputs)}
        missing = {call.id for call in calls} - set(results)
        for call_id in missing:
            results[call_id] = {"error": "Broker returned no result for this call."}
        return results


def _as_dict(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return value
