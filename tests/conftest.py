"""Shared fakes for the test-suite."""

from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
)

import pytest
from pydantic import BaseModel

from crmpilot.agent.llm import (
    BaseLLM,
    LLMResponse,
)
from crmpilot.core.schema import (
    ToolCall,
    ToolDescriptor,
)
from crmpilot.tools import Toolset

APPROVE = '{"decision": "approve", "reason": "ok"}'


def text_block(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def tool_use(call_id: str, name: str, /, **arguments: Any) -> Dict[str, Any]:
    return {"type": "tool_use", "id": call_id, "name": name, "input": arguments}


class FakeLLM(BaseLLM):
    """
    Replays canned replies in order.

    A reply is a list of content blocks, a string (one text block), an exception to raise, or a
    callable taking the 1-based call number and returning one of those.  With ``repeat_last`` the
    final reply is reused forever.
    """

    def __init__(self, *replies: Any, repeat_last: bool = False) -> None:
        self.replies = list(replies)
        self.repeat_last = repeat_last
        self.prompts: List[str] = []
        self.tools: List[List[ToolDescriptor]] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(
        self,
        prompt: str,
        tools: Sequence[ToolDescriptor] | None = None,
        *,
        model: str,
        max_tokens: int,
    ) -> LLMResponse:
        self.prompts.append(prompt)
        self.tools.append(list(tools or []))
        if not self.replies:
            raise AssertionError(f"Unexpected LLM call #{self.calls}")
        reply = self.replies[0] if self.repeat_last and len(self.replies) == 1 else None
        if reply is None:
            reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(self.calls)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            reply = [text_block(reply)]
        return LLMResponse(content=list(reply))


class FakeBroker:
    """In-memory broker: fixed descriptors, results produced by a callback per call."""

    def __init__(
        self,
        descriptors: Sequence[ToolDescriptor] = (),
        handler: Callable[[ToolCall], Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.descriptors = list(descriptors)
        self.handler = handler or (lambda call: {"successful": True, "data": call.name})
        self.error = error
        self.turns: List[Mapping[str, Any]] = []
        self.fetches: List[tuple] = []

    async def fetch_tools(
        self, identity: str, slugs: Sequence[str] = (), toolkits: Sequence[str] = ()
    ) -> List[ToolDescriptor]:
        self.fetches.append((identity, tuple(slugs), tuple(toolkits)))
        if self.error is not None:
            raise self.error
        return list(self.descriptors)

    async def execute(
        self, identity: str, turn: Mapping[str, Any], calls: Sequence[ToolCall]
    ) -> Dict[str, Any]:
        self.turns.append(turn)
        return {call.id: self.handler(call) for call in calls}


class EmailArgs(BaseModel):
    email: str


class ContactArgs(BaseModel):
    email: str
    name: str


@pytest.fixture
def contact_tools() -> Toolset:
    """findContact / createContact over an in-memory contact book."""
    tools = Toolset("contacts")
    tools.executed = []  # type: ignore[attr-defined]
    book: Dict[str, str] = {}

    @tools.tool("findContact", EmailArgs)
    async def find_contact(args: EmailArgs) -> Any:
        """Find a contact by email."""
        tools.executed.append(("findContact", args.email))  # type: ignore[attr-defined]
        if args.email in book:
            return {"found": True, "id": book[args.email]}
        return {"found": False}

    @tools.tool("createContact", ContactArgs)
    async def create_contact(args: ContactArgs) -> Any:
        """Create a contact."""
        tools.executed.append(("createContact", args.email))  # type: ignore[attr-defined]
        book[args.email] = f"rec_{len(book) + 1}"
        return {"id": book[args.email]}

    return tools
