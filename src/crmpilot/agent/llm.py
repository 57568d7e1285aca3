"""
LLM back-ends for crmpilot.

This module is the only place that *directly* calls an LLM provider.  The planner, the judge and
the sufficiency evaluator only see :class:`BaseLLM.complete`, which takes a prompt and an optional
list of tools and returns the provider's content blocks normalised to plain dicts:

* ``{"type": "text", "text": "..."}``
* ``{"type": "tool_use", "id": "...", "name": "...", "input": {...}}``

We support two back-ends out of the box:

1. **Anthropic** messages API with native tool use.
2. **OpenAI** chat completions with function tools, translated to the block shape above.

Additional providers can be added by subclassing :class:`BaseLLM` and registering via
:func:`register_llm`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from crmpilot.core.schema import ToolDescriptor

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when a provider call fails or returns something unusable."""


class LLMResponse(BaseModel):
    """Normalised provider response."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: List[Dict[str, Any]] = Field(default_factory=list)
    raw: Any = None

    def text(self) -> str:
        """Concatenate all text blocks."""
        return "".join(
            str(block.get("text", "")) for block in self.content if block.get("type") == "text"
        )


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_LLM_REGISTRY: dict[str, Type["BaseLLM"]] = {}


def register_llm(name: str) -> Callable:
    """Decorator to register an LLM back-end class under *name*."""

    def wrapper(cls: Type["BaseLLM"]) -> Type["BaseLLM"]:
        _LLM_REGISTRY[name] = cls
        return cls

    return wrapper


def load_llm(name: str, api_key: str | None = None) -> "BaseLLM":
    """Factory that returns an instantiated LLM back-end."""
    cls = _LLM_REGISTRY.get(name.lower())
    if cls is None:
        raise ValueError(f"LLM provider '{name}' is not registered.")
    return cls(api_key=api_key)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseLLM(ABC):
    """Abstract prompt -> content blocks completion."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        tools: Sequence[ToolDescriptor] | None = None,
        *,
        model: str,
        max_tokens: int,
    ) -> LLMResponse:
        """Send a single user message and return the normalised response."""


# ---------------------------------------------------------------------------
# Concrete back-ends
# ---------------------------------------------------------------------------
@register_llm("anthropic")
class AnthropicLLM(BaseLLM):
    """Anthropic Claude back-end."""

    def __init__(self, api_key: str | None = None, client: Any = None) -> None:
        if client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            client = anthropic.AsyncAnthropic(api_key=api_key)
        self._client = client

    async def complete(
        self,
        prompt: str,
        tools: Sequence[ToolDescriptor] | None = None,
        *,
        model: str,
        max_tokens: int,
    ) -> LLMResponse:
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if tools:
            kwargs["tools"] = [tool.model_dump() for tool in tools]

        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            raise LLMError(f"Error calling Anthropic: {exc}") from exc

        content = [block.model_dump() for block in response.content]
        logger.debug("Anthropic response (%s): %s", model, content)
        return LLMResponse(content=content, raw=response)


@register_llm("openai")
class OpenAILLM(BaseLLM):
    """OpenAI chat-completions back-end."""

    def __init__(self, api_key: str | None = None, client: Any = None) -> None:
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            client = openai.AsyncOpenAI(api_key=api_key)
        self._client = client

    async def complete(
        self,
        prompt: str,
        tools: Sequence[ToolDescriptor] | None = None,
        *,
        model: str,
        max_tokens: int,
    ) -> LLMResponse:
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in tools
            ]

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            raise LLMError(f"Error calling OpenAI: {exc}") from exc

        if not response.choices:
            raise LLMError("Empty response from OpenAI")
        message = response.choices[0].message

        content: List[Dict[str, Any]] = []
        if message.content:
            content.append({"type": "text", "text": message.content})
        for call in message.tool_calls or []:
            raw_args = call.function.arguments or "{}"
            try:
                arguments: Any = json.loads(raw_args)
            except json.JSONDecodeError:
                # Left as a string so the planner's decode step rejects it
                arguments = raw_args
            content.append(
                {"type": "tool_use", "id": call.id, "name": call.function.name, "input": arguments}
            )

        logger.debug("OpenAI response (%s): %s", model, content)
        return LLMResponse(content=content, raw=response)
