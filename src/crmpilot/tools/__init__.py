"""
Local tools for crmpilot.

A local tool is a :class:`~crmpilot.core.schema.ToolDescriptor` paired with an async executor.  Tools
are grouped into a :class:`Toolset` with the :meth:`Toolset.tool` decorator:

    tools = Toolset("attio")

    @tools.tool("getPersonByEmail", EmailArgs)
    async def get_person_by_email(args: EmailArgs) -> Any:
        \"\"\"Lookup a person in Attio by email.\"\"\"
        return await client.get_person_by_email(args.email)

The argument model's JSON schema becomes the tool's ``input_schema`` and the docstring its
description.  Raw arguments coming from the planner are validated against the model before the
function runs, so a malformed call raises instead of reaching the external API.
"""

import inspect
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Type,
    TypeVar,
)

from pydantic import BaseModel

from crmpilot.core.schema import ToolDescriptor

logger = logging.getLogger(__name__)

ArgsT = TypeVar("ArgsT", bound=BaseModel)
ToolExecutor = Callable[[Mapping[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class LocalTool:
    """A tool executed in-process."""

    descriptor: ToolDescriptor
    executor: ToolExecutor

    @property
    def name(self) -> str:
        return self.descriptor.name


def _clean_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


@dataclass
class Toolset:
    """Named collection of local tools, keyed by tool name."""

    name: str
    _tools: Dict[str, LocalTool] = field(default_factory=dict, init=False, repr=False)

    def tool(
        self, name: str, args_model: Type[ArgsT], description: str | None = None
    ) -> Callable[[Callable[[ArgsT], Awaitable[Any]]], Callable[[ArgsT], Awaitable[Any]]]:
        """
        Register an async function as a tool under *name*.

        Raises
        ------
        ValueError
            If a tool with the same name is already in this toolset.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered in toolset '{self.name}'.")

        def wrapper(fn: Callable[[ArgsT], Awaitable[Any]]) -> Callable[[ArgsT], Awaitable[Any]]:
            async def executor(arguments: Mapping[str, Any]) -> Any:
                return await fn(args_model.model_validate(dict(arguments)))

            doc = description or inspect.getdoc(fn) or ""
            descriptor = ToolDescriptor(
                name=name, description=doc, input_schema=_clean_schema(args_model)
            )
            self.add(LocalTool(descriptor=descriptor, executor=executor))
            return fn

        return wrapper

    def add(self, tool: LocalTool) -> None:
        """Add an already-built tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered in toolset '{self.name}'.")
        logger.debug("Registering tool '%s' in toolset '%s'", tool.name, self.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> LocalTool | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def __iter__(self) -> Iterator[LocalTool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def merge_toolsets(name: str, toolsets: Iterable[Toolset]) -> Toolset:
    """Combine several toolsets into one; duplicate names raise ``ValueError``."""
    merged = Toolset(name)
    for toolset in toolsets:
        for tool in toolset:
            merged.add(tool)
    return merged
