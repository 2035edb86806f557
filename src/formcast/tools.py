"""Tools: named callables the model may invoke during a structured call.

A tool receives the decoded argument object and returns text that is fed
back to the model verbatim. Failures never abort a call: unknown names,
malformed arguments and exceptions raised by the tool all become an
``"Error: ..."`` string delivered as the tool's result.

Sync tool functions run in a worker thread so a cancelled call stops waiting
on them; async tool functions are awaited directly.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any

from formcast.errors import ConfigurationError
from formcast.gateway.models import ToolCall, ToolDeclaration

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Iterator

    ToolFunc = Callable[[dict[str, Any]], str | Awaitable[str]]

logger = logging.getLogger(__name__)

_DEFAULT_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class Tool:
    """A named capability exposed to the model.

    ``parameters`` is a JSON-Schema-like object (``type``, ``properties``,
    ``required``) passed to the gateway untouched.
    """

    name: str
    description: str
    func: ToolFunc
    parameters: dict[str, Any] = field(
        default_factory=lambda: dict(_DEFAULT_PARAMETERS)
    )

    def __post_init__(self) -> None:
        """Validate the parts the gateway relies on."""
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError(
                "tool name must be a non-empty string",
                hint="Name tools like 'get_weather'.",
            )
        if not callable(self.func):
            raise ConfigurationError(f"tool {self.name!r} func is not callable")
        if not isinstance(self.parameters, dict):
            raise ConfigurationError(
                f"tool {self.name!r} parameters must be a dict",
                hint="Pass a JSON schema like {'type': 'object', 'properties': {...}}.",
            )

    def declaration(self) -> ToolDeclaration:
        """Return the declaration advertised to the model."""
        return ToolDeclaration(
            name=self.name, description=self.description, parameters=self.parameters
        )

    async def invoke(self, arguments: dict[str, Any]) -> str:
        """Call the tool function and coerce its result to text."""
        if inspect.iscoroutinefunction(self.func):
            result = await self.func(arguments)
        else:
            result = await asyncio.to_thread(self.func, arguments)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)


class ToolRegistry:
    """Process-owned tools keyed by name.

    Populate before requests start; lookups are read-only afterwards, so one
    registry can serve concurrent requests. Registration while requests are
    in flight must be synchronized by the caller.
    """

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for t in tools or ():
            self.register(t)

    def register(self, tool: Tool) -> Tool:
        """Add *tool*; names are unique within a registry."""
        if tool.name in self._tools:
            raise ConfigurationError(
                f"tool {tool.name!r} is already registered",
                hint="Tool names must be unique within a registry.",
            )
        self._tools[tool.name] = tool
        return tool

    def tool(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> Callable[[ToolFunc], ToolFunc]:
        """Register the decorated function as a tool.

        The description defaults to the function's docstring.

        Example:
            @registry.tool(parameters={"type": "object", "properties": {...}})
            def get_weather(args: dict) -> str:
                return lookup(args["city"])
        """

        def decorator(func: ToolFunc) -> ToolFunc:
            self.register(
                Tool(
                    name=name or func.__name__,
                    description=description or inspect.getdoc(func) or "",
                    func=func,
                    parameters=parameters or dict(_DEFAULT_PARAMETERS),
                )
            )
            return func

        return decorator

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def merged(self, extra: Iterable[Tool] = ()) -> list[Tool]:
        """Registry tools followed by request-scoped *extra* tools."""
        return [*self._tools.values(), *extra]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def find_tool(tools: Iterable[Tool], name: str) -> Tool | None:
    """Scan *tools* for *name*; the last match wins."""
    found: Tool | None = None
    for t in tools:
        if t.name == name:
            found = t
    return found


def declarations(tools: Iterable[Tool]) -> list[ToolDeclaration]:
    """One declaration per tool name, in first-seen order, last registration wins."""
    by_name: dict[str, Tool] = {}
    for t in tools:
        by_name[t.name] = t
    return [t.declaration() for t in by_name.values()]


def decode_arguments(arguments: str) -> dict[str, Any]:
    """Decode a tool call's argument text into an argument map.

    Raises:
        ValueError: If *arguments* is not a JSON object.
    """
    if not arguments.strip():
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid tool arguments: {e}") from e
    if not isinstance(value, dict):
        raise ValueError(
            f"tool arguments must be a JSON object, got {type(value).__name__}"
        )
    return value


async def execute_tool_call(call: ToolCall, tools: Iterable[Tool]) -> str:
    """Run *call* against *tools* and return the text for the model.

    Cancellation propagates; every other failure is returned as text.
    """
    t = find_tool(tools, call.name)
    if t is None:
        logger.debug("Model requested unknown tool %r", call.name)
        return f"Error: unknown tool {call.name!r}"

    try:
        arguments = decode_arguments(call.arguments)
    except ValueError as e:
        logger.debug("Tool %r got malformed arguments: %s", call.name, e)
        return f"Error: {e}"

    try:
        return await t.invoke(arguments)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug("Tool call error (sending to model): %s: %s", call.name, e)
        return f"Error: {e}" if str(e) else f"Error: {type(e).__name__}"
