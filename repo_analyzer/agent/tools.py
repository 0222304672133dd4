"""Tool registry contract consumed by the agent, plus a simple container.

Tool implementations (file reading, search, parsing) are supplied by the
caller. The agent only needs to list declarations, resolve a tool by
name and execute it with an abort signal.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from repo_analyzer.errors import OperationAborted
from repo_analyzer.llm.schemas import ToolDefinition

logger = logging.getLogger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


class AbortSignal:
    """Cooperative cancellation for provider and tool calls.

    guard() races an awaitable against abort(); the awaitable is cancelled
    and OperationAborted raised when the signal fires first.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        if self.aborted:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise OperationAborted("Operation aborted before start")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if task.done():
            return task.result()
        task.cancel()
        raise OperationAborted("Operation aborted")


class ToolResult(BaseModel):
    """Outcome of one tool execution."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @property
    def llm_content(self) -> str:
        """Text placed into the transcript as the tool message."""
        if not self.success:
            return f"Error: {self.error or 'unknown error'}"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, ensure_ascii=False, default=str)


@runtime_checkable
class Tool(Protocol):
    @property
    def definition(self) -> ToolDefinition: ...

    async def execute(
        self, arguments: dict[str, Any], abort_signal: Optional[AbortSignal] = None
    ) -> ToolResult: ...


@runtime_checkable
class ToolRegistryProtocol(Protocol):
    def list_tools(self) -> list[ToolDefinition]: ...

    def get_tool(self, name: str) -> Optional[Tool]: ...


class FunctionTool:
    """Adapts an async function to the Tool protocol.

    The function receives the validated arguments as keyword arguments and
    returns the data for a successful ToolResult.
    """

    def __init__(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        description: str = "",
        parameter_schema: Optional[dict[str, Any]] = None,
    ):
        self._definition = ToolDefinition(
            name=name,
            description=description,
            parameter_schema=parameter_schema or {"type": "object", "properties": {}},
        )
        self._func = func

    @property
    def definition(self) -> ToolDefinition:
        return self._definition

    async def execute(
        self, arguments: dict[str, Any], abort_signal: Optional[AbortSignal] = None
    ) -> ToolResult:
        data = await self._func(**arguments)
        return ToolResult(success=True, data=data)


class ToolRegistry:
    """In-memory tool container satisfying ToolRegistryProtocol."""

    def __init__(self, tools: Optional[list[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        name = tool.definition.name
        if name in self._tools:
            logger.warning(f"Replacing registered tool: {name}")
        self._tools[name] = tool

    def list_tools(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def count(self) -> int:
        return len(self._tools)


def validate_arguments(definition: ToolDefinition, arguments: dict[str, Any]) -> list[str]:
    """Check arguments against the top level of the tool's JSON schema.

    Only required keys and primitive property types are checked.

    Returns:
        List of problems, empty when the arguments are acceptable
    """
    schema = definition.parameter_schema or {}
    problems = []

    for key in schema.get("required", []):
        if key not in arguments:
            problems.append(f"missing required parameter '{key}'")

    properties = schema.get("properties", {})
    for key, value in arguments.items():
        expected = properties.get(key, {}).get("type")
        if not isinstance(expected, str) or expected not in _JSON_TYPES:
            continue
        # bool is an int subclass; reject it for numeric parameters
        if expected in ("integer", "number") and isinstance(value, bool):
            problems.append(f"parameter '{key}' should be {expected}")
        elif not isinstance(value, _JSON_TYPES[expected]):
            problems.append(f"parameter '{key}' should be {expected}")

    return problems
