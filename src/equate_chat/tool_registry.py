"""
Simple tool registry for automatic schema generation and tool execution.

Maps Python callables to Chat Completions tool schemas and dispatches the
tool calls requested by the model. Invocation never raises: every failure is
returned to the model as the tool's text output.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, get_type_hints

from .messages import ToolCallRequest

logger = logging.getLogger(__name__)


class ToolDescriptor(NamedTuple):
    """A registered tool: its advertised schema and the callable behind it."""

    name: str
    description: str
    parameters: Dict[str, Any]
    func: Callable

    def to_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def callable_to_tool_schema(
    callable_func: Callable, name: str, description: Optional[str] = None
) -> Dict[str, Any]:
    """
    Convert a Python callable (function or method) to a Chat Completions tool schema.

    Args:
        callable_func: The callable to convert
        name: Tool name
        description: Optional description

    Returns:
        Tool schema dictionary
    """
    sig = inspect.signature(callable_func)
    type_hints = get_type_hints(callable_func)

    # Get description from docstring if not provided
    if description is None:
        doc = inspect.getdoc(callable_func)
        description = doc.strip() if doc else f"Execute {name}"

    parameters = {"type": "object", "properties": {}, "required": []}

    for param_name, param in sig.parameters.items():
        if param_name == "self":
            continue

        param_type = type_hints.get(param_name, str)

        if param_type is bool:
            json_type = "boolean"
        elif param_type is int:
            json_type = "integer"
        elif param_type is float:
            json_type = "number"
        else:
            json_type = "string"  # Default fallback

        parameters["properties"][param_name] = {
            "type": json_type,
            "description": f"The {param_name} parameter",
        }

        if param.default is inspect.Parameter.empty:
            parameters["required"].append(param_name)

    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


class ToolRegistry:
    """Registry for managing tools and their schemas."""

    def __init__(self):
        self.tools: Dict[str, ToolDescriptor] = {}

    def register_callable(
        self,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ToolDescriptor:
        """
        Register a callable (function or method) and auto-generate its tool schema.

        Args:
            callable_func: The callable to register
            name: Optional name override (defaults to callable name)
            description: Optional description (defaults to the docstring)
        """
        tool_name = name or callable_func.__name__
        function = callable_to_tool_schema(callable_func, tool_name, description)["function"]

        descriptor = ToolDescriptor(
            name=tool_name,
            description=function["description"],
            parameters=function["parameters"],
            func=callable_func,
        )
        self.tools[tool_name] = descriptor
        return descriptor

    def get_schemas(self) -> List[Dict[str, Any]]:
        """Get all tool schemas for the Chat Completions API."""
        return [descriptor.to_schema() for descriptor in self.tools.values()]

    def get_tool_names(self) -> List[str]:
        return list(self.tools.keys())

    def resolve(self, name: str) -> Optional[ToolDescriptor]:
        """Look up a tool by name, returning None when it is not registered."""
        return self.tools.get(name)

    async def invoke(self, descriptor: ToolDescriptor, arguments: Dict[str, Any]) -> str:
        """
        Invoke a tool and return its output as text.

        Exceptions raised by the tool (including bad keyword arguments) are
        returned as error text instead of propagating.
        """
        try:
            if inspect.iscoroutinefunction(descriptor.func):
                result = await descriptor.func(**arguments)
            else:
                # Run in a worker thread so slow tools do not block other sessions
                result = await asyncio.to_thread(descriptor.func, **arguments)
        except Exception as e:
            logger.info(f"TOOL ERROR: {descriptor.name} - {str(e)}")
            return f"Error: {str(e)}"

        return str(result) if result is not None else "Tool executed successfully"

    async def execute_tool_call(self, call: ToolCallRequest) -> str:
        """
        Execute a tool call requested by the model.

        Args:
            call: The tool call, with its arguments as JSON text.

        Returns:
            The tool output, or an error message the model can read.
        """
        try:
            args = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as e:
            logger.info(f"TOOL JSON ERROR: {call.name} - {str(e)}")
            return f"Error parsing arguments: {str(e)}"

        if not isinstance(args, dict):
            return "Error parsing arguments: expected a JSON object"

        descriptor = self.resolve(call.name)
        if descriptor is None:
            logger.info(f"TOOL ERROR: unknown tool {call.name!r}")
            return f"Error: Tool '{call.name}' not found"

        return await self.invoke(descriptor, args)

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        """Get number of registered tools."""
        return len(self.tools)
