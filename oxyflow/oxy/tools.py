"""
Tool components: the permissioned base class and Python-function tools.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from ..core.constants import DEFAULT_TOOL_TIMEOUT
from ..schemas.request import OxyRequest
from ..schemas.response import OxyResponse
from ..schemas.state import OxyState
from .base_oxy import BaseOxy, is_async_callable

logger = logging.getLogger(__name__)

_TYPE_NAMES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class BaseTool(BaseOxy):
    """Tools require permission by default and carry a 60s advisory timeout."""

    def __init__(self, name: str, desc: str = "", **kwargs: Any):
        kwargs.setdefault("category", "tool")
        kwargs.setdefault("is_permission_required", True)
        kwargs.setdefault("timeout", DEFAULT_TOOL_TIMEOUT)
        super().__init__(name, desc, **kwargs)


def build_input_schema(
    func: Callable[..., Any],
    param_descriptions: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Derive an input schema from a function signature."""
    param_descriptions = param_descriptions or {}
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param in inspect.signature(func).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD) or param.name == "oxy_request":
            continue
        spec = {"description": param_descriptions.get(param.name, "")}
        type_name = _TYPE_NAMES.get(param.annotation)
        if type_name:
            spec["type"] = type_name
        properties[param.name] = spec
        if param.default is param.empty:
            required.append(param.name)

    return {"properties": properties, "required": required}


class FunctionTool(BaseTool):
    """
    Wraps a Python callable as a tool.

    Async callables are awaited; sync ones run in a worker thread. Only
    arguments named in the signature are passed unless the function
    accepts ``**kwargs``. A parameter named ``oxy_request`` receives the
    current request.
    """

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        desc: str = "",
        param_descriptions: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ):
        if not callable(func):
            raise TypeError(f"Tool function for {name} must be callable")
        kwargs.setdefault("input_schema", build_input_schema(func, param_descriptions))
        super().__init__(name, desc or (inspect.getdoc(func) or ""), **kwargs)
        self.func = func
        self._signature = inspect.signature(func)
        self._accepts_kwargs = any(
            p.kind is p.VAR_KEYWORD for p in self._signature.parameters.values()
        )

    def _select_arguments(self, oxy_request: OxyRequest) -> Dict[str, Any]:
        arguments = dict(oxy_request.arguments)
        if "oxy_request" in self._signature.parameters:
            arguments["oxy_request"] = oxy_request
        if self._accepts_kwargs:
            return arguments
        return {k: v for k, v in arguments.items() if k in self._signature.parameters}

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        arguments = self._select_arguments(oxy_request)
        if is_async_callable(self.func):
            output = await self.func(**arguments)
        else:
            output = await asyncio.to_thread(self.func, **arguments)
        if isinstance(output, OxyResponse):
            return output
        return OxyResponse(state=OxyState.COMPLETED, output=output)


class FunctionHub:
    """
    Groups several functions and registers each one as a FunctionTool.

    Example:
        ```python
        time_tools = FunctionHub("time_tools")

        @time_tools.tool(description="Get the current time")
        def get_current_time(timezone: str = "UTC") -> str:
            ...

        mas.add_oxy_list(time_tools.to_oxy_list())
        ```
    """

    def __init__(self, name: str, **tool_kwargs: Any):
        if not name or not name.strip():
            raise ValueError("Function hub name cannot be empty")
        self.name = name.strip()
        self.tool_kwargs = tool_kwargs
        self._tools: Dict[str, FunctionTool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def register_tool(
        self,
        func: Callable[..., Any],
        description: str,
        name: Optional[str] = None,
        param_descriptions: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ) -> FunctionTool:
        """
        Register ``func`` as a tool.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        tool_name = (name or func.__name__).strip()
        if tool_name in self._tools:
            raise ValueError(f"Tool with name '{tool_name}' already exists in hub {self.name}")
        tool = FunctionTool(
            tool_name,
            func,
            desc=description,
            param_descriptions=param_descriptions,
            **{**self.tool_kwargs, **kwargs},
        )
        self._tools[tool_name] = tool
        logger.debug(f"Registered tool {tool_name} in hub {self.name}")
        return tool

    def tool(
        self,
        description: str,
        name: Optional[str] = None,
        param_descriptions: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of ``register_tool``; returns the function unchanged."""
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_tool(func, description, name, param_descriptions, **kwargs)
            return func
        return decorator

    def to_oxy_list(self) -> List[FunctionTool]:
        return list(self._tools.values())
