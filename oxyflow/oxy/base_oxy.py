"""
Base class for every invocable component (agent, tool, LLM, flow).

``BaseOxy.execute`` is a fixed pipeline shared by all components:

1. acquire the component's concurrency permit
2. pre-process (node id, call stack, input hook)
3. fingerprint the arguments
4. replay interception from a reference trace
5. pre-save the node record (background)
6. format input, send the ``tool_call`` notification
7. before-execute hook
8. execute with retry
9. after-execute hook, output hook, log
10. post-save the node record (background)
11. format output (friendly error text for failures)
12. send ``observation`` / ``answer`` notifications
13. release the permit

Subclasses implement ``_execute`` and may override the hook methods.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from ..core.config import ExecutionConfig, MessageConfig
from ..core.constants import DEFAULT_INPUT_SCHEMA, USER_CALLER
from ..core.error_handler import ErrorCategory, ErrorHandler
from ..schemas.request import OxyRequest
from ..schemas.response import OxyResponse
from ..schemas.state import OxyState
from ..utils.identifiers import fingerprint, generate_id, next_order, to_json

if TYPE_CHECKING:
    from ..mas import Mas

logger = logging.getLogger(__name__)

_default_error_handler = ErrorHandler()

# Errors that end the retry loop at once
_FATAL_CATEGORIES = (ErrorCategory.CONFIGURATION, ErrorCategory.PERMISSION)


async def call_hook(func: Optional[Callable[..., Any]], value: Any) -> Any:
    """Run a sync or async hook; no hook returns ``value`` unchanged."""
    if func is None:
        return value
    result = func(value)
    if inspect.isawaitable(result):
        result = await result
    return result


def is_async_callable(func: Callable[..., Any]) -> bool:
    """Coroutine functions and objects with an async ``__call__``."""
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


class BaseOxy(ABC):
    """
    Shared lifecycle for all components.

    Attributes:
        name: Unique name in the registry
        desc: Human readable description, shown to language models
        category: "tool", "llm" or "agent"
        input_schema: JSON-schema-like description of the arguments
        is_permission_required: Callers must list this component to invoke it
        is_save_data: Write node records to the store
        retries: Attempts per execution, including the first
        delay: Seconds between attempts
        semaphore_count: Concurrent executions allowed
        timeout: Advisory timeout in seconds, not enforced here
        permitted_tool_name_list: Components this one may call
        extra_permitted_tool_name_list: Additional callees granted at runtime
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        category: str = "tool",
        input_schema: Optional[Dict[str, Any]] = None,
        is_permission_required: bool = False,
        is_save_data: bool = True,
        retries: Optional[int] = None,
        delay: Optional[float] = None,
        semaphore_count: Optional[int] = None,
        timeout: Optional[float] = None,
        permitted_tool_name_list: Optional[List[str]] = None,
        extra_permitted_tool_name_list: Optional[List[str]] = None,
        is_send_tool_call: Optional[bool] = None,
        is_send_observation: Optional[bool] = None,
        is_send_answer: Optional[bool] = None,
        friendly_error_text: Optional[str] = None,
        func_process_input: Optional[Callable[[OxyRequest], Any]] = None,
        func_process_output: Optional[Callable[[OxyResponse], Any]] = None,
        func_format_input: Optional[Callable[[OxyRequest], Any]] = None,
        func_format_output: Optional[Callable[[OxyResponse], Any]] = None,
        func_interceptor: Optional[Callable[[OxyRequest], Any]] = None,
    ):
        if not name or not name.strip():
            raise ValueError("Component name cannot be empty")

        self.name = name.strip()
        self.desc = desc
        self.category = category
        self.input_schema = input_schema if input_schema is not None else dict(DEFAULT_INPUT_SCHEMA)
        self.is_permission_required = is_permission_required
        self.is_save_data = is_save_data
        self._explicit_settings = {
            "retries": retries,
            "delay": delay,
            "semaphore_count": semaphore_count,
            "is_send_tool_call": is_send_tool_call,
            "is_send_observation": is_send_observation,
            "is_send_answer": is_send_answer,
        }
        self.timeout = timeout
        self.permitted_tool_name_list: List[str] = list(permitted_tool_name_list or [])
        self.extra_permitted_tool_name_list: List[str] = list(extra_permitted_tool_name_list or [])
        self.friendly_error_text = friendly_error_text

        self.func_process_input = func_process_input
        self.func_process_output = func_process_output
        self.func_format_input = func_format_input
        self.func_format_output = func_format_output
        self.func_interceptor = func_interceptor

        self.mas: Optional["Mas"] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self.is_initialized = False
        self._apply_defaults()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, category={self.category!r})"

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _apply_defaults(self) -> None:
        """Fill unset execution and message settings from host config, or built-in defaults."""
        execution = self.mas.config.execution if self.mas else ExecutionConfig()
        message = self.mas.config.message if self.mas else MessageConfig()

        defaults = {
            "retries": execution.retries,
            "delay": execution.delay,
            "semaphore_count": execution.semaphore_count,
            "is_send_tool_call": message.is_send_tool_call,
            "is_send_observation": message.is_send_observation,
            "is_send_answer": message.is_send_answer,
        }
        for key, default in defaults.items():
            value = self._explicit_settings[key]
            setattr(self, key, default if value is None else value)

        if self.retries < 1:
            raise ValueError(f"{self.name}: retries must be at least 1")
        if self.semaphore_count < 1:
            raise ValueError(f"{self.name}: semaphore_count must be positive")

    def set_mas(self, mas: "Mas") -> None:
        """Bind to a host; unset settings now follow its configuration."""
        self.mas = mas
        self._apply_defaults()

    async def init(self) -> None:
        """
        Prepare the component once it is registered.

        Subclasses resolve references to other components here and raise
        ConfigurationError when something is missing.
        """
        self._semaphore = asyncio.Semaphore(self.semaphore_count)
        self.is_initialized = True
        logger.debug(f"Initialized {self!r} (semaphore={self.semaphore_count}, retries={self.retries})")

    @property
    def semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.semaphore_count)
        return self._semaphore

    @property
    def error_handler(self) -> ErrorHandler:
        return self.mas.error_handler if self.mas else _default_error_handler

    @property
    def app_name(self) -> str:
        return self.mas.config.app_name if self.mas else "app"

    # ------------------------------------------------------------------
    # Permissions and descriptions
    # ------------------------------------------------------------------

    def add_permitted_tool(self, tool_name: str) -> None:
        if tool_name in self.permitted_tool_name_list:
            logger.warning(f"Tool {tool_name} already permitted for {self.name}")
            return
        self.permitted_tool_name_list.append(tool_name)

    def add_permitted_tools(self, tool_names: List[str]) -> None:
        for tool_name in tool_names:
            self.add_permitted_tool(tool_name)

    def can_call(self, tool_name: str) -> bool:
        return (
            tool_name in self.permitted_tool_name_list
            or tool_name in self.extra_permitted_tool_name_list
        )

    @property
    def desc_for_llm(self) -> str:
        """Tool description in the format the ReAct prompt expects."""
        lines = [f"Tool: {self.name}", f"Description: {self.desc}", "Arguments:"]
        properties = self.input_schema.get("properties", {})
        required = set(self.input_schema.get("required", []))
        for param, spec in properties.items():
            line = f"- {param}: {spec.get('type', 'string')}, {spec.get('description', '')}"
            if param in required:
                line += " (required)"
            lines.append(line)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def execute(self, oxy_request: OxyRequest) -> OxyResponse:
        """
        Run the full lifecycle for one invocation.

        Never raises for failures inside the component or its hooks; those
        come back as FAILED responses. Cancellation propagates and releases
        the permit.
        """
        async with self.semaphore:
            try:
                oxy_request = await self._pre_process(oxy_request)
            except Exception as e:
                return self._hook_failure(oxy_request, "pre_process", e)
            oxy_request.input_md5 = fingerprint(oxy_request.arguments)

            replayed = await self._request_interceptor(oxy_request)
            if replayed is not None:
                return replayed

            self._pre_save_data(oxy_request)
            try:
                oxy_request = await self._format_input(oxy_request)
                await self._pre_send_message(oxy_request)
                oxy_request = await self._before_execute(oxy_request)

                oxy_response = await self._execute_with_retry(oxy_request)

                oxy_response = await self._after_execute(oxy_response)
                oxy_response = await self._post_process(oxy_response)
            except asyncio.CancelledError:
                if self.mas is not None:
                    self.mas.event_processor.discard(oxy_request.node_id)
                raise
            except Exception as e:
                oxy_response = self._hook_failure(oxy_request, "execute hooks", e)
            self._post_log(oxy_response)
            self._post_save_data(oxy_response)
            try:
                oxy_response = await self._format_output(oxy_response)
            except Exception as e:
                oxy_response = self._hook_failure(oxy_request, "format_output", e)
            await self._post_send_message(oxy_response)
            return oxy_response

    def _hook_failure(self, oxy_request: OxyRequest, stage: str, error: Exception) -> OxyResponse:
        """FAILED response for an exception raised outside the retry loop."""
        self.error_handler.handle_error(
            exception=error,
            operation=stage,
            component=self.name,
            context_data={"trace_id": oxy_request.current_trace_id, "node_id": oxy_request.node_id},
            max_retries=0,
        )
        return OxyResponse(
            state=OxyState.FAILED,
            output=self.friendly_error_text or f"Error executing oxy {self.name}: {error}",
            oxy_request=oxy_request,
        )

    async def _pre_process(self, oxy_request: OxyRequest) -> OxyRequest:
        if not oxy_request.node_id:
            oxy_request.node_id = generate_id()
        if oxy_request.mas is None:
            oxy_request.mas = self.mas
        oxy_request.callee = self.name
        oxy_request.callee_category = self.category
        oxy_request.call_stack.append(self.name)
        if oxy_request.node_id not in oxy_request.node_id_stack:
            oxy_request.node_id_stack.append(oxy_request.node_id)
        return await call_hook(self.func_process_input, oxy_request)

    async def _request_interceptor(self, oxy_request: OxyRequest) -> Optional[OxyResponse]:
        """Replay a stored output from the reference trace, if the restart point allows it."""
        if (
            not oxy_request.reference_trace_id
            or not oxy_request.is_load_data_for_restart
            or self.mas is None
            or self.mas.store is None
            or self.category not in ("llm", "tool")
        ):
            return None

        path = " <<< ".join(oxy_request.call_stack)
        try:
            result = await self.mas.store.search(
                f"{self.app_name}_node",
                {
                    "query": {
                        "bool": {
                            "must": [
                                {"term": {"trace_id": oxy_request.reference_trace_id}},
                                {"term": {"input_md5": oxy_request.input_md5}},
                            ]
                        }
                    },
                    "size": 1,
                },
            )
        except Exception as e:
            logger.error(
                f"Error during request interception for trace_id={oxy_request.current_trace_id} "
                f"node_id={oxy_request.node_id}: {e}"
            )
            return None

        hits = (result or {}).get("hits", {}).get("hits", [])
        if not hits:
            logger.warning(
                f"{path} : nothing to replay. trace_id={oxy_request.current_trace_id} "
                f"node_id={oxy_request.node_id}"
            )
            return None

        source = hits[0].get("_source") or {}
        current_order = source.get("update_time")
        restart_order = oxy_request.restart_node_order
        if current_order is None or restart_order is None:
            return None

        if current_order < restart_order:
            output = source.get("output", "")
            logger.info(f"{path} Load from store: {output} trace_id={oxy_request.current_trace_id}")
        elif current_order == restart_order and oxy_request.restart_node_output:
            output = oxy_request.restart_node_output
            logger.info(f"{path} Wrote by user: {output} trace_id={oxy_request.current_trace_id}")
        else:
            return None

        extra = source.get("extra") or {}
        if isinstance(extra, str):
            try:
                extra = json.loads(extra)
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse stored extra: {e}")
                extra = {}

        state = source.get("state")
        oxy_response = OxyResponse(
            state=OxyState(state) if state else OxyState.COMPLETED,
            output=output,
            extra=extra if isinstance(extra, dict) else {},
            oxy_request=oxy_request,
        )
        return await self._format_output(oxy_response)

    async def _format_input(self, oxy_request: OxyRequest) -> OxyRequest:
        return await call_hook(self.func_format_input, oxy_request)

    async def _before_execute(self, oxy_request: OxyRequest) -> OxyRequest:
        return oxy_request

    async def _execute_with_retry(self, oxy_request: OxyRequest) -> OxyResponse:
        last_error: Optional[Exception] = None

        for attempt in range(self.retries):
            try:
                if self.func_interceptor is not None:
                    error_message = await call_hook(self.func_interceptor, oxy_request)
                else:
                    error_message = None
                if error_message:
                    return OxyResponse(
                        state=OxyState.SKIPPED, output=error_message, oxy_request=oxy_request
                    )
                oxy_response = await self._execute(oxy_request)
                oxy_response.oxy_request = oxy_request
                return oxy_response
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                resolution = self.error_handler.handle_error(
                    exception=e,
                    operation="execute",
                    component=self.name,
                    context_data={
                        "trace_id": oxy_request.current_trace_id,
                        "node_id": oxy_request.node_id,
                    },
                    retry_count=attempt,
                    max_retries=self.retries,
                    log=False,
                )
                logger.warning(
                    f"Error executing oxy {self.name}: {e}. Attempt {attempt + 1} of {self.retries}."
                )
                if resolution.category in _FATAL_CATEGORIES:
                    logger.error(f"{self.name}: {resolution.recovery_hint}")
                    break
                if attempt + 1 < self.retries:
                    await asyncio.sleep(self.delay)

        return OxyResponse(
            state=OxyState.FAILED,
            output=f"Error executing oxy {self.name}: {last_error}",
            oxy_request=oxy_request,
        )

    @abstractmethod
    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        """Core logic of the component."""

    async def _after_execute(self, oxy_response: OxyResponse) -> OxyResponse:
        return oxy_response

    async def _post_process(self, oxy_response: OxyResponse) -> OxyResponse:
        return await call_hook(self.func_process_output, oxy_response)

    def _post_log(self, oxy_response: OxyResponse) -> None:
        oxy_request = oxy_response.oxy_request
        path = " <<< ".join(oxy_request.call_stack) if oxy_request else self.name
        logger.debug(
            f"{path} [{oxy_response.state.value}] {oxy_response.output_as_string[:200]} "
            f"trace_id={oxy_request.current_trace_id if oxy_request else ''}"
        )

    async def _format_output(self, oxy_response: OxyResponse) -> OxyResponse:
        oxy_response = await call_hook(self.func_format_output, oxy_response)
        if oxy_response.state is OxyState.FAILED and self.friendly_error_text:
            oxy_response.output = self.friendly_error_text
        return oxy_response

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _can_save(self) -> bool:
        return self.is_save_data and self.mas is not None and self.mas.store is not None

    def _pre_save_data(self, oxy_request: OxyRequest) -> None:
        """Schedule creation of the node record."""
        if not self._can_save():
            return
        record = {
            "node_id": oxy_request.node_id,
            "node_type": self.category,
            "trace_id": oxy_request.current_trace_id,
            "group_id": oxy_request.group_id,
            "request_id": oxy_request.request_id,
            "caller": oxy_request.caller,
            "callee": oxy_request.callee,
            "parallel_id": oxy_request.parallel_id,
            "father_node_id": oxy_request.father_node_id,
            "call_stack": list(oxy_request.call_stack),
            "node_id_stack": list(oxy_request.node_id_stack),
            "pre_node_ids": list(oxy_request.pre_node_ids),
            "shared_data": to_json(oxy_request.shared_data),
            "create_time": next_order(),
        }
        store = self.mas.store
        self.mas.event_processor.submit_create(
            oxy_request.node_id,
            lambda: store.index(f"{self.app_name}_node", oxy_request.node_id, record),
        )

    def _post_save_data(self, oxy_response: OxyResponse) -> None:
        """Schedule the update of the node record with input and output."""
        oxy_request = oxy_response.oxy_request
        if not self._can_save() or oxy_request is None:
            return
        record = {
            "input": to_json({"class_attr": self.class_attr(), "arguments": oxy_request.arguments}),
            "input_md5": oxy_request.input_md5,
            "output": oxy_response.output_as_string,
            "state": oxy_response.state.value,
            "extra": to_json(oxy_response.extra),
            "update_time": next_order(),
        }
        store = self.mas.store
        self.mas.event_processor.submit_update(
            oxy_request.node_id,
            lambda: store.update(f"{self.app_name}_node", oxy_request.node_id, record),
        )

    def class_attr(self) -> Dict[str, Any]:
        """Static attributes recorded with each node."""
        return {
            "class_name": type(self).__name__,
            "name": self.name,
            "desc": self.desc,
            "category": self.category,
        }

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _base_message_content(self, oxy_request: OxyRequest) -> Dict[str, Any]:
        return {
            "node_id": oxy_request.node_id,
            "caller": oxy_request.caller,
            "callee": oxy_request.callee,
            "caller_category": oxy_request.caller_category,
            "callee_category": oxy_request.callee_category,
            "call_stack": list(oxy_request.call_stack),
            "request_id": oxy_request.request_id,
            "current_trace_id": oxy_request.current_trace_id,
            "from_trace_id": oxy_request.from_trace_id,
            "group_id": oxy_request.group_id,
            "shared_data": dict(oxy_request.shared_data),
        }

    async def _pre_send_message(self, oxy_request: OxyRequest) -> None:
        if not self.is_send_tool_call:
            return
        content = self._base_message_content(oxy_request)
        content["arguments"] = dict(oxy_request.arguments)
        await oxy_request.send_message({"type": "tool_call", "content": content})

    async def _post_send_message(self, oxy_response: OxyResponse) -> None:
        oxy_request = oxy_response.oxy_request
        if oxy_request is None:
            return

        if self.is_send_observation:
            content = self._base_message_content(oxy_request)
            content["output"] = oxy_response.output
            content["state"] = oxy_response.state.value
            await oxy_request.send_message({"type": "observation", "content": content})

        if self.is_send_answer and oxy_request.caller_category == USER_CALLER:
            await oxy_request.send_message({
                "type": "answer",
                "content": oxy_response.output,
                "caller": oxy_request.caller,
                "caller_category": oxy_request.caller_category,
                "callee": oxy_request.callee,
                "callee_category": oxy_request.callee_category,
                "current_trace_id": oxy_request.current_trace_id,
                "request_id": oxy_request.request_id,
            })
