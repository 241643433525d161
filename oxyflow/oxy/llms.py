"""
Language-model connectors.

The concrete HTTP client belongs to the hosting application. BaseLLM
provides the lifecycle and message handling; FunctionLLM adapts any
callable that maps chat messages to text.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..core.constants import DEFAULT_LLM_TIMEOUT, FRIENDLY_LLM_ERROR
from ..core.exceptions import ValidationError
from ..schemas.message import Memory, Message
from ..schemas.request import OxyRequest
from ..schemas.response import OxyResponse
from ..schemas.state import OxyState
from ..utils.output_extraction import extract_think
from .base_oxy import BaseOxy, is_async_callable

logger = logging.getLogger(__name__)

LLMFunc = Callable[..., Union[str, Awaitable[str]]]


def normalize_messages(messages: Any) -> List[Dict[str, Any]]:
    """Accept a Memory, a list of Message objects or dicts, or a plain string."""
    if messages is None:
        return []
    if isinstance(messages, Memory):
        return messages.to_dict_list()
    if isinstance(messages, str):
        return [Message.user(messages).to_dict()]
    return [m.to_dict() if isinstance(m, Message) else dict(m) for m in messages]


class BaseLLM(BaseOxy):
    """
    Base class for language-model connectors.

    Attributes:
        llm_params: Model parameters (temperature, max_tokens, ...) merged
            under the request's own ``llm_params``
        is_send_think: Emit the ``<think>`` part of replies as a notification
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        llm_params: Optional[Dict[str, Any]] = None,
        is_send_think: Optional[bool] = None,
        **kwargs: Any
    ):
        kwargs.setdefault("category", "llm")
        kwargs.setdefault("timeout", DEFAULT_LLM_TIMEOUT)
        kwargs.setdefault("friendly_error_text", FRIENDLY_LLM_ERROR)
        kwargs.setdefault("input_schema", {
            "properties": {"messages": {"type": "array", "description": "Chat messages"}},
            "required": ["messages"],
        })
        super().__init__(name, desc, **kwargs)
        self.llm_params = dict(llm_params or {})
        self._is_send_think = is_send_think

    @property
    def is_send_think(self) -> bool:
        if self._is_send_think is not None:
            return self._is_send_think
        return self.mas.config.message.is_send_think if self.mas else True

    async def _format_input(self, oxy_request: OxyRequest) -> OxyRequest:
        oxy_request = await super()._format_input(oxy_request)
        if "messages" in oxy_request.arguments:
            oxy_request.arguments["messages"] = normalize_messages(oxy_request.arguments["messages"])
        return oxy_request

    def get_messages(self, oxy_request: OxyRequest) -> List[Dict[str, Any]]:
        messages = oxy_request.arguments.get("messages")
        if not messages:
            raise ValidationError(f"{self.name} requires 'messages' in arguments")
        return messages

    def get_llm_params(self, oxy_request: OxyRequest) -> Dict[str, Any]:
        return {**self.llm_params, **oxy_request.arguments.get("llm_params", {})}

    async def _post_send_message(self, oxy_response: OxyResponse) -> None:
        oxy_request = oxy_response.oxy_request
        if oxy_request is not None and self.is_send_think and isinstance(oxy_response.output, str):
            think = extract_think(oxy_response.output)
            if think:
                await oxy_request.send_message({"type": "think", "content": think})
        await super()._post_send_message(oxy_response)


class FunctionLLM(BaseLLM):
    """
    Connector backed by a Python callable.

    The callable receives the message list and, when it accepts them,
    the merged llm_params as keyword arguments.
    """

    def __init__(self, name: str, func: LLMFunc, desc: str = "", **kwargs: Any):
        if not callable(func):
            raise TypeError(f"LLM function for {name} must be callable")
        super().__init__(name, desc, **kwargs)
        self.func = func
        params = inspect.signature(func).parameters.values()
        self._accepts_params = any(p.kind is p.VAR_KEYWORD for p in params)

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        messages = self.get_messages(oxy_request)
        kwargs = self.get_llm_params(oxy_request) if self._accepts_params else {}
        if is_async_callable(self.func):
            output = await self.func(messages, **kwargs)
        else:
            output = await asyncio.to_thread(self.func, messages, **kwargs)
        return OxyResponse(state=OxyState.COMPLETED, output=output)
