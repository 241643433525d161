"""
Agents backed by a language model registered in the same host.
"""

import logging
from typing import Any, Dict, List, Optional

from ...core.exceptions import ConfigurationError
from ...prompts.registry import render
from ...schemas.message import Message
from ...schemas.request import OxyRequest
from ...schemas.response import OxyResponse
from ...schemas.state import OxyState
from ..tools import BaseTool
from .base_agent import BaseAgent, load_history_memory

logger = logging.getLogger(__name__)


class LocalAgent(BaseAgent):
    """
    Agent with a language model, a prompt and a set of callable components.

    On its own a LocalAgent answers with a single model call over its
    instruction, the session history and the query. Subclasses replace
    ``_execute`` with richer strategies.

    Attributes:
        llm_model: Name of the LLM component to call
        prompt: System instruction; ``${name}`` placeholders are filled from
            the request arguments
        additional_prompt: Extra text exposed to the prompt as ``${additional_prompt}``
        sub_agents: Agents this agent may call
        tools: Tools (or function hub names) this agent may call
        except_tools: Names excluded from ``tools``
        short_memory_size: History records loaded per session
        is_retain_master_short_memory: Also load the user/master session history
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        llm_model: Optional[str] = None,
        prompt: Optional[str] = None,
        additional_prompt: str = "",
        sub_agents: Optional[List[str]] = None,
        tools: Optional[List[str]] = None,
        except_tools: Optional[List[str]] = None,
        short_memory_size: Optional[int] = None,
        is_retain_master_short_memory: bool = False,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.llm_model = llm_model
        self.prompt = prompt
        self.additional_prompt = additional_prompt
        self.sub_agents: List[str] = list(sub_agents or [])
        self.tools: List[str] = list(tools or [])
        self.except_tools: List[str] = list(except_tools or [])
        self.short_memory_size = short_memory_size
        self.is_retain_master_short_memory = is_retain_master_short_memory

    async def init(self) -> None:
        await super().init()
        if self.mas is None:
            raise ConfigurationError(f"Agent {self.name} must be registered in a Mas before init")

        defaults = self.mas.config.agent
        if not self.llm_model:
            self.llm_model = defaults.llm_model
        if self.prompt is None:
            self.prompt = defaults.prompt
        if self.short_memory_size is None:
            self.short_memory_size = defaults.short_memory_size

        if not self.llm_model:
            raise ConfigurationError(f"Agent {self.name} has not set an LLM model")
        if self.llm_model not in self.mas.oxy_name_to_oxy:
            raise ConfigurationError(f"LLM model [{self.llm_model}] does not exist")
        if self.short_memory_size < 1:
            raise ConfigurationError(f"Agent {self.name}: short_memory_size must be positive")

        self._init_permitted_tools()
        logger.debug(
            f"LocalAgent {self.name} initialized with {len(self.permitted_tool_name_list)} callees"
        )

    def _init_permitted_tools(self) -> None:
        registry = self.mas.oxy_name_to_oxy
        for agent_name in dict.fromkeys(self.sub_agents):
            if agent_name not in registry:
                raise ConfigurationError(f"Agent [{agent_name}] does not exist")
            self.add_permitted_tool(agent_name)

        for tool_name in dict.fromkeys(self.tools):
            if tool_name in self.except_tools:
                continue
            hub = self.mas.function_hubs.get(tool_name)
            if hub is not None:
                for hub_tool in hub.tool_names:
                    if hub_tool not in self.except_tools:
                        self.add_permitted_tool(hub_tool)
                continue
            oxy = registry.get(tool_name)
            if oxy is None:
                raise ConfigurationError(f"Tool [{tool_name}] does not exist")
            if not isinstance(oxy, BaseTool):
                raise ConfigurationError(f"[{tool_name}] is not a tool")
            self.add_permitted_tool(tool_name)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _session_name(self, oxy_request: OxyRequest, master_level: bool) -> str:
        if master_level:
            return "__".join(oxy_request.call_stack[:2])
        return oxy_request.session_name

    async def _search_history(
        self,
        oxy_request: OxyRequest,
        master_level: bool = False
    ) -> List[Dict[str, Any]]:
        """History records of the session, oldest first."""
        if not oxy_request.root_trace_ids or self.mas is None or self.mas.store is None:
            return []
        body = {
            "query": {
                "bool": {
                    "must": [
                        {"terms": {"trace_id": list(oxy_request.root_trace_ids)}},
                        {"term": {"session_name": self._session_name(oxy_request, master_level)}},
                    ]
                }
            },
            "size": self.short_memory_size,
            "sort": [{"create_time": {"order": "desc"}}],
        }
        try:
            result = await self.mas.store.search(f"{self.app_name}_history", body)
        except Exception as e:
            logger.error(f"Failed to load history for {self.name}: {e}")
            return []
        hits = (result or {}).get("hits", {}).get("hits", [])
        return [load_history_memory(hit.get("_source")) for hit in reversed(hits)]

    async def get_history(
        self,
        oxy_request: OxyRequest,
        master_level: bool = False
    ) -> List[Dict[str, Any]]:
        """Earlier turns of the session as alternating user/assistant messages."""
        messages: List[Dict[str, Any]] = []
        for memory in await self._search_history(oxy_request, master_level):
            messages.append(Message.user(memory.get("query", "")).to_dict())
            messages.append(Message.assistant(memory.get("answer", "")).to_dict())
        return messages

    async def _pre_process(self, oxy_request: OxyRequest) -> OxyRequest:
        oxy_request = await super()._pre_process(oxy_request)
        if not oxy_request.has_short_memory():
            oxy_request.set_short_memory(await self.get_history(oxy_request))
        if self.is_retain_master_short_memory and not oxy_request.has_short_memory(master_level=True):
            oxy_request.set_short_memory(
                await self.get_history(oxy_request, master_level=True), master_level=True
            )
        return oxy_request

    # ------------------------------------------------------------------
    # Instruction
    # ------------------------------------------------------------------

    def get_tools_description(self, oxy_request: OxyRequest) -> str:
        descriptions = []
        for tool_name in sorted(self.permitted_tool_name_list):
            oxy = oxy_request.get_oxy(tool_name)
            if oxy is not None:
                descriptions.append(oxy.desc_for_llm)
        return "\n\n".join(descriptions)

    async def _before_execute(self, oxy_request: OxyRequest) -> OxyRequest:
        oxy_request = await super()._before_execute(oxy_request)
        oxy_request.arguments["additional_prompt"] = self.additional_prompt
        oxy_request.arguments["tools_description"] = self.get_tools_description(oxy_request)
        return oxy_request

    def build_instruction(self, arguments: Dict[str, Any]) -> str:
        return render((self.prompt or "").strip(), arguments)

    async def call_llm(self, oxy_request: OxyRequest, messages: List[Dict[str, Any]]) -> OxyResponse:
        return await oxy_request.call(callee=self.llm_model, arguments={"messages": messages})

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        messages = []
        instruction = self.build_instruction(oxy_request.arguments)
        if instruction:
            messages.append(Message.system(instruction).to_dict())
        messages.extend(oxy_request.get_short_memory())
        messages.append(Message.user(oxy_request.get_query_object()).to_dict())

        llm_response = await self.call_llm(oxy_request, messages)
        return OxyResponse(
            state=OxyState.COMPLETED if llm_response.is_success else llm_response.state,
            output=llm_response.output,
        )
