"""
ReAct agent: reason, act with tools, observe, repeat.

Each round builds the context (instruction, session history, query and
the reasoning memory so far), calls the language model and parses the
reply into one of three outcomes:

- ANSWER: the reply is the final answer
- TOOL_CALL: run the requested tool(s), append the call and the
  observation to the reasoning memory and loop
- ERROR_PARSE: append the reply and corrective guidance and loop

After ``max_react_rounds`` rounds without an answer the agent asks the
model once more to answer from the collected tool results.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ...core.constants import (
    DEFAULT_WEIGHT_REACT_MEMORY,
    DEFAULT_WEIGHT_SHORT_MEMORY,
    EMPTY_ANSWER_REFLEXION,
)
from ...core.exceptions import ConfigurationError
from ...prompts.agent import PARSE_FORMAT_GUIDANCE, PARSE_JSON_GUIDANCE
from ...prompts.registry import get_prompt
from ...schemas.llm import LLMResponse
from ...schemas.message import Memory, Message
from ...schemas.observation import ExecResult, ObservationData
from ...schemas.request import OxyRequest
from ...schemas.response import OxyResponse
from ...schemas.state import LLMState, OxyState
from ...utils.identifiers import generate_id
from ...utils.output_extraction import extract_json_object, strip_think
from ...utils.tokens import estimate_tokens
from .local_agent import LocalAgent

logger = logging.getLogger(__name__)

ParseFunc = Callable[[str, OxyRequest], Any]
ReflexionFunc = Callable[[str, OxyRequest], Any]


def default_reflexion(response: str, oxy_request: OxyRequest) -> Optional[str]:
    """Reject empty answers."""
    if not response or not response.strip():
        return EMPTY_ANSWER_REFLEXION
    return None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ReActAgent(LocalAgent):
    """
    Agent running the ReAct loop over its permitted tools.

    Attributes:
        max_react_rounds: Reasoning rounds before the fallback answer
        is_discard_react_memory: Load plain question/answer history; when False
            history is rebuilt with weighted reasoning turns
        memory_max_tokens: Token budget for weighted history
        weight_short_memory: Weight of question/answer turns
        weight_react_memory: Weight of reasoning turns
        trust_mode: Return the first tool observation as the answer
        func_map_memory_order: Maps a history position (1-based) to its rank
        func_parse_llm_response: Parser ``(raw_text, request) -> LLMResponse``
        func_reflexion: Check ``(answer, request) -> guidance or None``
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        max_react_rounds: Optional[int] = None,
        is_discard_react_memory: bool = True,
        memory_max_tokens: Optional[int] = None,
        weight_short_memory: int = DEFAULT_WEIGHT_SHORT_MEMORY,
        weight_react_memory: int = DEFAULT_WEIGHT_REACT_MEMORY,
        trust_mode: bool = False,
        func_map_memory_order: Optional[Callable[[int], int]] = None,
        func_parse_llm_response: Optional[ParseFunc] = None,
        func_reflexion: Optional[ReflexionFunc] = None,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.max_react_rounds = max_react_rounds
        self.is_discard_react_memory = is_discard_react_memory
        self.memory_max_tokens = memory_max_tokens
        self.weight_short_memory = weight_short_memory
        self.weight_react_memory = weight_react_memory
        self.trust_mode = trust_mode
        self.func_map_memory_order = func_map_memory_order or (lambda x: x)
        self.func_parse_llm_response = func_parse_llm_response or self.parse_llm_response
        self.func_reflexion = func_reflexion or default_reflexion

    async def init(self) -> None:
        await super().init()
        defaults = self.mas.config.agent
        if self.max_react_rounds is None:
            self.max_react_rounds = defaults.max_react_rounds
        if self.memory_max_tokens is None:
            self.memory_max_tokens = defaults.memory_max_tokens
        if not self.prompt:
            self.prompt = get_prompt("agent.react_system")
        if self.max_react_rounds < 0:
            raise ConfigurationError(f"Agent {self.name}: max_react_rounds cannot be negative")

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    async def parse_llm_response(self, ori_response: str, oxy_request: OxyRequest) -> LLMResponse:
        """Classify a raw model reply as answer, tool call or parse error."""
        text = strip_think(ori_response or "")
        tool_call = extract_json_object(text)

        if tool_call is not None:
            if "tool_name" in tool_call:
                return LLMResponse(LLMState.TOOL_CALL, tool_call, text)
            if oxy_request.restart_node_output:
                return LLMResponse(LLMState.ANSWER, text, text)
            return LLMResponse(LLMState.ERROR_PARSE, PARSE_FORMAT_GUIDANCE, text)

        if all(token in text for token in ("tool_name", "arguments", "{", "}")):
            return LLMResponse(LLMState.ERROR_PARSE, PARSE_JSON_GUIDANCE, text)

        guidance = await _maybe_await(self.func_reflexion(text, oxy_request))
        if guidance:
            return LLMResponse(LLMState.ERROR_PARSE, guidance, text)
        return LLMResponse(LLMState.ANSWER, text, text)

    async def _parse(self, ori_response: str, oxy_request: OxyRequest) -> LLMResponse:
        return await _maybe_await(self.func_parse_llm_response(ori_response, oxy_request))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_history(
        self,
        oxy_request: OxyRequest,
        master_level: bool = False
    ) -> List[Dict[str, Any]]:
        if self.is_discard_react_memory:
            return await super().get_history(oxy_request, master_level)
        memories = await self._search_history(oxy_request, master_level)
        return self.build_weighted_history(memories)

    def build_weighted_history(self, memories: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Rebuild history from question/answer turns and their reasoning turns.

        Entries are ranked by ``func_map_memory_order(position) * weight`` and
        kept greedily, highest first, until the token budget is reached. The
        kept entries are replayed in their original order.

        Args:
            memories: History records, oldest first, each with ``query``,
                ``answer`` and optionally ``react_memory``

        Returns:
            Message dicts for the short memory
        """
        qa_list: List[Tuple[str, str, str]] = []
        for memory in memories:
            qa_list.append(("short", str(memory.get("query", "")), str(memory.get("answer", ""))))
            react_memory = memory.get("react_memory") or []
            for i in range(0, len(react_memory) - 1, 2):
                qa_list.append((
                    "react",
                    str(react_memory[i].get("content", "")),
                    str(react_memory[i + 1].get("content", "")),
                ))

        scored = []
        for index, (memory_type, _, _) in enumerate(qa_list):
            weight = self.weight_short_memory if memory_type == "short" else self.weight_react_memory
            scored.append((self.func_map_memory_order(index + 1) * weight, index))
        scored.sort(key=lambda item: item[0], reverse=True)

        retained: Set[int] = set()
        token_count = 0
        for _, index in scored:
            _, query, answer = qa_list[index]
            tokens = estimate_tokens(query) + estimate_tokens(answer)
            if token_count + tokens > self.memory_max_tokens:
                break
            token_count += tokens
            retained.add(index)

        messages: List[Dict[str, Any]] = []
        pending_answer: Optional[str] = None
        for index, (memory_type, query, answer) in enumerate(qa_list):
            if index not in retained:
                continue
            if memory_type == "short":
                if pending_answer is not None:
                    messages.append(Message.assistant(pending_answer).to_dict())
                messages.append(Message.user(query).to_dict())
                pending_answer = answer
            elif pending_answer is not None:
                messages.append(Message.assistant(query).to_dict())
                messages.append(Message.user(answer).to_dict())
        if pending_answer is not None:
            messages.append(Message.assistant(pending_answer).to_dict())
        return messages

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def build_message_context(self, oxy_request: OxyRequest, react_memory: Memory) -> List[Dict[str, Any]]:
        messages = [Message.system(self.build_instruction(oxy_request.arguments)).to_dict()]
        messages.extend(oxy_request.get_short_memory())
        messages.append(Message.user(oxy_request.get_query_object()).to_dict())
        messages.extend(message.to_dict() for message in react_memory)
        return messages

    async def execute_tool_calls(self, oxy_request: OxyRequest, tool_call: Any) -> ObservationData:
        """Run the requested tool calls concurrently as one parallel group."""
        if isinstance(tool_call, dict):
            tool_calls = [tool_call]
        elif isinstance(tool_call, list):
            tool_calls = [call for call in tool_call if isinstance(call, dict)]
        else:
            raise TypeError(f"Invalid tool call output type: {type(tool_call).__name__}")

        parallel_id = generate_id()

        async def run(call: Dict[str, Any]) -> ExecResult:
            tool_name = str(call.get("tool_name", ""))
            arguments = call.get("arguments")
            try:
                oxy_response = await oxy_request.call(
                    callee=tool_name,
                    arguments=arguments if isinstance(arguments, dict) else {},
                    parallel_id=parallel_id,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Tool execution failed: {tool_name}: {e}")
                oxy_response = OxyResponse(state=OxyState.FAILED, output=f"Tool execution failed: {e}")
            return ExecResult(executor=tool_name, oxy_response=oxy_response)

        observation = ObservationData()
        for exec_result in await asyncio.gather(*(run(call) for call in tool_calls)):
            observation.add_exec_result(exec_result)
        return observation

    def should_use_trust_mode(self, tool_call: Any) -> bool:
        if self.trust_mode:
            return True
        return isinstance(tool_call, dict) and tool_call.get("trust_mode") == 1

    def _react_extra(self, react_memory: Memory) -> Dict[str, Any]:
        return {"react_memory": [message.to_dict() for message in react_memory]}

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        react_memory = Memory(max_messages=2 * self.max_react_rounds + 2)

        for current_round in range(self.max_react_rounds):
            messages = self.build_message_context(oxy_request, react_memory)
            llm_output = await self.call_llm(oxy_request, messages)
            if not llm_output.is_success:
                return OxyResponse(
                    state=llm_output.state,
                    output=llm_output.output,
                    extra=self._react_extra(react_memory),
                )

            llm_response = await self._parse(llm_output.output_as_string, oxy_request)
            logger.debug(f"{self.name} round {current_round + 1}: {llm_response.state.value}")

            if llm_response.state is LLMState.ANSWER:
                return OxyResponse(
                    state=OxyState.COMPLETED,
                    output=llm_response.output,
                    extra=self._react_extra(react_memory),
                )

            if llm_response.state is LLMState.TOOL_CALL:
                observation = await self.execute_tool_calls(oxy_request, llm_response.output)
                if observation.has_success and self.should_use_trust_mode(llm_response.output):
                    return OxyResponse(
                        state=OxyState.COMPLETED,
                        output=observation.to_str(),
                        extra=self._react_extra(react_memory),
                    )
                react_memory.add_message(Message.assistant(llm_response.ori_response))
                react_memory.add_message(Message.user(observation.to_content()))
            else:
                logger.warning(f"Format error, adding to react memory: {llm_response.ori_response}")
                react_memory.add_message(Message.assistant(llm_response.ori_response))
                react_memory.add_message(Message.user(llm_response.output))

        return await self._fallback_answer(oxy_request, react_memory)

    async def _fallback_answer(self, oxy_request: OxyRequest, react_memory: Memory) -> OxyResponse:
        """Answer directly from the tool results collected so far."""
        logger.info(f"{self.name} reached {self.max_react_rounds} rounds, answering from tool results")
        results = "".join(
            f"{tid}. {message.content}\n\n"
            for tid, message in enumerate(
                (m for m in react_memory if m.role == "user"), start=1
            )
        )
        messages = [
            Message.system(get_prompt("agent.react_fallback_system")).to_dict(),
            Message.user(get_prompt(
                "agent.react_fallback_user", query=oxy_request.get_query(), results=results
            )).to_dict(),
        ]
        llm_output = await self.call_llm(oxy_request, messages)
        return OxyResponse(
            state=OxyState.COMPLETED,
            output=llm_output.output,
            extra=self._react_extra(react_memory),
        )
