"""Fan-out agent: ask every callee at once, then summarize."""

import asyncio
import logging
from typing import Any, Dict

from ...prompts.registry import get_prompt
from ...schemas.message import Message
from ...schemas.request import (
    FIRST_QUERY_STRUCT,
    MASTER_SHORT_MEMORY_KEY,
    SHORT_MEMORY_KEY,
    OxyRequest,
)
from ...schemas.response import OxyResponse
from ...schemas.state import OxyState
from ...utils.identifiers import generate_id
from .local_agent import LocalAgent

logger = logging.getLogger(__name__)

# Keys that belong to the agent's own turn; callees build their own
_AGENT_ONLY_ARGUMENTS = (
    FIRST_QUERY_STRUCT,
    SHORT_MEMORY_KEY,
    MASTER_SHORT_MEMORY_KEY,
    "tools_description",
    "additional_prompt",
)


class ParallelAgent(LocalAgent):
    """
    Calls all permitted components concurrently with the same arguments
    and one shared parallel id, then asks the LLM to summarize the results.
    """

    def _callee_arguments(self, oxy_request: OxyRequest) -> Dict[str, Any]:
        return {k: v for k, v in oxy_request.arguments.items() if k not in _AGENT_ONLY_ARGUMENTS}

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        parallel_id = generate_id()
        arguments = self._callee_arguments(oxy_request)
        callees = list(self.permitted_tool_name_list)

        responses = await asyncio.gather(*(
            oxy_request.call(callee=callee, arguments=arguments, parallel_id=parallel_id)
            for callee in callees
        ))
        logger.debug(f"{self.name} collected {len(responses)} parallel results")

        results = "".join(
            f"{i}. {response.output_as_string}\n" for i, response in enumerate(responses, start=1)
        )
        messages = [
            Message.system(get_prompt("agent.parallel_summary_system", query=oxy_request.get_query())).to_dict(),
            Message.user(f"The parallel results are as following:\n{results}").to_dict(),
        ]
        llm_response = await self.call_llm(oxy_request, messages)
        return OxyResponse(
            state=OxyState.COMPLETED if llm_response.is_success else llm_response.state,
            output=llm_response.output,
            extra={"parallel_results": [response.output_as_string for response in responses]},
        )
