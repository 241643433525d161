"""
Chat agent that grounds its answer in retrieved knowledge.
"""

import logging
from typing import Any, Callable, Optional

from ...prompts.registry import get_prompt
from ...schemas.request import OxyRequest
from ..base_oxy import call_hook
from .local_agent import LocalAgent

logger = logging.getLogger(__name__)


class RAGAgent(LocalAgent):
    """
    LocalAgent that fills a prompt placeholder with retrieved knowledge.

    ``func_retrieve_knowledge`` receives the request and returns the
    knowledge text (sync or async). The text is stored under
    ``knowledge_placeholder`` in the request arguments, where the prompt's
    ``${knowledge}`` placeholder picks it up. Retrieval failures are logged
    and leave the knowledge empty.

    Example:
        ```python
        async def retrieve(oxy_request):
            return await index.search(oxy_request.get_query())

        RAGAgent("qa_agent", func_retrieve_knowledge=retrieve)
        ```
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        knowledge_placeholder: str = "knowledge",
        func_retrieve_knowledge: Optional[Callable[[OxyRequest], Any]] = None,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.knowledge_placeholder = knowledge_placeholder
        self.func_retrieve_knowledge = func_retrieve_knowledge

    async def init(self) -> None:
        await super().init()
        if not self.prompt:
            self.prompt = get_prompt("agent.rag_system")
        if self.func_retrieve_knowledge is None:
            logger.warning(f"RAGAgent {self.name} has no func_retrieve_knowledge; knowledge stays empty")

    async def retrieve_knowledge(self, oxy_request: OxyRequest) -> str:
        if self.func_retrieve_knowledge is None:
            return ""
        try:
            knowledge = await call_hook(self.func_retrieve_knowledge, oxy_request)
        except Exception as e:
            logger.error(f"Knowledge retrieval failed for {self.name}: {e}")
            return ""
        return "" if knowledge is None else str(knowledge)

    async def _pre_process(self, oxy_request: OxyRequest) -> OxyRequest:
        oxy_request = await super()._pre_process(oxy_request)
        oxy_request.arguments[self.knowledge_placeholder] = await self.retrieve_knowledge(oxy_request)
        return oxy_request
