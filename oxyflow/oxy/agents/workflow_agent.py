"""Agent whose behaviour is a user-supplied workflow function."""

from typing import Any, Optional

from ...schemas.request import OxyRequest
from ...schemas.response import OxyResponse
from ...schemas.state import OxyState
from ..flows import WorkflowFunc, run_workflow
from .local_agent import LocalAgent


class WorkflowAgent(LocalAgent):
    """
    LocalAgent driven by ``func_workflow(oxy_request)``.

    The function has the agent's history, permitted callees and LLM at its
    disposal through the request (``oxy_request.call(...)``).
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        func_workflow: Optional[WorkflowFunc] = None,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.func_workflow = func_workflow

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        if self.func_workflow is None:
            return OxyResponse(state=OxyState.FAILED, output="Workflow function is not configured")
        return await run_workflow(self.name, self.func_workflow, oxy_request)
