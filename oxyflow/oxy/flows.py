"""
Flows: components that coordinate other components with custom logic.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.exceptions import ConfigurationError
from ..prompts.registry import get_prompt, render
from ..schemas.message import Message
from ..schemas.request import OxyRequest
from ..schemas.response import OxyResponse
from ..schemas.state import OxyState
from ..utils.output_extraction import extract_json_object, strip_think
from .base_oxy import BaseOxy, call_hook

logger = logging.getLogger(__name__)

WorkflowFunc = Callable[[OxyRequest], Awaitable[Any]]

_STEP_PREFIX = re.compile(r"^\s*(?:\d+[.)]|[-*])\s*")


class BaseFlow(BaseOxy):
    """Flows act like agents: category ``agent`` and permission required."""

    def __init__(self, name: str, desc: str = "", **kwargs: Any):
        kwargs.setdefault("category", "agent")
        kwargs.setdefault("is_permission_required", True)
        super().__init__(name, desc, **kwargs)


async def run_workflow(name: str, func_workflow: WorkflowFunc, oxy_request: OxyRequest) -> OxyResponse:
    """Run a workflow function; exceptions become a FAILED response."""
    try:
        output = await call_hook(func_workflow, oxy_request)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Workflow {name} failed: {e}")
        return OxyResponse(state=OxyState.FAILED, output=f"Error executing workflow: {e}")
    if isinstance(output, OxyResponse):
        return output
    return OxyResponse(state=OxyState.COMPLETED, output=output)


class Workflow(BaseFlow):
    """
    Flow driven by a user function.

    The function receives the request and orchestrates calls through
    ``oxy_request.call(...)``. Its return value becomes the output.

    Example:
        ```python
        async def workflow(oxy_request):
            weather = await oxy_request.call(callee="weather_tool", arguments={"city": "Paris"})
            return f"Forecast: {weather.output}"

        Workflow("forecast", func_workflow=workflow, permitted_tool_name_list=["weather_tool"])
        ```
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

    async def init(self) -> None:
        if self.func_workflow is None:
            raise ConfigurationError(f"Workflow {self.name} has no func_workflow")
        await super().init()

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        return await run_workflow(self.name, self.func_workflow, oxy_request)


# ----------------------------------------------------------------------
# Plan and solve
# ----------------------------------------------------------------------

def parse_plan_steps(output: str) -> List[str]:
    """Steps from ``{"steps": [...]}``, or one step per non-empty line."""
    data = extract_json_object(strip_think(output or ""))
    if data is not None:
        return [str(step).strip() for step in data.get("steps") or [] if str(step).strip()]
    steps = []
    for line in strip_think(output or "").splitlines():
        line = _STEP_PREFIX.sub("", line).strip()
        if line:
            steps.append(line)
    return steps


def parse_replan(output: str) -> Dict[str, Any]:
    """Replanner decision: ``{"response": ...}`` or ``{"steps": [...]}``."""
    data = extract_json_object(strip_think(output or ""))
    if data is None:
        return {"response": strip_think(output or "")}
    if data.get("response"):
        return {"response": data["response"]}
    return {"steps": [str(step).strip() for step in data.get("steps") or [] if str(step).strip()]}


def format_plan(steps: List[str]) -> str:
    return "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))


class PlanAndSolve(BaseFlow):
    """
    Plan the task with a planner agent, then run the steps one by one.

    Each step goes to the executor agent together with the results of the
    finished steps. With ``enable_replanner`` the replanner agent revises
    the remaining plan after every step and may answer directly. When the
    round limit is hit the language model summarizes the plan.

    Attributes:
        max_replan_rounds: Upper bound on executed steps
        planner_agent_name: Agent that turns the query into steps
        executor_agent_name: Agent that carries out one step
        replanner_agent_name: Agent that revises the plan
        pre_plan_steps: Fixed plan; skips the planner
        enable_replanner: Revise the plan after each step
        llm_model: Model used for the final summary
        func_parse_planner_response: Planner output to list of steps
        func_parse_replanner_response: Replanner output to
            ``{"response": ...}`` or ``{"steps": [...]}``
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        max_replan_rounds: int = 30,
        planner_agent_name: str = "planner_agent",
        executor_agent_name: str = "executor_agent",
        replanner_agent_name: str = "replanner_agent",
        pre_plan_steps: Optional[List[str]] = None,
        enable_replanner: bool = False,
        llm_model: Optional[str] = None,
        func_parse_planner_response: Optional[Callable[[str], Any]] = None,
        func_parse_replanner_response: Optional[Callable[[str], Any]] = None,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.max_replan_rounds = max_replan_rounds
        self.planner_agent_name = planner_agent_name
        self.executor_agent_name = executor_agent_name
        self.replanner_agent_name = replanner_agent_name
        self.pre_plan_steps = list(pre_plan_steps) if pre_plan_steps else None
        self.enable_replanner = enable_replanner
        self.llm_model = llm_model
        self.func_parse_planner_response = func_parse_planner_response or parse_plan_steps
        self.func_parse_replanner_response = func_parse_replanner_response or parse_replan

        for callee in self._flow_agents():
            if not self.can_call(callee):
                self.add_permitted_tool(callee)

    def _flow_agents(self) -> List[str]:
        agents = [self.executor_agent_name]
        if self.pre_plan_steps is None:
            agents.append(self.planner_agent_name)
        if self.enable_replanner:
            agents.append(self.replanner_agent_name)
        return agents

    async def init(self) -> None:
        await super().init()
        if self.mas is None:
            raise ConfigurationError(f"Flow {self.name} must be registered in a Mas before init")
        if not self.llm_model:
            self.llm_model = self.mas.config.agent.llm_model
        if self.max_replan_rounds < 1:
            raise ConfigurationError(f"Flow {self.name}: max_replan_rounds must be positive")
        for callee in self._flow_agents():
            if callee not in self.mas.oxy_name_to_oxy:
                raise ConfigurationError(f"Agent [{callee}] does not exist")

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        query = oxy_request.get_query()
        plan: List[str] = []
        past_steps = ""

        for current_round in range(self.max_replan_rounds):
            if current_round == 0:
                if self.pre_plan_steps is not None:
                    plan = list(self.pre_plan_steps)
                else:
                    planner_response = await oxy_request.call(
                        callee=self.planner_agent_name, arguments={"query": query}
                    )
                    if not planner_response.is_success:
                        return OxyResponse(state=planner_response.state, output=planner_response.output)
                    plan = list(await call_hook(
                        self.func_parse_planner_response, planner_response.output_as_string
                    ) or [])
                await oxy_request.send_message({"type": "todolist", "content": format_plan(plan)})

            if not plan:
                return OxyResponse.success("All plan steps have been completed")

            task = plan[0]
            logger.info(f"{self.name} executing step {current_round + 1}: {task}")
            executor_response = await oxy_request.call(
                callee=self.executor_agent_name,
                arguments={"query": get_prompt(
                    "flow.plan_executor_query", task=task, past_steps=past_steps or "none"
                )},
            )
            past_steps += f"\ntask: {task}, execute task result: {executor_response.output_as_string}"

            if self.enable_replanner:
                replanner_response = await oxy_request.call(
                    callee=self.replanner_agent_name,
                    arguments={"query": get_prompt(
                        "flow.plan_replanner_query",
                        query=query,
                        plan=format_plan(plan),
                        past_steps=past_steps.strip(),
                    )},
                )
                decision = await call_hook(
                    self.func_parse_replanner_response, replanner_response.output_as_string
                ) or {}
                if decision.get("response"):
                    return OxyResponse.success(decision["response"])
                plan = list(decision.get("steps") or [])
                await oxy_request.send_message({"type": "todolist", "content": format_plan(plan)})
            else:
                plan = plan[1:]
                if not plan:
                    return OxyResponse.success(executor_response.output)

        logger.warning(f"{self.name} reached {self.max_replan_rounds} rounds, summarizing the plan")
        summary = await oxy_request.call(
            callee=self.llm_model,
            arguments={"messages": [
                Message.system(get_prompt("flow.plan_summary_system")).to_dict(),
                Message.user(get_prompt(
                    "flow.plan_summary_user", query=query, plan=format_plan(plan)
                )).to_dict(),
            ]},
        )
        return OxyResponse(state=summary.state, output=summary.output)


# ----------------------------------------------------------------------
# Reflexion
# ----------------------------------------------------------------------

@dataclass
class ReflectionEvaluation:
    """Verdict of the reflexion agent on one answer."""
    is_satisfactory: bool = False
    evaluation_reason: str = "No specific reason provided"
    improvement_suggestions: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_reflection(output: str) -> ReflectionEvaluation:
    """
    Read an evaluation from JSON, falling back to ``key: value`` lines.

    In the text form a line mentioning "satisfactory" sets the verdict;
    "unsatisfactory" or "false" on that line makes it negative.
    """
    text = strip_think(output or "")
    if not text:
        return ReflectionEvaluation(evaluation_reason="No response provided")

    data = extract_json_object(text)
    if data is not None and "is_satisfactory" in data:
        verdict = data["is_satisfactory"]
        if isinstance(verdict, str):
            verdict = verdict.strip().lower() == "true"
        return ReflectionEvaluation(
            is_satisfactory=bool(verdict),
            evaluation_reason=str(data.get("evaluation_reason") or "No specific reason provided"),
            improvement_suggestions=str(data.get("improvement_suggestions") or ""),
        )

    evaluation = ReflectionEvaluation()
    for line in text.splitlines():
        key, _, value = line.strip().lstrip("-* ").partition(":")
        key = key.strip().lower().replace("_", " ")
        if key == "evaluation reason" and value.strip():
            evaluation.evaluation_reason = value.strip()
        elif key == "improvement suggestions":
            evaluation.improvement_suggestions = value.strip()
        elif "satisfactory" in line.lower():
            lowered = line.lower()
            evaluation.is_satisfactory = "unsatisfactory" not in lowered and "false" not in lowered
    return evaluation


class Reflexion(BaseFlow):
    """
    Improve an answer through rounds of generation and critique.

    The worker agent answers, the reflexion agent evaluates the answer and
    the flow feeds the suggestions back to the worker until the answer is
    satisfactory. After ``max_reflexion_rounds`` extra rounds the language
    model writes a best-effort answer.

    Attributes:
        max_reflexion_rounds: Rounds allowed after the first one
        worker_agent: Agent that answers the query
        reflexion_agent: Agent that evaluates answers
        llm_model: Model used for the best-effort answer
        evaluation_template: Query for the reflexion agent
            (``${query}``, ``${answer}``)
        improvement_template: Next worker query when suggestions exist
            (``${original_query}``, ``${improvement_suggestions}``,
            ``${previous_answer}``)
    """

    def __init__(
        self,
        name: str,
        desc: str = "",
        max_reflexion_rounds: int = 3,
        worker_agent: str = "worker_agent",
        reflexion_agent: str = "reflexion_agent",
        llm_model: Optional[str] = None,
        evaluation_template: Optional[str] = None,
        improvement_template: Optional[str] = None,
        func_parse_worker_response: Optional[Callable[[str], Any]] = None,
        func_parse_reflexion_response: Optional[Callable[[str], Any]] = None,
        **kwargs: Any
    ):
        super().__init__(name, desc, **kwargs)
        self.max_reflexion_rounds = max_reflexion_rounds
        self.worker_agent = worker_agent
        self.reflexion_agent = reflexion_agent
        self.llm_model = llm_model
        self.evaluation_template = evaluation_template or get_prompt("flow.reflexion_evaluation")
        self.improvement_template = improvement_template or get_prompt("flow.reflexion_improvement")
        self.func_parse_worker_response = func_parse_worker_response or (lambda output: output.strip())
        self.func_parse_reflexion_response = func_parse_reflexion_response or parse_reflection
        for callee in (self.worker_agent, self.reflexion_agent):
            if not self.can_call(callee):
                self.add_permitted_tool(callee)

    async def init(self) -> None:
        await super().init()
        if self.mas is None:
            raise ConfigurationError(f"Flow {self.name} must be registered in a Mas before init")
        if not self.llm_model:
            self.llm_model = self.mas.config.agent.llm_model
        if self.max_reflexion_rounds < 0:
            raise ConfigurationError(f"Flow {self.name}: max_reflexion_rounds cannot be negative")
        for callee in (self.worker_agent, self.reflexion_agent):
            if callee not in self.mas.oxy_name_to_oxy:
                raise ConfigurationError(f"Agent [{callee}] does not exist")

    async def _execute(self, oxy_request: OxyRequest) -> OxyResponse:
        original_query = oxy_request.get_query()
        current_query = original_query

        for current_round in range(self.max_reflexion_rounds + 1):
            logger.info(f"{self.name} reflection round {current_round + 1}")
            try:
                worker_response = await oxy_request.call(
                    callee=self.worker_agent, arguments={"query": current_query}
                )
                answer = await call_hook(
                    self.func_parse_worker_response, worker_response.output_as_string
                )

                reflexion_response = await oxy_request.call(
                    callee=self.reflexion_agent,
                    arguments={"query": render(
                        self.evaluation_template, {"query": original_query, "answer": answer}
                    )},
                )
                evaluation = await call_hook(
                    self.func_parse_reflexion_response, reflexion_response.output_as_string
                )
                if isinstance(evaluation, dict):
                    evaluation = ReflectionEvaluation(**evaluation)
            except Exception as e:
                logger.error(f"{self.name} reflection round {current_round + 1} failed: {e}")
                return OxyResponse.failure(f"Reflection process execution failed: {e}")

            if evaluation.is_satisfactory:
                logger.info(f"{self.name} answer satisfactory after {current_round + 1} rounds")
                return OxyResponse.success(
                    f"Final answer after {current_round + 1} rounds of reflection optimization:\n\n{answer}",
                    reflexion_rounds=current_round + 1,
                    final_evaluation=evaluation.to_dict(),
                )

            if evaluation.improvement_suggestions.strip():
                current_query = render(self.improvement_template, {
                    "original_query": original_query,
                    "improvement_suggestions": evaluation.improvement_suggestions,
                    "previous_answer": answer,
                })
            else:
                current_query = get_prompt(
                    "flow.reflexion_retry", query=original_query, reason=evaluation.evaluation_reason
                )

        rounds = self.max_reflexion_rounds + 1
        logger.warning(f"{self.name} reached the maximum of {rounds} reflection rounds")
        final_response = await oxy_request.call(
            callee=self.llm_model,
            arguments={"messages": [
                Message.system(get_prompt("flow.reflexion_final_system")).to_dict(),
                Message.user(get_prompt("flow.reflexion_final_user", query=original_query)).to_dict(),
            ]},
        )
        if not final_response.is_success:
            return OxyResponse(state=final_response.state, output=final_response.output)
        return OxyResponse.success(
            f"Answer after {rounds} rounds of reflection attempts:\n\n{final_response.output}",
            reflexion_rounds=rounds,
            reached_max_rounds=True,
        )
