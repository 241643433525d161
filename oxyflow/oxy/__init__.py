"""Invocable components: tools, language models, flows and agents."""

from .agents import BaseAgent, LocalAgent, ParallelAgent, RAGAgent, ReActAgent, WorkflowAgent
from .base_oxy import BaseOxy
from .flows import BaseFlow, PlanAndSolve, Reflexion, Workflow
from .llms import BaseLLM, FunctionLLM
from .tools import BaseTool, FunctionHub, FunctionTool

__all__ = [
    "BaseOxy",
    "BaseTool",
    "FunctionTool",
    "FunctionHub",
    "BaseLLM",
    "FunctionLLM",
    "BaseFlow",
    "Workflow",
    "PlanAndSolve",
    "Reflexion",
    "BaseAgent",
    "LocalAgent",
    "ReActAgent",
    "ParallelAgent",
    "WorkflowAgent",
    "RAGAgent",
]
