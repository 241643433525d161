"""
oxyflow: asynchronous multi-agent orchestration.

Components (agents, tools, language models and flows) are registered in a
``Mas`` host and call each other through ``OxyRequest.call``.
"""

from .core.config import OxyflowConfig, load_config
from .core.exceptions import ConfigurationError, OxyflowError
from .mas import Mas, configure_logging
from .oxy import (
    BaseAgent,
    BaseFlow,
    BaseLLM,
    BaseOxy,
    BaseTool,
    FunctionHub,
    FunctionLLM,
    FunctionTool,
    LocalAgent,
    ParallelAgent,
    PlanAndSolve,
    RAGAgent,
    ReActAgent,
    Reflexion,
    Workflow,
    WorkflowAgent,
)
from .schemas import Memory, Message, OxyRequest, OxyResponse, OxyState

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "Mas",
    "configure_logging",
    "OxyflowConfig",
    "load_config",
    "OxyflowError",
    "ConfigurationError",
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
    "OxyRequest",
    "OxyResponse",
    "OxyState",
    "Message",
    "Memory",
]
