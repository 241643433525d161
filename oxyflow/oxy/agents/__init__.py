"""Built-in agents."""

from .base_agent import BaseAgent
from .local_agent import LocalAgent
from .parallel_agent import ParallelAgent
from .rag_agent import RAGAgent
from .react_agent import ReActAgent, default_reflexion
from .workflow_agent import WorkflowAgent

__all__ = [
    "BaseAgent",
    "LocalAgent",
    "ReActAgent",
    "ParallelAgent",
    "WorkflowAgent",
    "RAGAgent",
    "default_reflexion",
]
