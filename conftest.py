"""
Shared fixtures for oxyflow tests.
"""

from typing import Any, Dict, List, Optional

import pytest

from oxyflow.core.config import OxyflowConfig
from oxyflow.mas import Mas
from oxyflow.oxy.llms import FunctionLLM


class ScriptedReplies:
    """Callable LLM backend returning canned replies in order; the last one repeats."""

    def __init__(self, replies: List[str]):
        self.replies = list(replies)
        self.calls: List[List[Dict[str, Any]]] = []

    def __call__(self, messages: List[Dict[str, Any]]) -> str:
        self.calls.append(messages)
        index = min(len(self.calls), len(self.replies)) - 1
        return self.replies[index]


@pytest.fixture
def config():
    """Configuration without retry delays."""
    config = OxyflowConfig()
    config.app.name = "test_app"
    config.execution.delay = 0
    config.execution.event_wait_timeout = 0.5
    return config


@pytest.fixture
def mas(config):
    """Empty host using the in-memory store and queue."""
    return Mas("test_mas", config=config)


@pytest.fixture
def make_llm():
    """Factory for FunctionLLM components answering from a script."""
    def factory(replies: Optional[List[str]] = None, name: str = "default_llm") -> FunctionLLM:
        backend = ScriptedReplies(replies or ["ok"])
        llm = FunctionLLM(name, func=backend, desc="Scripted model")
        llm.backend = backend
        return llm
    return factory
