"""Parsed language-model reply used by the ReAct loop."""

from dataclasses import dataclass
from typing import Any

from .state import LLMState


@dataclass(frozen=True)
class LLMResponse:
    """
    Attributes:
        state: How the reply should be handled
        output: Answer text, tool-call dict (or list of dicts) or guidance text
        ori_response: Raw reply as produced by the model
    """
    state: LLMState
    output: Any
    ori_response: str = ""
