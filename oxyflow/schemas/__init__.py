"""Data model shared by all components."""

from .llm import LLMResponse
from .message import Memory, Message
from .observation import ExecResult, ObservationData
from .request import OxyRequest
from .response import OxyResponse
from .state import LLMState, OxyState

__all__ = [
    "LLMResponse",
    "LLMState",
    "Memory",
    "Message",
    "ExecResult",
    "ObservationData",
    "OxyRequest",
    "OxyResponse",
    "OxyState",
]
