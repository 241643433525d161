"""
Execution states for components and language-model parsing outcomes.
"""

from enum import Enum


class OxyState(str, Enum):
    """Lifecycle state of one component invocation."""
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    SUCCESS = "success"
    FAILED = "failed"
    PAUSED = "paused"
    SKIPPED = "skipped"
    CANCELED = "canceled"

    @property
    def is_final(self) -> bool:
        """Whether no further transition is expected."""
        return self in _FINAL_STATES

    @property
    def is_successful(self) -> bool:
        return self in (OxyState.COMPLETED, OxyState.SUCCESS)

    @property
    def is_error(self) -> bool:
        return self is OxyState.FAILED

    @property
    def is_recoverable(self) -> bool:
        """Paused executions can be resumed."""
        return self is OxyState.PAUSED


_FINAL_STATES = frozenset({
    OxyState.COMPLETED,
    OxyState.SUCCESS,
    OxyState.FAILED,
    OxyState.SKIPPED,
    OxyState.CANCELED,
})


class LLMState(str, Enum):
    """Interpretation of one language-model reply in the ReAct loop."""
    ANSWER = "answer"
    TOOL_CALL = "tool_call"
    ERROR_PARSE = "error_parse"
