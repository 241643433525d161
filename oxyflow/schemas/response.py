"""
Result envelope returned by every component invocation.
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from .state import OxyState

if TYPE_CHECKING:
    from .request import OxyRequest


@dataclass
class OxyResponse:
    """
    Outcome of one component invocation.

    Attributes:
        state: Final (or current) execution state
        output: Opaque payload, usually text
        extra: Metadata such as react memory or parsing details
        oxy_request: Request that produced this response (correlation only)
    """
    state: OxyState = OxyState.CREATED
    output: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)
    oxy_request: Optional["OxyRequest"] = field(default=None, repr=False, compare=False)

    @property
    def is_success(self) -> bool:
        return self.state.is_successful

    @property
    def is_failed(self) -> bool:
        return self.state.is_error

    @property
    def output_as_string(self) -> str:
        """Output rendered as text; dicts and lists are JSON encoded."""
        if self.output is None:
            return ""
        if isinstance(self.output, str):
            return self.output
        if isinstance(self.output, (dict, list)):
            return json.dumps(self.output, ensure_ascii=False, default=str)
        return str(self.output)

    @classmethod
    def success(cls, output: Any, **extra: Any) -> 'OxyResponse':
        return cls(state=OxyState.COMPLETED, output=output, extra=dict(extra))

    @classmethod
    def failure(cls, output: Any, **extra: Any) -> 'OxyResponse':
        return cls(state=OxyState.FAILED, output=output, extra=dict(extra))

    @classmethod
    def skipped(cls, output: Any, **extra: Any) -> 'OxyResponse':
        return cls(state=OxyState.SKIPPED, output=output, extra=dict(extra))

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "output": self.output, "extra": dict(self.extra)}
