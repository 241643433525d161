"""
Tool results gathered during one reasoning round.
"""

from dataclasses import dataclass, field
from typing import Any, List

from .response import OxyResponse


@dataclass(frozen=True)
class ExecResult:
    """Result of a single tool call within a round."""
    executor: str
    oxy_response: OxyResponse


@dataclass
class ObservationData:
    """Ordered tool results for one round, folded into memory afterwards."""
    exec_results: List[ExecResult] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.exec_results)

    def add_exec_result(self, exec_result: ExecResult) -> None:
        self.exec_results.append(exec_result)

    @property
    def has_success(self) -> bool:
        return any(result.oxy_response.is_success for result in self.exec_results)

    def to_str(self) -> str:
        return "\n\n".join(
            f"Tool [{result.executor}] execution result: {result.oxy_response.output_as_string}"
            for result in self.exec_results
        )

    def to_content(self) -> Any:
        """Plain text unless a tool returned multimodal parts (a list)."""
        multimodal = [
            part
            for result in self.exec_results
            if isinstance(result.oxy_response.output, list)
            for part in result.oxy_response.output
        ]
        if not multimodal:
            return self.to_str()
        text_parts = [
            {"type": "text", "text": f"Tool [{result.executor}] execution result: "
                                     f"{result.oxy_response.output_as_string}"}
            for result in self.exec_results
            if not isinstance(result.oxy_response.output, list)
        ]
        return text_parts + multimodal
