"""Dataclass models for function selection and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class FunctionCandidate:
    """Snapshot of one ``chat_functions`` registry row."""
    function_key: str
    name: str = ""
    description: Optional[str] = None
    tags: tuple[str, ...] = ()
    input_schema: dict[str, Any] = field(default_factory=dict)
    output_schema: dict[str, Any] = field(default_factory=dict)
    is_enabled: bool = True


@dataclass(frozen=True)
class FunctionSelection:
    """Functions chosen for one request.

    ``execution_order`` is always a permutation of ``selected_functions``.
    """
    selected_functions: list[str]
    execution_order: list[str]
    reasoning: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectedFunctions": list(self.selected_functions),
            "executionOrder": list(self.execution_order),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class FunctionExecutionRequest:
    function_key: str
    context: dict[str, Any] = field(default_factory=dict)
    request_id: str = ""


@dataclass(frozen=True)
class FunctionExecutionResult:
    """Outcome of one function call. Failures carry a non-empty ``error``."""
    function_key: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    events_emitted: list[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "functionKey": self.function_key,
            "success": self.success,
            "eventsEmitted": list(self.events_emitted),
            "executionTimeMs": self.execution_time_ms,
        }
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class BatchExecutionRequest:
    """Functions to run; ``sequential`` threads results forward through the context."""
    functions: list[FunctionExecutionRequest]
    sequential: bool = True


@dataclass(frozen=True)
class BatchExecutionResult:
    success: bool
    results: list[FunctionExecutionResult]
    total_time_ms: int
    errors: list[str] = field(default_factory=list)

    def successful_data(self) -> dict[str, Any]:
        """Function key -> payload for every successful result with data."""
        return {
            r.function_key: r.data
            for r in self.results
            if r.success and r.data
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "totalTimeMs": self.total_time_ms,
            "errors": list(self.errors),
        }
