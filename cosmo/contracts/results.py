"""
Outbound result envelope.

Every entry point returns the same shape:

    {success, data | error: {message, code, httpStatus, retryable},
     debug?: {tokensUsed, cost, modelUsed, costTier, timingsMs, ...}}
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, TypeAdapter

from cosmo.contracts.base import CamelModel
from cosmo.core.errors import CosmoError

_ANY: TypeAdapter[Any] = TypeAdapter(Any)


class ExecutionError(CamelModel):
    code: str
    message: str
    http_status: int = 500
    retryable: bool = False
    details: Optional[str] = None

    @classmethod
    def from_cosmo_error(cls, error: CosmoError) -> "ExecutionError":
        return cls(
            code=error.code.value,
            message=error.message,
            http_status=error.http_status,
            retryable=error.retryable,
            details=error.details,
        )


class TierAttempt(CamelModel):
    """One inference attempt (primary or fallback)."""
    tier: int
    tier_name: str
    model: str
    provider: str
    success: bool
    error: Optional[str] = None
    status_code: Optional[int] = None


class DebugInfo(CamelModel):
    tokens_used: int = 0
    cost: float = 0.0
    model_used: Optional[str] = None
    cost_tier: Optional[str] = None
    timings_ms: dict[str, int] = Field(default_factory=dict)
    trace_id: Optional[str] = None
    request_id: Optional[str] = None
    stage: Optional[str] = None
    tiers_attempted: list[TierAttempt] = Field(default_factory=list)
    functions_invoked: list[str] = Field(default_factory=list)


class ExecutionResult(CamelModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ExecutionError] = None
    debug: Optional[DebugInfo] = None

    @property
    def http_status(self) -> int:
        return self.error.http_status if self.error else 200

    def to_wire(self) -> dict[str, Any]:
        """camelCase envelope; ``data`` is passed through untouched."""
        wire: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            wire["data"] = _ANY.dump_python(self.data, mode="json")
        if self.error is not None:
            wire["error"] = self.error.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.debug is not None:
            wire["debug"] = self.debug.model_dump(mode="json", by_alias=True, exclude_none=True)
        return wire
