"""
COSMO error taxonomy.

Every caller-facing failure is a ``CosmoError`` carrying a stable code, a
fixed HTTP status and a retryable flag.  Stages that can recover locally
(classification, model selection, audit writes) never raise these; the rest
propagate to the orchestrator, which turns them into the error envelope.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

import httpx


class CosmoErrorCode(str, Enum):
    """Stable error codes surfaced at the system boundary."""
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    UNAUTHORIZED = "UNAUTHORIZED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    INTEGRATION_EXPIRED = "INTEGRATION_EXPIRED"
    LOOP_LIMIT_EXCEEDED = "LOOP_LIMIT_EXCEEDED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    ALL_MODELS_FAILED = "ALL_MODELS_FAILED"
    CONFIG_MISSING = "CONFIG_MISSING"
    FUNCTION_FAILED = "FUNCTION_FAILED"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: dict[CosmoErrorCode, int] = {
    CosmoErrorCode.RATE_LIMITED: 429,
    CosmoErrorCode.QUOTA_EXCEEDED: 402,
    CosmoErrorCode.PAYMENT_REQUIRED: 402,
    CosmoErrorCode.UNAUTHORIZED: 401,
    CosmoErrorCode.PERMISSION_DENIED: 403,
    CosmoErrorCode.MODEL_UNAVAILABLE: 503,
    CosmoErrorCode.INTEGRATION_EXPIRED: 401,
    CosmoErrorCode.LOOP_LIMIT_EXCEEDED: 400,
    CosmoErrorCode.APPROVAL_REQUIRED: 403,
    CosmoErrorCode.INVALID_PAYLOAD: 400,
    CosmoErrorCode.ALL_MODELS_FAILED: 503,
    CosmoErrorCode.CONFIG_MISSING: 500,
    CosmoErrorCode.FUNCTION_FAILED: 500,
    CosmoErrorCode.TIMEOUT: 504,
    CosmoErrorCode.INTERNAL_ERROR: 500,
}

RETRYABLE_ERRORS: frozenset[CosmoErrorCode] = frozenset({
    CosmoErrorCode.RATE_LIMITED,
    CosmoErrorCode.MODEL_UNAVAILABLE,
    CosmoErrorCode.TIMEOUT,
    CosmoErrorCode.ALL_MODELS_FAILED,
})

ERROR_MESSAGES: dict[CosmoErrorCode, str] = {
    CosmoErrorCode.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    CosmoErrorCode.QUOTA_EXCEEDED: "Usage limit reached. Please upgrade your plan or wait for reset.",
    CosmoErrorCode.PAYMENT_REQUIRED: "Payment required. Please add credits to continue.",
    CosmoErrorCode.UNAUTHORIZED: "Authentication required. Please sign in.",
    CosmoErrorCode.PERMISSION_DENIED: "You do not have permission for this action.",
    CosmoErrorCode.MODEL_UNAVAILABLE: "AI model temporarily unavailable. Please try again.",
    CosmoErrorCode.INTEGRATION_EXPIRED: "Integration credentials expired. Please reconnect.",
    CosmoErrorCode.LOOP_LIMIT_EXCEEDED: "Agent execution stopped to prevent runaway process.",
    CosmoErrorCode.APPROVAL_REQUIRED: "This action requires approval before proceeding.",
    CosmoErrorCode.INVALID_PAYLOAD: "Invalid request format. Please check your input.",
    CosmoErrorCode.ALL_MODELS_FAILED: "All AI models failed. Please try again later.",
    CosmoErrorCode.CONFIG_MISSING: "System configuration missing. Contact support.",
    CosmoErrorCode.FUNCTION_FAILED: "Function execution failed. Please try again.",
    CosmoErrorCode.TIMEOUT: "Request timed out. Please try again.",
    CosmoErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again.",
}


class CosmoError(Exception):
    """Structured, coded pipeline failure."""

    def __init__(
        self,
        code: CosmoErrorCode,
        message: Optional[str] = None,
        details: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = CosmoErrorCode(code)
        self.message = message or ERROR_MESSAGES[self.code]
        self.details = details
        self.trace_id = trace_id
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return ERROR_HTTP_STATUS[self.code]

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_ERRORS

    def to_execution_error(self) -> dict[str, Any]:
        """Project onto the wire ``ExecutionError`` shape."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "httpStatus": self.http_status,
            "retryable": self.retryable,
        }
        if self.details:
            error["details"] = self.details
        return error

    def __repr__(self) -> str:
        return f"CosmoError(code={self.code.value!r}, message={self.message!r})"


def create_cosmo_error(
    code: CosmoErrorCode,
    message: Optional[str] = None,
    details: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> CosmoError:
    """Build a ``CosmoError`` with the default user message when none is given."""
    return CosmoError(code, message, details=details, trace_id=trace_id)


def error_to_http_status(code: CosmoErrorCode) -> int:
    return ERROR_HTTP_STATUS[CosmoErrorCode(code)]


def is_retryable(code: CosmoErrorCode) -> bool:
    return CosmoErrorCode(code) in RETRYABLE_ERRORS


def get_user_message(code: CosmoErrorCode) -> str:
    return ERROR_MESSAGES[CosmoErrorCode(code)]


def _code_for_status(status_code: int) -> Optional[CosmoErrorCode]:
    if status_code == 429:
        return CosmoErrorCode.RATE_LIMITED
    if status_code == 402:
        return CosmoErrorCode.PAYMENT_REQUIRED
    if status_code == 401:
        return CosmoErrorCode.UNAUTHORIZED
    return None


def error_from_exception(
    exc: BaseException,
    trace_id: Optional[str] = None,
    default_code: CosmoErrorCode = CosmoErrorCode.INTERNAL_ERROR,
) -> CosmoError:
    """
    Classify an arbitrary exception into a ``CosmoError``.

    Order: existing CosmoError, httpx transport failures, then well-known
    markers in the message text, then ``default_code``.
    """
    if isinstance(exc, CosmoError):
        if trace_id and not exc.trace_id:
            exc.trace_id = trace_id
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return CosmoError(CosmoErrorCode.TIMEOUT, details=str(exc), trace_id=trace_id)

    if isinstance(exc, httpx.HTTPStatusError):
        code = _code_for_status(exc.response.status_code)
        if code is not None:
            return CosmoError(code, details=str(exc), trace_id=trace_id)

    message = str(exc)
    if "RATE_LIMITED" in message or "429" in message:
        return CosmoError(CosmoErrorCode.RATE_LIMITED, details=message, trace_id=trace_id)
    if "PAYMENT_REQUIRED" in message or "402" in message:
        return CosmoError(CosmoErrorCode.PAYMENT_REQUIRED, details=message, trace_id=trace_id)
    if "UNAUTHORIZED" in message or "401" in message:
        return CosmoError(CosmoErrorCode.UNAUTHORIZED, details=message, trace_id=trace_id)
    if "ALL_MODELS_FAILED" in message:
        return CosmoError(CosmoErrorCode.ALL_MODELS_FAILED, details=message, trace_id=trace_id)
    if "CONFIG_MISSING" in message or "not configured" in message:
        return CosmoError(CosmoErrorCode.CONFIG_MISSING, message, trace_id=trace_id)

    return CosmoError(
        default_code,
        message or ERROR_MESSAGES[CosmoErrorCode(default_code)],
        details=type(exc).__name__,
        trace_id=trace_id,
    )
