"""
Request tracing for the COSMO orchestrator.

Every orchestrated request gets a trace_id that propagates through:
- Intent analysis
- Function selection and execution
- Model routing and inference
- Response processing

Usage:
    from cosmo.core.tracing import create_trace_context, trace_span

    ctx = create_trace_context(user_id=user_id)
    with trace_span(ctx, "intent_analysis") as span:
        intent = await analyze_intent(prompt, store)
        span.set_attribute("category", intent.category)

Span durations per stage feed ``debug.timingsMs`` of the result envelope.
"""

from __future__ import annotations

import logging
import random
import string
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generator, Optional

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_BASE36_DIGITS = string.digits + string.ascii_lowercase


def _random_suffix(length: int = 7) -> str:
    return "".join(random.choices(_ID_ALPHABET, k=length))


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def generate_request_id() -> str:
    """``cosmo_<epoch ms>_<7 random chars>``."""
    return f"cosmo_{int(time.time() * 1000)}_{_random_suffix()}"


def generate_trace_id() -> str:
    """``trace_<epoch ms in base36>_<7 random chars>``."""
    return f"trace_{_base36(int(time.time() * 1000))}_{_random_suffix()}"


class SpanStatus(str, Enum):
    """Status of a trace span."""
    OK = "ok"
    ERROR = "error"


@dataclass
class Span:
    """A single traced operation."""
    name: str
    trace_id: str
    span_id: str
    parent_span_id: Optional[str]
    start_time: float
    end_time: Optional[float] = None
    status: SpanStatus = SpanStatus.OK
    attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_error(self, error: BaseException) -> None:
        """Mark span as error."""
        self.status = SpanStatus.ERROR
        self.set_attribute("error.type", type(error).__name__)
        self.set_attribute("error.message", str(error))

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "attributes": self.attributes,
        }


@dataclass
class TraceContext:
    """Context for a traced request."""
    trace_id: str
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    spans: list[Span] = field(default_factory=list)
    current_span: Optional[Span] = None
    _span_stack: list[Span] = field(default_factory=list)

    def timings_ms(self) -> dict[str, int]:
        """Duration of every finished top-level span, keyed by name."""
        timings: dict[str, int] = {}
        for span in self.spans:
            if span.parent_span_id is None and span.duration_ms is not None:
                timings[span.name] = timings.get(span.name, 0) + int(round(span.duration_ms))
        return timings

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "spans": [s.to_dict() for s in self.spans],
        }


# Request-scoped trace context
_trace_context: ContextVar[Optional[TraceContext]] = ContextVar("trace_context", default=None)


def create_trace_context(
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> TraceContext:
    """Create a new trace context for a request and make it current."""
    ctx = TraceContext(
        trace_id=trace_id or generate_trace_id(),
        request_id=request_id,
        user_id=user_id,
    )
    _trace_context.set(ctx)
    return ctx


def get_trace_context() -> TraceContext:
    """Get current trace context, creating one if needed."""
    ctx = _trace_context.get()
    if ctx is None:
        ctx = create_trace_context()
    return ctx


def get_trace_id() -> str:
    return get_trace_context().trace_id


def clear_trace_context() -> None:
    """Clear trace context (for testing)."""
    _trace_context.set(None)


@contextmanager
def trace_span(
    ctx: TraceContext,
    name: str,
    attributes: Optional[dict[str, Any]] = None,
) -> Generator[Span, None, None]:
    """Context manager for tracing one pipeline stage."""
    parent_span = ctx.current_span
    span = Span(
        name=name,
        trace_id=ctx.trace_id,
        span_id=str(uuid.uuid4())[:8],
        parent_span_id=parent_span.span_id if parent_span else None,
        start_time=time.perf_counter(),
        attributes=attributes or {},
    )

    ctx._span_stack.append(span)
    ctx.current_span = span
    ctx.spans.append(span)

    try:
        yield span
    except BaseException as e:
        span.set_error(e)
        raise
    finally:
        span.end_time = time.perf_counter()
        ctx._span_stack.pop()
        ctx.current_span = ctx._span_stack[-1] if ctx._span_stack else None
        log_span(span)


def log_span(span: Span) -> None:
    """Log a completed span with structured data."""
    log_data = {
        "trace_id": span.trace_id,
        "span_id": span.span_id,
        "span_name": span.name,
        "duration_ms": span.duration_ms,
        "status": span.status.value,
    }

    if span.status == SpanStatus.ERROR:
        logger.error(f"[{span.trace_id}] ✗ {span.name}", extra=log_data)
    else:
        logger.info(f"[{span.trace_id}] ✓ {span.name} ({span.duration_ms:.0f}ms)", extra=log_data)


def log_intent(trace_id: str, prompt: str, category: str, confidence: float, intent_key: str) -> None:
    """Log intent classification result."""
    logger.info(
        f"[{trace_id}] 🎯 Intent: {category} ({confidence:.2f})",
        extra={
            "trace_id": trace_id,
            "event": "intent_classified",
            "category": category,
            "intent_key": intent_key,
            "confidence": confidence,
            "prompt_length": len(prompt),
        },
    )


def log_llm_call(
    trace_id: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    duration_ms: float,
) -> None:
    """Log an inference call."""
    logger.info(
        f"[{trace_id}] 🤖 LLM: {model} ({prompt_tokens}+{completion_tokens} tokens, {duration_ms:.0f}ms)",
        extra={
            "trace_id": trace_id,
            "event": "llm_call",
            "model": model,
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "duration_ms": duration_ms,
        },
    )
