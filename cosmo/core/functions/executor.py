"""
Function Executor.

A tool, not a decision-maker: it runs the function keys it is given and
reports per-function outcomes.  A failing function never aborts its batch.

Sequential batches thread a context forward: every successful result is
merged under its function key before the next function runs.  Parallel
batches give every function the same context, join on all of them, and
bound each one with ``settings.function_timeout_seconds``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from cosmo.config import settings
from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.functions.models import (
    BatchExecutionRequest,
    BatchExecutionResult,
    FunctionExecutionRequest,
    FunctionExecutionResult,
)
from cosmo.core.functions.tools import ToolRegistry, get_tool_registry

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def execute_function(
    request: FunctionExecutionRequest,
    store: "CosmoStore",
    tools: Optional[ToolRegistry] = None,
) -> FunctionExecutionResult:
    """Run one registered, enabled function. Never raises."""
    tools = tools or get_tool_registry()
    start = time.perf_counter()
    key = request.function_key

    try:
        logger.info(f"Executing function {key} (request {request.request_id})")
        config = await store.get_function(key)
        if not config.ok or config.value is None:
            raise CosmoError(
                CosmoErrorCode.FUNCTION_FAILED,
                f"Function '{key}' not found or disabled",
            )

        data = await tools.execute(key, dict(request.context), store)
        return FunctionExecutionResult(
            function_key=key,
            success=True,
            data=data,
            events_emitted=[f"{key}:complete"],
            execution_time_ms=_elapsed_ms(start),
        )
    except Exception as e:
        message = str(e) or "Unknown error"
        logger.error(f"Function execution failed: {key}: {message}")
        return FunctionExecutionResult(
            function_key=key,
            success=False,
            error=message,
            events_emitted=[f"{key}:error"],
            execution_time_ms=_elapsed_ms(start),
        )


async def _execute_with_timeout(
    request: FunctionExecutionRequest,
    store: "CosmoStore",
    tools: Optional[ToolRegistry],
    timeout: float,
) -> FunctionExecutionResult:
    start = time.perf_counter()
    try:
        return await asyncio.wait_for(execute_function(request, store, tools), timeout=timeout)
    except asyncio.TimeoutError:
        key = request.function_key
        logger.warning(f"Function {key} timed out after {timeout}s")
        return FunctionExecutionResult(
            function_key=key,
            success=False,
            error=f"{CosmoErrorCode.TIMEOUT.value}: Function '{key}' timed out after {timeout}s",
            events_emitted=[f"{key}:error"],
            execution_time_ms=_elapsed_ms(start),
        )


async def execute_functions(
    request: BatchExecutionRequest,
    store: "CosmoStore",
    tools: Optional[ToolRegistry] = None,
    timeout: Optional[float] = None,
) -> BatchExecutionResult:
    """Run a batch; ``success`` is True only when no function failed."""
    start = time.perf_counter()
    results: list[FunctionExecutionResult] = []
    errors: list[str] = []
    mode = "sequential" if request.sequential else "parallel"
    logger.info(f"Batch execution started: {len(request.functions)} functions, {mode}")

    if request.sequential:
        context: dict[str, Any] = dict(request.functions[0].context) if request.functions else {}
        for func in request.functions:
            result = await execute_function(
                FunctionExecutionRequest(
                    function_key=func.function_key,
                    context={**func.context, **context},
                    request_id=func.request_id,
                ),
                store,
                tools,
            )
            results.append(result)
            if not result.success:
                errors.append(result.error or f"Function {func.function_key} failed")
            elif result.data:
                context = {**context, func.function_key: result.data}
    else:
        per_call = timeout if timeout is not None else settings.function_timeout_seconds
        results = list(await asyncio.gather(*(
            _execute_with_timeout(func, store, tools, per_call) for func in request.functions
        )))
        errors = [
            r.error or f"Function {r.function_key} failed"
            for r in results
            if not r.success
        ]

    batch = BatchExecutionResult(
        success=not errors,
        results=results,
        total_time_ms=_elapsed_ms(start),
        errors=errors,
    )
    logger.info(
        f"Batch execution finished: {len(results) - len(errors)}/{len(results)} succeeded "
        f"in {batch.total_time_ms}ms"
    )
    return batch
