"""
Explicit fail-open result for registry and catalogue loads.

A failed load still yields a usable (empty) value so the pipeline can
degrade, but the failure is kept on the result so callers and tests can
tell "empty because truly empty" from "empty because the load failed".
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class LoadError:
    """Why a registry/catalogue load failed."""
    source: str
    message: str
    exception_type: Optional[str] = None


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    """Value of a load plus the error that produced it, if any."""
    value: T
    error: Optional[LoadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "LoadResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, value: T, source: str, exc: BaseException) -> "LoadResult[T]":
        return cls(
            value=value,
            error=LoadError(
                source=source,
                message=str(exc) or type(exc).__name__,
                exception_type=type(exc).__name__,
            ),
        )
