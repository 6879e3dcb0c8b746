"""
Per-request pipeline state machine.

    RECEIVED -> INTENT_ANALYZED -> FUNCTIONS_SELECTED -> FUNCTIONS_EXECUTED
             -> MODEL_ROUTED -> RESPONSE_BUILT -> COMPLETE

ERROR is reachable from every non-terminal stage.  Stages only move
forward; flows that do not need a stage (webhooks never route a model)
skip it.  COMPLETE and ERROR are terminal: once a request has failed no
later stage may run.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cosmo.core.errors import CosmoError

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    RECEIVED = "received"
    INTENT_ANALYZED = "intent_analyzed"
    FUNCTIONS_SELECTED = "functions_selected"
    FUNCTIONS_EXECUTED = "functions_executed"
    MODEL_ROUTED = "model_routed"
    RESPONSE_BUILT = "response_built"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.RECEIVED,
    PipelineStage.INTENT_ANALYZED,
    PipelineStage.FUNCTIONS_SELECTED,
    PipelineStage.FUNCTIONS_EXECUTED,
    PipelineStage.MODEL_ROUTED,
    PipelineStage.RESPONSE_BUILT,
    PipelineStage.COMPLETE,
)

TERMINAL_STAGES = frozenset({PipelineStage.COMPLETE, PipelineStage.ERROR})


class PipelineStateError(RuntimeError):
    """Illegal stage transition (a programming error, not a request error)."""


@dataclass
class PipelineState:
    """Current stage plus the path taken to reach it."""
    trace_id: str
    stage: PipelineStage = PipelineStage.RECEIVED
    history: list[tuple[PipelineStage, float]] = field(default_factory=list)
    error: Optional[CosmoError] = None
    failed_at: Optional[PipelineStage] = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.stage, time.monotonic()))

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def stages(self) -> list[PipelineStage]:
        return [stage for stage, _ in self.history]

    def can_advance(self, target: PipelineStage) -> bool:
        if self.is_terminal:
            return False
        if target == PipelineStage.ERROR:
            return True
        return STAGE_ORDER.index(target) > STAGE_ORDER.index(self.stage)

    def advance(self, target: PipelineStage) -> None:
        if target == PipelineStage.ERROR:
            raise PipelineStateError("Use fail() to enter the ERROR stage")
        if not self.can_advance(target):
            raise PipelineStateError(
                f"Illegal pipeline transition {self.stage.value} -> {target.value}"
            )
        logger.debug(f"[{self.trace_id}] stage {self.stage.value} -> {target.value}")
        self.stage = target
        self.history.append((target, time.monotonic()))

    def fail(self, error: CosmoError) -> None:
        """Enter ERROR, remembering where the request failed."""
        if self.is_terminal:
            raise PipelineStateError(f"Cannot fail a request already {self.stage.value}")
        logger.warning(f"[{self.trace_id}] failed at {self.stage.value}: {error.code.value}")
        self.failed_at = self.stage
        self.error = error
        self.stage = PipelineStage.ERROR
        self.history.append((PipelineStage.ERROR, time.monotonic()))
