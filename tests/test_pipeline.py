"""Tests for the per-request pipeline state machine."""
from __future__ import annotations

import pytest

from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.pipeline import (
    STAGE_ORDER,
    PipelineStage,
    PipelineState,
    PipelineStateError,
)


class TestPipelineState:

    def test_starts_received(self) -> None:
        state = PipelineState(trace_id="t")
        assert state.stage is PipelineStage.RECEIVED
        assert state.stages == [PipelineStage.RECEIVED]
        assert not state.is_terminal

    def test_full_chat_path(self) -> None:
        state = PipelineState(trace_id="t")
        for stage in STAGE_ORDER[1:]:
            state.advance(stage)
        assert state.stages == list(STAGE_ORDER)
        assert state.is_terminal

    def test_forward_skip_allowed(self) -> None:
        state = PipelineState(trace_id="t")
        state.advance(PipelineStage.INTENT_ANALYZED)
        state.advance(PipelineStage.FUNCTIONS_EXECUTED)
        state.advance(PipelineStage.COMPLETE)
        assert PipelineStage.MODEL_ROUTED not in state.stages

    def test_backward_rejected(self) -> None:
        state = PipelineState(trace_id="t")
        state.advance(PipelineStage.MODEL_ROUTED)
        with pytest.raises(PipelineStateError):
            state.advance(PipelineStage.INTENT_ANALYZED)

    def test_same_stage_rejected(self) -> None:
        state = PipelineState(trace_id="t")
        with pytest.raises(PipelineStateError):
            state.advance(PipelineStage.RECEIVED)

    def test_error_only_through_fail(self) -> None:
        state = PipelineState(trace_id="t")
        with pytest.raises(PipelineStateError, match="fail"):
            state.advance(PipelineStage.ERROR)

    def test_fail_records_stage(self) -> None:
        state = PipelineState(trace_id="t")
        state.advance(PipelineStage.FUNCTIONS_SELECTED)
        error = CosmoError(CosmoErrorCode.FUNCTION_FAILED)
        state.fail(error)
        assert state.stage is PipelineStage.ERROR
        assert state.failed_at is PipelineStage.FUNCTIONS_SELECTED
        assert state.error is error

    def test_no_stage_after_error(self) -> None:
        state = PipelineState(trace_id="t")
        state.fail(CosmoError(CosmoErrorCode.TIMEOUT))
        assert not state.can_advance(PipelineStage.MODEL_ROUTED)
        with pytest.raises(PipelineStateError):
            state.advance(PipelineStage.COMPLETE)
        with pytest.raises(PipelineStateError):
            state.fail(CosmoError(CosmoErrorCode.TIMEOUT))

    def test_no_stage_after_complete(self) -> None:
        state = PipelineState(trace_id="t")
        state.advance(PipelineStage.COMPLETE)
        assert not state.can_advance(PipelineStage.ERROR)
        with pytest.raises(PipelineStateError):
            state.fail(CosmoError(CosmoErrorCode.TIMEOUT))
