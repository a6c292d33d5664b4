# tests/engine/test_step_tables.py
"""Tests for StepSpec and StepTable invariants."""

import pytest

from waypoint.contracts.enums import StepName, TaskType
from waypoint.engine.steps import STEP_TABLES, SUMMARY_STEPS, StepSpec, StepTable


class TestStepSpec:
    def test_weight_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="0-100"):
            StepSpec(StepName.FETCH, 120, "Loading")

    def test_end_before_start(self) -> None:
        with pytest.raises(ValueError, match="progress_end"):
            StepSpec(StepName.ANALYZE, 50, "Analyzing", progress_end=40)

    def test_unit_progress_interpolates(self) -> None:
        spec = SUMMARY_STEPS[StepName.ANALYZE]

        assert [spec.unit_progress(done, 5) for done in range(6)] == [25, 33, 41, 49, 57, 65]

    def test_unit_progress_without_units(self) -> None:
        assert SUMMARY_STEPS[StepName.ANALYZE].unit_progress(0, 0) == 25
        assert SUMMARY_STEPS[StepName.FETCH].unit_progress(3, 5) == 10


class TestStepTable:
    def test_summary_table_order(self) -> None:
        assert SUMMARY_STEPS.names == (
            StepName.AUTHORIZE,
            StepName.FETCH,
            StepName.VALIDATE,
            StepName.CONTEXT,
            StepName.ANALYZE,
            StepName.ENRICH,
            StepName.PREPARE,
            StepName.GENERATE,
            StepName.SAVE,
        )
        assert [s.progress_weight for s in SUMMARY_STEPS] == [5, 10, 15, 20, 25, 70, 75, 80, 95]

    def test_every_task_type_has_a_table(self) -> None:
        assert set(STEP_TABLES) == set(TaskType)

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            StepTable([StepSpec(StepName.FETCH, 10, "a"), StepSpec(StepName.FETCH, 20, "b")])

    def test_decreasing_weights_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-decreasing"):
            StepTable([StepSpec(StepName.FETCH, 20, "a"), StepSpec(StepName.SAVE, 10, "b")])

    def test_empty_table_rejected(self) -> None:
        with pytest.raises(ValueError):
            StepTable([])

    def test_order_sorts_and_dedupes(self) -> None:
        order = SUMMARY_STEPS.order([StepName.SAVE, StepName.AUTHORIZE, StepName.SAVE])

        assert order == (StepName.AUTHORIZE, StepName.SAVE)
        assert StepName.SAVE in SUMMARY_STEPS
        assert len(SUMMARY_STEPS) == 9
