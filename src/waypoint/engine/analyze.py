"""Multi-unit analyze step.

Walks the checkpoint's pending units in order. Before each unit it asks the
store whether the task was paused or cancelled; after each unit it writes
the checkpoint, and only then stores the analysis on the unit record. A
unit finished after a pause request is kept; one finished after a cancel
is stored nowhere. Resuming re-enters the loop at the first unit without a
final analysis.
"""

from collections.abc import Mapping
from typing import Any

from waypoint.contracts.enums import TaskStatus, UnitFailurePolicy
from waypoint.contracts.errors import PipelineError, StepInterrupted, UnitFailureRecord, UnitProcessingError
from waypoint.contracts.work import RecordGateway, UnitResult, WorkUnit, WorkUnitProcessor
from waypoint.core.logging import get_logger
from waypoint.engine.context import StepContext
from waypoint.engine.retry import MaxRetriesExceeded, RetryManager, is_retryable_unit_error

logger = get_logger(__name__)


class UnitAnalyzer:
    """Analyze strategy shared by the summary and summary-refresh pipelines.

    Units already present in ``checkpoint.unit_results`` (analyzed by an
    earlier entry, or seeded by the fetch strategy) are never sent to the
    processor again.

    Args:
        processor: Work Unit Processor to call for each unit
        gateway: Domain records; receives each new analysis after checkpointing
        retry_manager: Retry budget per unit (retryable failures only)
        failure_policy: SKIP records the failure and continues; ABORT fails the step
        max_unit_failures: With SKIP, fail the step once more units than this
            have failed (None = unlimited)
    """

    def __init__(
        self,
        processor: WorkUnitProcessor,
        gateway: RecordGateway,
        retry_manager: RetryManager,
        *,
        failure_policy: UnitFailurePolicy = UnitFailurePolicy.SKIP,
        max_unit_failures: int | None = None,
    ) -> None:
        self._processor = processor
        self._gateway = gateway
        self._retry = retry_manager
        self._failure_policy = failure_policy
        self._max_unit_failures = max_unit_failures

    def analyze(self, ctx: StepContext) -> None:
        """Process every pending unit.

        Raises:
            StepInterrupted: If a pause or cancel was observed between units
            PipelineError: If a unit failure escalates under the failure policy
        """
        checkpoint = ctx.checkpoint
        pending = checkpoint.pending_units()
        total = len(checkpoint.units)
        already_done = total - len(pending)
        context = checkpoint.context or {}

        log = logger.bind(task_id=ctx.task_id, step=str(ctx.step.name))
        log.info("analyze_started", pending=len(pending), total=total, skipped=len(checkpoint.skipped_unit_ids))

        for index, snapshot in enumerate(pending):
            ctx.check_control()

            unit = WorkUnit.from_snapshot(snapshot)
            outcome = self._process(unit, context)
            done = already_done + index + 1
            progress = ctx.step.unit_progress(done, total)
            data = {"unitId": unit.unit_id, "completed": done, "total": total}

            if isinstance(outcome, UnitResult):
                checkpoint.mark_analyzed(unit.unit_id, outcome.analysis)
                try:
                    ctx.checkpoint_progress(progress, f"Analyzed {unit.label} ({done}/{total})", data)
                except StepInterrupted as e:
                    # A pause keeps the finished unit; a cancel discards it
                    if e.status == TaskStatus.PAUSED:
                        self._gateway.record_analysis(unit.unit_id, outcome.analysis)
                    raise
                self._gateway.record_analysis(unit.unit_id, outcome.analysis)
                continue

            checkpoint.record_failure(unit.unit_id, outcome)
            log.warning("unit_failed", unit_id=unit.unit_id, error=outcome["error"], policy=str(self._failure_policy))
            ctx.checkpoint_progress(progress, f"Could not analyze {unit.label} ({done}/{total})", {**data, "failed": True})

            if self._failure_policy == UnitFailurePolicy.ABORT:
                raise PipelineError(f"Analysis of unit {unit.unit_id} failed: {outcome['error']}")
            if self._max_unit_failures is not None and len(checkpoint.failed_units) > self._max_unit_failures:
                raise PipelineError(
                    f"{len(checkpoint.failed_units)} units failed analysis, more than the allowed {self._max_unit_failures}"
                )

        log.info("analyze_finished", analyzed=len(checkpoint.analyzed_unit_ids), failed=len(checkpoint.failed_units))

    def _process(self, unit: WorkUnit, context: Mapping[str, Any]) -> UnitResult | UnitFailureRecord:
        def on_retry(attempt: int, error: BaseException) -> None:
            logger.warning("unit_retry", unit_id=unit.unit_id, attempt=attempt, error=str(error))

        try:
            return self._retry.execute_with_retry(
                lambda: self._processor.process(unit, context),
                is_retryable=is_retryable_unit_error,
                on_retry=on_retry,
            )
        except MaxRetriesExceeded as e:
            return UnitFailureRecord(error=str(e.last_error), type=type(e.last_error).__name__, attempts=e.attempts)
        except UnitProcessingError as e:
            return UnitFailureRecord(error=e.cause, type=type(e).__name__, attempts=1)
