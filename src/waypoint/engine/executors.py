"""Step executor: what each step of a summary pipeline does.

One executor serves both task types. The parts that differ between a fresh
summary and an incremental refresh are supplied as strategies:

- FetchStrategy decides which units are in scope and which are pre-analyzed.
- AnalyzeStrategy processes pending units (UnitAnalyzer for both types).
- SaveStrategy materializes the aggregate (new record vs. update in place).

The remaining steps are shared and implemented here.
"""

from datetime import date
from typing import Any, Protocol, assert_never

from waypoint.contracts.checkpoint import SummaryCheckpoint
from waypoint.contracts.enums import StepName
from waypoint.contracts.errors import PipelineError, UnitFailureRecord
from waypoint.contracts.parameters import SummaryParameters
from waypoint.contracts.work import RecordGateway, Summarizer
from waypoint.core.logging import get_logger
from waypoint.engine.context import StepContext

logger = get_logger(__name__)


class FetchStrategy(Protocol):
    def fetch(self, ctx: StepContext) -> None: ...


class AnalyzeStrategy(Protocol):
    def analyze(self, ctx: StepContext) -> None: ...


class SaveStrategy(Protocol):
    def save(self, ctx: StepContext) -> None: ...


class WindowFetchStrategy:
    """Loads the owner's units inside the requested date window.

    Units that already carry a stored analysis are seeded as analyzed unless
    the task asked for ``force_reprocess``.
    """

    def __init__(self, gateway: RecordGateway) -> None:
        self._gateway = gateway

    def fetch(self, ctx: StepContext) -> None:
        params = ctx.parameters
        if not isinstance(params, SummaryParameters):
            raise PipelineError(f"Window fetch needs summary parameters, got {type(params).__name__}")

        units = self._gateway.list_units(
            ctx.owner_id,
            params.start_date,
            params.end_date,
            list(params.unit_ids) if params.unit_ids is not None else None,
        )
        if not units:
            raise PipelineError(
                f"No work units found between {params.start_date.isoformat()} and {params.end_date.isoformat()}"
            )

        checkpoint = ctx.checkpoint
        checkpoint.units = [unit.to_snapshot() for unit in units]
        checkpoint.window = {
            "start_date": params.start_date.isoformat(),
            "end_date": params.end_date.isoformat(),
            "name": params.name,
        }
        if not params.force_reprocess:
            for unit in units:
                if unit.analysis is not None:
                    checkpoint.mark_skipped(unit.unit_id, dict(unit.analysis))
        logger.info(
            "units_fetched",
            task_id=ctx.task_id,
            total=len(units),
            reused=len(checkpoint.skipped_unit_ids),
        )


class NewSummarySaveStrategy:
    """Writes the aggregate as a new summary record for the window."""

    def __init__(self, gateway: RecordGateway) -> None:
        self._gateway = gateway

    def save(self, ctx: StepContext) -> None:
        checkpoint = ctx.checkpoint
        if checkpoint.result is None or checkpoint.window is None:
            raise PipelineError("Nothing to save: the summary has not been generated")
        checkpoint.summary_id = self._gateway.create_summary(
            owner_id=ctx.owner_id,
            start_date=date.fromisoformat(checkpoint.window["start_date"]),
            end_date=date.fromisoformat(checkpoint.window["end_date"]),
            name=checkpoint.window["name"],
            unit_ids=[u["unit_id"] for u in checkpoint.units if checkpoint.is_analyzed(u["unit_id"])],
            result=checkpoint.result,
        )


class StepExecutor:
    """Executes one named step against a task's checkpoint.

    Each step reads what earlier steps left in the checkpoint and adds its
    own output, so re-running any single step after a failure needs nothing
    but the persisted checkpoint.
    """

    def __init__(
        self,
        gateway: RecordGateway,
        summarizer: Summarizer,
        *,
        fetch: FetchStrategy,
        analyze: AnalyzeStrategy,
        save: SaveStrategy,
    ) -> None:
        self._gateway = gateway
        self._summarizer = summarizer
        self._fetch = fetch
        self._analyze = analyze
        self._save = save

    def load_checkpoint(self, payload: dict[str, Any]) -> SummaryCheckpoint:
        """Raises IncompatibleCheckpointError for an unreadable checkpoint version."""
        return SummaryCheckpoint.from_payload(payload)

    def execute(self, step: StepName, ctx: StepContext) -> None:
        match step:
            case StepName.AUTHORIZE:
                self._authorize(ctx)
            case StepName.FETCH:
                self._fetch.fetch(ctx)
            case StepName.VALIDATE:
                self._validate(ctx)
            case StepName.CONTEXT:
                self._load_context(ctx)
            case StepName.ANALYZE:
                self._analyze.analyze(ctx)
            case StepName.ENRICH:
                self._enrich(ctx)
            case StepName.PREPARE:
                self._prepare(ctx)
            case StepName.GENERATE:
                self._generate(ctx)
            case StepName.SAVE:
                self._save.save(ctx)
            case _:
                assert_never(step)

    def outcome(self, checkpoint: SummaryCheckpoint) -> dict[str, Any]:
        """Result recorded on the task when it completes."""
        return {
            "summaryId": checkpoint.summary_id,
            "analyzedUnits": len(checkpoint.analyzed_unit_ids),
            "failedUnits": len(checkpoint.failed_units),
            "skippedUnits": len(checkpoint.skipped_unit_ids),
        }

    # === Shared steps ===

    def _authorize(self, ctx: StepContext) -> None:
        if not self._gateway.owner_exists(ctx.owner_id):
            raise PipelineError(f"Owner not found: {ctx.owner_id}")

    def _validate(self, ctx: StepContext) -> None:
        checkpoint = ctx.checkpoint
        for unit in list(checkpoint.units):
            if not unit["content"]:
                checkpoint.exclude_unit(unit["unit_id"], UnitFailureRecord(error="Unit has no content", type="ValidationError"))
        if not checkpoint.units:
            raise PipelineError("None of the work units in scope have content to analyze")

    def _load_context(self, ctx: StepContext) -> None:
        context = self._gateway.load_context(ctx.owner_id)
        if context is None:
            raise PipelineError(f"No analysis context for owner {ctx.owner_id}; create one before summarizing")
        ctx.checkpoint.context = context

    def _enrich(self, ctx: StepContext) -> None:
        # Optional: a missing supplement is not an error
        ctx.checkpoint.supplement = self._gateway.load_supplement(ctx.owner_id)

    def _prepare(self, ctx: StepContext) -> None:
        checkpoint = ctx.checkpoint
        analyzed = [unit for unit in checkpoint.units if checkpoint.is_analyzed(unit["unit_id"])]
        if not analyzed:
            raise PipelineError("No work units could be analyzed")
        checkpoint.prepared = {
            "owner_id": ctx.owner_id,
            "window": checkpoint.window,
            "units": [
                {
                    "unit_id": unit["unit_id"],
                    "unit_date": unit["unit_date"],
                    "label": unit["label"],
                    "analysis": checkpoint.unit_results[unit["unit_id"]],
                }
                for unit in analyzed
            ],
            "failed_unit_ids": sorted(checkpoint.failed_units),
            "context": checkpoint.context,
            "supplement": checkpoint.supplement,
        }

    def _generate(self, ctx: StepContext) -> None:
        checkpoint = ctx.checkpoint
        if checkpoint.prepared is None:
            raise PipelineError("Summary input has not been prepared")
        checkpoint.result = self._summarizer.summarize(checkpoint.prepared)
