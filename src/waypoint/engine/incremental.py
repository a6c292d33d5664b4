"""Incremental diff: refresh an existing summary after some units changed.

The refresh pipeline runs the same steps as a fresh summary. Only fetch and
save differ:

- fetch seeds the unchanged units as already analyzed (reusing their stored
  analysis), so the shared analyze step only processes changed or new units;
- save updates the existing summary record in place.

The engine cannot verify that a unit the caller calls "unchanged" really is;
that partition is the caller's responsibility. When the caller contradicts
itself, recomputation wins over staleness.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from waypoint.contracts.errors import PipelineError
from waypoint.contracts.parameters import RefreshParameters
from waypoint.contracts.work import RecordGateway
from waypoint.core.logging import get_logger
from waypoint.engine.context import StepContext

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RefreshPlan:
    """Partition of the current unit set.

    Attributes:
        skip: Units whose previous analysis is reused, in unit order
        reprocess: Units to analyze again, in unit order
        conflicts: Units the caller listed as both unchanged and changed
    """

    skip: tuple[str, ...]
    reprocess: tuple[str, ...]
    conflicts: tuple[str, ...] = ()


def plan_refresh(current_unit_ids: Sequence[str], unchanged: Iterable[str], changed: Iterable[str]) -> RefreshPlan:
    """Split the current units into skip and reprocess sets.

    A unit in both ``unchanged`` and ``changed`` is reprocessed. A current
    unit in neither set is new to the summary and is reprocessed. Ids that
    are not in the current set are ignored.
    """
    unchanged_set = set(unchanged)
    changed_set = set(changed)
    conflicts = unchanged_set & changed_set
    skip = tuple(u for u in current_unit_ids if u in unchanged_set and u not in conflicts)
    skip_set = set(skip)
    reprocess = tuple(u for u in current_unit_ids if u not in skip_set)
    return RefreshPlan(
        skip=skip,
        reprocess=reprocess,
        conflicts=tuple(u for u in current_unit_ids if u in conflicts),
    )


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Units of a summary's window that changed since it was written."""

    summary_id: str
    owner_id: str
    changed: tuple[str, ...]
    unchanged: tuple[str, ...]

    @property
    def up_to_date(self) -> bool:
        return not self.changed


def detect_changes(gateway: RecordGateway, summary_id: str) -> ChangeSet:
    """Compare unit modification times against the summary's.

    Raises:
        PipelineError: If the summary does not exist
    """
    summary = gateway.get_summary(summary_id)
    if summary is None:
        raise PipelineError(f"Summary not found: {summary_id}")
    changed, unchanged = gateway.changed_units(summary)
    return ChangeSet(summary_id=summary_id, owner_id=summary.owner_id, changed=tuple(changed), unchanged=tuple(unchanged))


class RefreshFetchStrategy:
    """Fetch strategy for summary-refresh tasks."""

    def __init__(self, gateway: RecordGateway) -> None:
        self._gateway = gateway

    def fetch(self, ctx: StepContext) -> None:
        params = ctx.parameters
        if not isinstance(params, RefreshParameters):
            raise PipelineError(f"Refresh fetch needs refresh parameters, got {type(params).__name__}")

        summary = self._gateway.get_summary(params.summary_id)
        if summary is None:
            raise PipelineError(f"Summary not found: {params.summary_id}")
        if summary.owner_id != ctx.owner_id:
            raise PipelineError(f"Summary {params.summary_id} does not belong to owner {ctx.owner_id}")

        units = self._gateway.list_units(summary.owner_id, summary.start_date, summary.end_date)
        if not units:
            raise PipelineError(f"Summary {params.summary_id} has no work units left in its window")

        plan = plan_refresh([u.unit_id for u in units], params.unchanged_unit_ids, params.changed_unit_ids)
        if plan.conflicts:
            logger.warning("refresh_partition_conflict", task_id=ctx.task_id, unit_ids=list(plan.conflicts))

        checkpoint = ctx.checkpoint
        checkpoint.units = [unit.to_snapshot() for unit in units]
        checkpoint.window = {
            "start_date": summary.start_date.isoformat(),
            "end_date": summary.end_date.isoformat(),
            "name": summary.name,
        }
        skip = set(plan.skip)
        for unit in units:
            if unit.unit_id not in skip:
                continue
            if unit.analysis is None:
                # Nothing stored to reuse
                logger.info("refresh_unit_without_analysis", task_id=ctx.task_id, unit_id=unit.unit_id)
                continue
            checkpoint.mark_skipped(unit.unit_id, dict(unit.analysis))

        skipped = len(checkpoint.skipped_unit_ids)
        ctx.checkpoint_progress(
            ctx.step.progress_weight,
            f"Reusing {skipped} of {len(units)} analyses",
            {"skipped": skipped, "total": len(units)},
        )


class InPlaceSaveStrategy:
    """Save strategy for summary-refresh tasks: update the existing record."""

    def __init__(self, gateway: RecordGateway) -> None:
        self._gateway = gateway

    def save(self, ctx: StepContext) -> None:
        params = ctx.parameters
        if not isinstance(params, RefreshParameters):
            raise PipelineError(f"In-place save needs refresh parameters, got {type(params).__name__}")
        checkpoint = ctx.checkpoint
        if checkpoint.result is None:
            raise PipelineError("Nothing to save: the summary has not been generated")
        self._gateway.update_summary(
            params.summary_id,
            unit_ids=[u["unit_id"] for u in checkpoint.units if checkpoint.is_analyzed(u["unit_id"])],
            result=checkpoint.result,
        )
        checkpoint.summary_id = params.summary_id
