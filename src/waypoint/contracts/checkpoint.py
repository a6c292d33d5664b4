"""Versioned checkpoint schema for summary pipelines.

The checkpoint is the only state that survives a pause, crash, or retry.
It is stored in tasks.intermediate_json as an envelope::

    {"version": 1, "data": {...}}

Readers reject any other version instead of guessing at renamed fields.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from waypoint.contracts.errors import IncompatibleCheckpointError, UnitFailureRecord

CHECKPOINT_VERSION = 1


@dataclass
class SummaryCheckpoint:
    """Intermediate data shared by the summary and summary-refresh pipelines.

    Executors mutate an instance in place; the runner persists it after every
    completed step and the analyze loop persists it after every unit.

    Attributes:
        units: Snapshots of the units in scope, in processing order
        analyzed_unit_ids: Units whose analysis is final, in completion order
        failed_units: Units whose last attempt failed, keyed by unit id
        unit_results: Analysis payload per analyzed unit
        skipped_unit_ids: Units seeded as analyzed without processing
        window: Date range and name of the summary being produced
        context: Reference document loaded by the context step
        supplement: Optional supplementary data loaded by the enrich step
        prepared: Summarizer input built by the prepare step
        result: Aggregate produced by the generate step
        summary_id: Summary record written by the save step
    """

    units: list[dict[str, Any]] = field(default_factory=list)
    analyzed_unit_ids: list[str] = field(default_factory=list)
    failed_units: dict[str, UnitFailureRecord] = field(default_factory=dict)
    unit_results: dict[str, dict[str, Any]] = field(default_factory=dict)
    skipped_unit_ids: list[str] = field(default_factory=list)
    window: dict[str, Any] | None = None
    context: dict[str, Any] | None = None
    supplement: dict[str, Any] | None = None
    prepared: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    summary_id: str | None = None

    def is_analyzed(self, unit_id: str) -> bool:
        return unit_id in self.unit_results

    def mark_analyzed(self, unit_id: str, analysis: dict[str, Any]) -> None:
        """Record a final analysis for a unit. A stale failure entry is cleared."""
        if unit_id not in self.unit_results:
            self.analyzed_unit_ids.append(unit_id)
        self.unit_results[unit_id] = analysis
        self.failed_units.pop(unit_id, None)

    def mark_skipped(self, unit_id: str, analysis: dict[str, Any]) -> None:
        """Seed a unit as analyzed using an analysis computed earlier."""
        self.mark_analyzed(unit_id, analysis)
        if unit_id not in self.skipped_unit_ids:
            self.skipped_unit_ids.append(unit_id)

    def record_failure(self, unit_id: str, failure: UnitFailureRecord) -> None:
        self.failed_units[unit_id] = failure

    def exclude_unit(self, unit_id: str, failure: UnitFailureRecord) -> None:
        """Take a unit out of scope, keeping the reason as a failure record.

        An analysis seeded for the unit is dropped with it.
        """
        self.units = [unit for unit in self.units if unit["unit_id"] != unit_id]
        self.unit_results.pop(unit_id, None)
        self.analyzed_unit_ids = [u for u in self.analyzed_unit_ids if u != unit_id]
        self.skipped_unit_ids = [u for u in self.skipped_unit_ids if u != unit_id]
        self.record_failure(unit_id, failure)

    def pending_units(self) -> list[dict[str, Any]]:
        """Snapshots of units not yet analyzed, in processing order."""
        return [unit for unit in self.units if unit["unit_id"] not in self.unit_results]

    def to_payload(self) -> dict[str, Any]:
        return {"version": CHECKPOINT_VERSION, "data": asdict(self)}

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "SummaryCheckpoint":
        """Rebuild a checkpoint from its stored envelope.

        An empty payload (fresh task) yields an empty checkpoint.

        Raises:
            IncompatibleCheckpointError: If the envelope version is not CHECKPOINT_VERSION
        """
        if not payload:
            return cls()
        version = payload.get("version")
        if version != CHECKPOINT_VERSION:
            raise IncompatibleCheckpointError(
                f"Checkpoint version {version!r} is not supported (expected {CHECKPOINT_VERSION}). "
                "Start a new task for this window."
            )
        data = payload["data"]
        return cls(
            units=list(data["units"]),
            analyzed_unit_ids=list(data["analyzed_unit_ids"]),
            failed_units=dict(data["failed_units"]),
            unit_results=dict(data["unit_results"]),
            skipped_unit_ids=list(data["skipped_unit_ids"]),
            window=data["window"],
            context=data["context"],
            supplement=data["supplement"],
            prepared=data["prepared"],
            result=data["result"],
            summary_id=data["summary_id"],
        )
