"""Work units, summaries, and the collaborator protocols the engine calls.

The engine treats everything here as opaque domain data: it moves units
through the analyze loop and hands results to the summarizer, but it never
interprets unit content or analysis payloads.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class WorkUnit:
    """Smallest individually reprocessable item of a multi-unit step.

    Attributes:
        unit_id: Stable identifier
        owner_id: Owning entity
        unit_date: Day the unit belongs to (drives window selection)
        label: Human-readable label
        content: Opaque payload handed to the processor
        analysis: Last stored analysis, if the unit was processed before
        updated_at: Last modification time of the unit's content
    """

    unit_id: str
    owner_id: str
    unit_date: date
    label: str
    content: Mapping[str, Any] = field(default_factory=dict)
    analysis: Mapping[str, Any] | None = None
    updated_at: datetime | None = None

    def to_snapshot(self) -> dict[str, Any]:
        """Checkpoint form of the unit (analysis is tracked separately)."""
        return {
            "unit_id": self.unit_id,
            "owner_id": self.owner_id,
            "unit_date": self.unit_date.isoformat(),
            "label": self.label,
            "content": dict(self.content),
        }

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "WorkUnit":
        return cls(
            unit_id=snapshot["unit_id"],
            owner_id=snapshot["owner_id"],
            unit_date=date.fromisoformat(snapshot["unit_date"]),
            label=snapshot["label"],
            content=snapshot["content"],
        )


@dataclass(frozen=True, slots=True)
class UnitResult:
    """Successful outcome of processing one work unit."""

    unit_id: str
    analysis: dict[str, Any]
    provider: str


@dataclass(frozen=True, slots=True)
class SummaryRecord:
    """A previously materialized aggregate over a window of work units."""

    summary_id: str
    owner_id: str
    start_date: date
    end_date: date
    name: str | None
    unit_ids: tuple[str, ...]
    result: Mapping[str, Any]
    created_at: datetime
    updated_at: datetime


@runtime_checkable
class WorkUnitProcessor(Protocol):
    """Turns one work unit into a result.

    Implementations may be slow and may fail transiently. Failures are
    reported as UnitProcessingError with ``retryable`` set when another
    attempt could succeed.
    """

    name: str

    def process(self, unit: WorkUnit, context: Mapping[str, Any]) -> UnitResult:
        """Process a single unit.

        Raises:
            UnitProcessingError: If the unit cannot be processed
        """
        ...


@runtime_checkable
class Summarizer(Protocol):
    """Produces the aggregate result from prepared summary input."""

    def summarize(self, prepared: Mapping[str, Any]) -> dict[str, Any]:
        """Generate the aggregate.

        Raises:
            PipelineError: If the aggregate cannot be produced
        """
        ...


class RecordGateway(Protocol):
    """Domain record access used by step strategies."""

    def owner_exists(self, owner_id: str) -> bool: ...

    def list_units(
        self,
        owner_id: str,
        start_date: date,
        end_date: date,
        unit_ids: Sequence[str] | None = None,
    ) -> list[WorkUnit]: ...

    def get_units(self, unit_ids: Sequence[str]) -> list[WorkUnit]: ...

    def record_analysis(self, unit_id: str, analysis: Mapping[str, Any]) -> None: ...

    def load_context(self, owner_id: str) -> dict[str, Any] | None: ...

    def load_supplement(self, owner_id: str) -> dict[str, Any] | None: ...

    def get_summary(self, summary_id: str) -> SummaryRecord | None: ...

    def create_summary(
        self,
        *,
        owner_id: str,
        start_date: date,
        end_date: date,
        name: str | None,
        unit_ids: Sequence[str],
        result: Mapping[str, Any],
    ) -> str: ...

    def update_summary(self, summary_id: str, *, unit_ids: Sequence[str], result: Mapping[str, Any]) -> None: ...

    def changed_units(self, summary: SummaryRecord) -> tuple[list[str], list[str]]: ...
