"""Step tables: the ordered, declarative shape of each task type's pipeline."""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from waypoint.contracts.enums import StepName, TaskType


@dataclass(frozen=True, slots=True)
class StepSpec:
    """One step of a pipeline.

    Attributes:
        name: Step identifier
        progress_weight: Overall progress reported when the step starts
        message: Human-readable status line
        progress_end: For multi-unit steps, progress reached when the last unit
            finishes; per-unit progress interpolates between the two values
    """

    name: StepName
    progress_weight: int
    message: str
    progress_end: int | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.progress_weight <= 100:
            raise ValueError(f"progress_weight must be within 0-100, got {self.progress_weight}")
        if self.progress_end is not None and not self.progress_weight <= self.progress_end <= 100:
            raise ValueError("progress_end must be within progress_weight-100")

    def unit_progress(self, done: int, total: int) -> int:
        """Progress after ``done`` of ``total`` units of this step have finished."""
        if self.progress_end is None or total == 0:
            return self.progress_weight
        span = self.progress_end - self.progress_weight
        return self.progress_weight + (done * span) // total


class StepTable:
    """Immutable, ordered list of steps shared by every task of a type.

    Invariants checked at construction: names are unique and progress
    weights never decrease along the table.
    """

    def __init__(self, steps: Sequence[StepSpec]) -> None:
        if not steps:
            raise ValueError("A step table needs at least one step")
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in table: {names}")
        weights = [s.progress_weight for s in steps]
        if weights != sorted(weights):
            raise ValueError("Step progress weights must be non-decreasing")
        self._steps = tuple(steps)
        self._index = {s.name: i for i, s in enumerate(self._steps)}

    def __iter__(self) -> Iterator[StepSpec]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, name: StepName) -> StepSpec:
        return self._steps[self._index[name]]

    @property
    def names(self) -> tuple[StepName, ...]:
        return tuple(s.name for s in self._steps)

    def order(self, completed: Sequence[StepName]) -> tuple[StepName, ...]:
        """Sort step names into table order. Unknown names raise KeyError."""
        return tuple(sorted(set(completed), key=self._index.__getitem__))


SUMMARY_STEPS = StepTable(
    [
        StepSpec(StepName.AUTHORIZE, 5, "Verifying owner"),
        StepSpec(StepName.FETCH, 10, "Loading work units"),
        StepSpec(StepName.VALIDATE, 15, "Validating work units"),
        StepSpec(StepName.CONTEXT, 20, "Loading analysis context"),
        StepSpec(StepName.ANALYZE, 25, "Analyzing work units", progress_end=65),
        StepSpec(StepName.ENRICH, 70, "Loading supplementary data"),
        StepSpec(StepName.PREPARE, 75, "Preparing summary input"),
        StepSpec(StepName.GENERATE, 80, "Generating summary"),
        StepSpec(StepName.SAVE, 95, "Saving summary"),
    ]
)

# Both summary pipelines share one table; they differ only in strategies.
STEP_TABLES: dict[TaskType, StepTable] = {
    TaskType.SUMMARY: SUMMARY_STEPS,
    TaskType.SUMMARY_REFRESH: SUMMARY_STEPS,
}
