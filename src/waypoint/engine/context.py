"""Per-step execution context handed to step strategies by the runner."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from waypoint.contracts.checkpoint import SummaryCheckpoint
from waypoint.contracts.parameters import TaskParameters
from waypoint.engine.steps import StepSpec

# (progress, message, data) -> None; persists the checkpoint, then emits progress.
CheckpointFn = Callable[[int, str, dict[str, Any] | None], None]


@dataclass
class StepContext:
    """What a step may see and do.

    A step reads its task's parameters, mutates ``checkpoint`` in place, and
    talks to the runner only through two hooks:

    - check_control(): re-reads the task status from the store and raises
      StepInterrupted if a pause or cancel is pending.
    - checkpoint_progress(): durably writes the checkpoint mid-step, then
      emits a progress event. Raises StepInterrupted if the task was
      paused (the write still lands) or cancelled (the write is skipped).

    No pause or cancel state is held here; the store is asked every time.
    """

    task_id: str
    owner_id: str
    parameters: TaskParameters
    checkpoint: SummaryCheckpoint
    step: StepSpec
    _check_control: Callable[[], None]
    _checkpoint: CheckpointFn

    def check_control(self) -> None:
        self._check_control()

    def checkpoint_progress(self, progress: int, message: str, data: dict[str, Any] | None = None) -> None:
        self._checkpoint(progress, message, data)
