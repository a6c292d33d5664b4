"""Exception taxonomy and error payload schemas.

Four failure classes matter to the engine:

- TaskValidationError: bad parameters, raised at creation; nothing is persisted.
- UnitProcessingError: one work unit failed; the step's failure policy decides.
- PipelineError: a step cannot complete; fatal to the task, checkpoint kept.
- TransportError: event delivery failed; task state is unaffected.

The remaining exceptions report misuse of the control surface or store.
"""

from typing import NotRequired, TypedDict

from waypoint.contracts.enums import TaskStatus


class UnitFailureRecord(TypedDict):
    """Schema for a failed unit entry in the analyze checkpoint."""

    error: str
    type: str
    attempts: NotRequired[int]


class WaypointError(Exception):
    """Base class for all waypoint errors."""


class TaskValidationError(WaypointError):
    """Raised when task parameters fail validation at creation time."""


class TaskNotFoundError(WaypointError):
    """Raised when a task id does not exist in the store."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidTransitionError(WaypointError):
    """Raised when a control operation targets a status the DAG forbids."""

    def __init__(self, task_id: str, current: TaskStatus, target: TaskStatus) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id} cannot move from {current} to {target}")


class TaskBusyError(WaypointError):
    """Raised when a pipeline run is already executing for the same task id."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} is already executing")


class UnitProcessingError(WaypointError):
    """Raised by a Work Unit Processor when one unit cannot be processed.

    Attributes:
        unit_id: The unit that failed
        cause: Human-readable cause
        retryable: Whether another attempt may succeed (timeouts, 429, 5xx)
    """

    def __init__(self, unit_id: str, cause: str, *, retryable: bool = False) -> None:
        self.unit_id = unit_id
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"Unit {unit_id} failed: {cause}")


class PipelineError(WaypointError):
    """Raised when a step cannot complete. Fatal to the task."""


class IncompatibleCheckpointError(PipelineError):
    """Raised when a stored checkpoint has a schema version this code cannot read."""


class TransportError(WaypointError):
    """Raised when an event cannot be delivered to its subscriber."""


# =============================================================================
# Control Flow Exceptions
# =============================================================================


class StepInterrupted(Exception):
    """Raised by a step that observed a pause or cancel between work units.

    This is NOT an error condition. The runner catches it, leaves the step
    out of completed_steps, and stops the loop. Everything the step finished
    before raising has already been checkpointed.
    """

    def __init__(self, status: TaskStatus) -> None:
        self.status = status
        super().__init__(f"Step interrupted by {status}")
