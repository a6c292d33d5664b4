"""Progress and lifecycle events for one task's event stream.

Events are emitted by the pipeline runner only after the store write they
describe has committed. Each event renders to a ``type``-tagged JSON record
via ``to_wire()``; the HTTP stream writes one record per line.
"""

from dataclasses import dataclass, field
from typing import Any

from waypoint.contracts.enums import EventType, StepName


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Emitted when a step starts and as a multi-unit step advances.

    Attributes:
        task_id: Task the event belongs to
        step: Step currently executing
        progress: Overall progress percentage (0-100)
        message: Human-readable status line
        data: Optional step-specific detail (e.g. current unit)
    """

    task_id: str
    step: StepName
    progress: int
    message: str
    data: dict[str, Any] | None = None

    type = EventType.PROGRESS

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "type": str(self.type),
            "step": str(self.step),
            "progress": self.progress,
            "message": self.message,
        }
        if self.data is not None:
            wire["data"] = self.data
        return wire


@dataclass(frozen=True, slots=True)
class StepCompleteEvent:
    """Emitted after a step's completion has been checkpointed."""

    task_id: str
    step: StepName
    message: str
    completed_steps: tuple[StepName, ...] = field(default_factory=tuple)

    type = EventType.STEP_COMPLETE

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "step": str(self.step),
            "message": self.message,
            "completedSteps": [str(s) for s in self.completed_steps],
        }


@dataclass(frozen=True, slots=True)
class PausedEvent:
    """Emitted when the runner observes a pause request and stops."""

    task_id: str
    message: str = "Task paused"

    type = EventType.PAUSED

    def to_wire(self) -> dict[str, Any]:
        return {"type": str(self.type), "message": self.message, "canResume": True}


@dataclass(frozen=True, slots=True)
class DoneEvent:
    """Emitted once the task has been persisted as COMPLETED."""

    task_id: str
    message: str = "Task completed"

    type = EventType.DONE

    def to_wire(self) -> dict[str, Any]:
        return {"type": str(self.type), "taskId": self.task_id, "message": self.message}


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Emitted when a run cannot continue.

    Attributes:
        recoverable: True when the task kept a checkpoint a retry can use
    """

    task_id: str
    message: str
    recoverable: bool

    type = EventType.ERROR

    def to_wire(self) -> dict[str, Any]:
        return {"type": str(self.type), "message": self.message, "recoverable": self.recoverable}


@dataclass(frozen=True, slots=True)
class CancelledEvent:
    """Emitted when the runner observes a cancellation and stops."""

    task_id: str

    type = EventType.CANCELLED

    def to_wire(self) -> dict[str, Any]:
        return {"type": str(self.type)}


TaskEvent = ProgressEvent | StepCompleteEvent | PausedEvent | DoneEvent | ErrorEvent | CancelledEvent

# Event kinds after which a stream has nothing more to say.
CLOSING_EVENT_TYPES: frozenset[EventType] = frozenset(
    {EventType.DONE, EventType.ERROR, EventType.CANCELLED, EventType.PAUSED}
)


def is_closing(event: TaskEvent) -> bool:
    """Return True if the event ends an event stream."""
    return event.type in CLOSING_EVENT_TYPES
