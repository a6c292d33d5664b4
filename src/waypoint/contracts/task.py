"""Task record as read from the task store."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from waypoint.contracts.enums import ACTIVE_STATUSES, StepName, TaskStatus, TaskType


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class Task:
    """One execution of a task type against an owner.

    Instances are snapshots; the store is the source of truth. Re-read the
    task to observe changes made by the control surface.

    Attributes:
        task_id: Opaque identifier
        task_type: Pipeline the task executes
        owner_id: Owning entity
        status: Lifecycle status
        parameters: Validated parameters in storage (snake_case) form
        current_step: Step most recently started, if any
        progress: Overall percentage, non-decreasing while RUNNING
        completed_steps: Steps checkpointed as complete, in step-table order
        intermediate_data: Versioned checkpoint envelope
        error: Failure message, present only when FAILED
        result: Outcome recorded with COMPLETED
    """

    task_id: str
    task_type: TaskType
    owner_id: str
    status: TaskStatus
    parameters: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    current_step: StepName | None = None
    progress: int = 0
    completed_steps: tuple[StepName, ...] = field(default_factory=tuple)
    intermediate_data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    result: dict[str, Any] | None = None
    started_at: datetime | None = None
    last_heartbeat_at: datetime | None = None
    paused_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_wire(self) -> dict[str, Any]:
        """Status snapshot for API responses. The checkpoint payload is omitted."""
        return {
            "taskId": self.task_id,
            "taskType": str(self.task_type),
            "ownerId": self.owner_id,
            "status": str(self.status),
            "parameters": self.parameters,
            "currentStep": str(self.current_step) if self.current_step is not None else None,
            "progress": self.progress,
            "completedSteps": [str(s) for s in self.completed_steps],
            "error": self.error,
            "result": self.result,
            "createdAt": _iso(self.created_at),
            "startedAt": _iso(self.started_at),
            "updatedAt": _iso(self.updated_at),
            "lastHeartbeatAt": _iso(self.last_heartbeat_at),
            "pausedAt": _iso(self.paused_at),
            "cancelledAt": _iso(self.cancelled_at),
            "completedAt": _iso(self.completed_at),
        }
