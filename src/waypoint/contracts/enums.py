"""Status codes, kinds, and step names used across subsystem boundaries.

Task status values are stored in the database (tasks.status) and appear
verbatim on the wire, so they keep the upper-case form callers already see.
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Lifecycle status of a task.

    Stored in the database (tasks.status).
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TaskType(StrEnum):
    """Kind of pipeline a task executes.

    Stored in the database (tasks.task_type).
    """

    SUMMARY = "summary"
    SUMMARY_REFRESH = "summary-refresh"


class StepName(StrEnum):
    """Closed set of pipeline step names.

    Stored in the database (tasks.current_step, tasks.completed_steps_json).
    Executors dispatch on this enum with an exhaustive match, so adding a
    member without a handler is caught by the type checker.
    """

    AUTHORIZE = "authorize"
    FETCH = "fetch"
    VALIDATE = "validate"
    CONTEXT = "context"
    ANALYZE = "analyze"
    ENRICH = "enrich"
    PREPARE = "prepare"
    GENERATE = "generate"
    SAVE = "save"


class EventType(StrEnum):
    """Discriminator for events on a task's event stream."""

    PROGRESS = "progress"
    STEP_COMPLETE = "stepComplete"
    PAUSED = "paused"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class UnitFailurePolicy(StrEnum):
    """What a multi-unit step does when one work unit fails.

    Values:
        SKIP: Record the failure in the checkpoint and continue with the next unit
        ABORT: Fail the step, which fails the task
    """

    SKIP = "skip"
    ABORT = "abort"


ACTIVE_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.PAUSED})

FINISHED_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

# FAILED -> CANCELLED retires a failed task's checkpoint so it can no longer be retried.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset(
        {
            TaskStatus.PAUSED,
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.CANCELLED,
        }
    ),
    TaskStatus.PAUSED: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset({TaskStatus.CANCELLED}),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return True if ``current -> target`` is a legal status change."""
    return target in ALLOWED_TRANSITIONS[current]
