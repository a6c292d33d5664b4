"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in waypoint.core.config and are not re-exported here.

Import patterns:
    from waypoint.contracts import Task, TaskStatus, ProgressEvent
    from waypoint.core.config import WaypointSettings
"""

from waypoint.contracts.checkpoint import CHECKPOINT_VERSION, SummaryCheckpoint
from waypoint.contracts.enums import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    FINISHED_STATUSES,
    EventType,
    StepName,
    TaskStatus,
    TaskType,
    UnitFailurePolicy,
    can_transition,
)
from waypoint.contracts.errors import (
    IncompatibleCheckpointError,
    InvalidTransitionError,
    PipelineError,
    StepInterrupted,
    TaskBusyError,
    TaskNotFoundError,
    TaskValidationError,
    TransportError,
    UnitFailureRecord,
    UnitProcessingError,
    WaypointError,
)
from waypoint.contracts.events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    PausedEvent,
    ProgressEvent,
    StepCompleteEvent,
    TaskEvent,
    is_closing,
)
from waypoint.contracts.parameters import (
    RefreshParameters,
    SummaryParameters,
    TaskParameters,
    parse_parameters,
)
from waypoint.contracts.task import Task
from waypoint.contracts.work import (
    RecordGateway,
    Summarizer,
    SummaryRecord,
    UnitResult,
    WorkUnit,
    WorkUnitProcessor,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "CHECKPOINT_VERSION",
    "FINISHED_STATUSES",
    "CancelledEvent",
    "DoneEvent",
    "ErrorEvent",
    "EventType",
    "IncompatibleCheckpointError",
    "InvalidTransitionError",
    "PausedEvent",
    "PipelineError",
    "ProgressEvent",
    "RecordGateway",
    "RefreshParameters",
    "StepCompleteEvent",
    "StepInterrupted",
    "StepName",
    "Summarizer",
    "SummaryCheckpoint",
    "SummaryParameters",
    "SummaryRecord",
    "Task",
    "TaskBusyError",
    "TaskEvent",
    "TaskNotFoundError",
    "TaskParameters",
    "TaskStatus",
    "TaskType",
    "TaskValidationError",
    "TransportError",
    "UnitFailurePolicy",
    "UnitFailureRecord",
    "UnitProcessingError",
    "UnitResult",
    "WaypointError",
    "WorkUnit",
    "WorkUnitProcessor",
    "can_transition",
    "is_closing",
]
