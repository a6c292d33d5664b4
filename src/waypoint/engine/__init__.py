"""Waypoint engine: resumable, checkpointed task pipelines.

This module provides the execution engine:
- PipelineRunner: the step loop with per-step checkpoints
- ControlSurface: pause, resume, cancel, retry
- StepExecutor: what each step does, with fetch/analyze/save strategies
- UnitAnalyzer: the interruptible multi-unit analyze step
- RetryManager: retry logic with tenacity
- TaskService: wiring and the entry point for the API and CLI

Example:
    from waypoint.core.config import load_settings
    from waypoint.contracts import TaskType
    from waypoint.engine import TaskService

    service = TaskService.from_settings(load_settings())
    task, _ = service.start(TaskType.SUMMARY, "owner-1", {"startDate": "2026-01-05", "endDate": "2026-01-11"})
    service.run(task.task_id)
"""

from waypoint.engine.analyze import UnitAnalyzer
from waypoint.engine.control import ControlSurface
from waypoint.engine.executors import NewSummarySaveStrategy, StepExecutor, WindowFetchStrategy
from waypoint.engine.incremental import (
    ChangeSet,
    InPlaceSaveStrategy,
    RefreshFetchStrategy,
    RefreshPlan,
    detect_changes,
    plan_refresh,
)
from waypoint.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from waypoint.engine.runner import PipelineRunner, TaskLocks
from waypoint.engine.service import TaskService, build_executors
from waypoint.engine.steps import STEP_TABLES, SUMMARY_STEPS, StepSpec, StepTable

__all__ = [
    "STEP_TABLES",
    "SUMMARY_STEPS",
    "ChangeSet",
    "ControlSurface",
    "InPlaceSaveStrategy",
    "MaxRetriesExceeded",
    "NewSummarySaveStrategy",
    "PipelineRunner",
    "RefreshFetchStrategy",
    "RefreshPlan",
    "RetryConfig",
    "RetryManager",
    "StepExecutor",
    "StepSpec",
    "StepTable",
    "TaskLocks",
    "TaskService",
    "UnitAnalyzer",
    "WindowFetchStrategy",
    "build_executors",
    "detect_changes",
    "plan_refresh",
]
