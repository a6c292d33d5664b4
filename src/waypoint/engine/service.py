"""TaskService: the engine's public entry point.

Wires the store, the record gateway, the collaborators, and one step
executor per task type, and exposes everything the API and CLI need:
starting tasks, streaming runs from a bounded worker pool, control
operations, incremental refresh, and maintenance.
"""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Self

from waypoint.clients.http import build_processor, build_summarizer
from waypoint.contracts.enums import TaskStatus, TaskType
from waypoint.contracts.errors import TaskBusyError
from waypoint.contracts.task import Task
from waypoint.contracts.work import RecordGateway, Summarizer, WorkUnitProcessor
from waypoint.core.config import EngineSettings, WaypointSettings
from waypoint.core.events import EventSink, EventStream
from waypoint.core.logging import get_logger
from waypoint.core.store import SqlRecordGateway, TaskDB, TaskStore
from waypoint.engine.analyze import UnitAnalyzer
from waypoint.engine.control import ControlSurface
from waypoint.engine.executors import NewSummarySaveStrategy, StepExecutor, WindowFetchStrategy
from waypoint.engine.incremental import ChangeSet, InPlaceSaveStrategy, RefreshFetchStrategy, detect_changes
from waypoint.engine.retry import RetryConfig, RetryManager
from waypoint.engine.runner import PipelineRunner, TaskLocks

logger = get_logger(__name__)


def build_executors(
    gateway: RecordGateway,
    processor: WorkUnitProcessor,
    summarizer: Summarizer,
    *,
    engine: EngineSettings,
    retry: RetryConfig,
) -> dict[TaskType, StepExecutor]:
    """One executor per task type; both share the analyze strategy."""
    analyzer = UnitAnalyzer(
        processor,
        gateway,
        RetryManager(retry),
        failure_policy=engine.unit_failure_policy,
        max_unit_failures=engine.max_unit_failures,
    )
    return {
        TaskType.SUMMARY: StepExecutor(
            gateway,
            summarizer,
            fetch=WindowFetchStrategy(gateway),
            analyze=analyzer,
            save=NewSummarySaveStrategy(gateway),
        ),
        TaskType.SUMMARY_REFRESH: StepExecutor(
            gateway,
            summarizer,
            fetch=RefreshFetchStrategy(gateway),
            analyze=analyzer,
            save=InPlaceSaveStrategy(gateway),
        ),
    }


class TaskService:
    """Facade over store, runner, and control surface.

    Args:
        store: Task store
        gateway: Domain records
        processor: Work Unit Processor used by the analyze step
        summarizer: Aggregate generator used by the generate step
        engine: Engine behavior settings
        retry: Per-unit retry configuration
        max_workers: Tasks executing at once for streamed runs
    """

    def __init__(
        self,
        store: TaskStore,
        gateway: RecordGateway,
        processor: WorkUnitProcessor,
        summarizer: Summarizer,
        *,
        engine: EngineSettings | None = None,
        retry: RetryConfig | None = None,
        max_workers: int = 4,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._engine = engine if engine is not None else EngineSettings()
        executors = build_executors(
            gateway,
            processor,
            summarizer,
            engine=self._engine,
            retry=retry if retry is not None else RetryConfig(),
        )
        self._locks = TaskLocks()
        self._runner = PipelineRunner(store, executors, locks=self._locks)
        self._control = ControlSurface(
            store, self._runner, heartbeat_timeout_seconds=self._engine.heartbeat_timeout_seconds
        )
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="waypoint-task")

    @classmethod
    def from_settings(cls, settings: WaypointSettings) -> Self:
        """Build a service with a database and HTTP collaborators from settings."""
        db = TaskDB.from_url(settings.database.url, echo=settings.database.echo)
        return cls(
            TaskStore(db),
            SqlRecordGateway(db),
            build_processor(settings.processor),
            build_summarizer(settings.summarizer),
            engine=settings.engine,
            retry=RetryConfig.from_settings(settings.retry),
            max_workers=settings.concurrency.max_workers,
        )

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def runner(self) -> PipelineRunner:
        return self._runner

    # === Tasks ===

    def start(self, task_type: TaskType, owner_id: str, parameters: dict[str, Any]) -> tuple[Task, bool]:
        """Create a task, or return the owner's active task of the same type.

        Returns:
            (task, created)

        Raises:
            TaskValidationError: If parameters are invalid
        """
        active = self._store.get_active(owner_id, task_type)
        if active is not None:
            logger.info("active_task_reused", task_id=active.task_id, owner_id=owner_id, task_type=str(task_type))
            return active, False
        return self._store.create(task_type, owner_id, parameters), True

    def get(self, task_id: str) -> Task:
        return self._control.status(task_id)

    def list_tasks(self, owner_id: str, task_type: TaskType | None = None) -> list[Task]:
        return self._store.list_by_owner(owner_id, task_type)

    def run(self, task_id: str, sink: EventSink | None = None) -> TaskStatus | None:
        """Run a task in the calling thread until it stops."""
        return self._runner.run(task_id, sink)

    def stream(self, task_id: str) -> EventStream:
        """Run a task on the worker pool and return its event stream."""
        stream = EventStream(
            maxsize=self._engine.stream_queue_size,
            put_timeout=self._engine.stream_put_timeout_seconds,
        )
        self.submit(task_id, stream)
        return stream

    def submit(self, task_id: str, stream: EventStream | None = None) -> Future[TaskStatus | None]:
        """Schedule a run on the worker pool."""

        def run() -> TaskStatus | None:
            try:
                return self._runner.run(task_id, stream)
            finally:
                if stream is not None:
                    stream.end()

        future = self._pool.submit(run)
        future.add_done_callback(_log_crash(task_id))
        return future

    # === Control ===

    def pause(self, task_id: str) -> Task:
        return self._control.pause(task_id)

    def cancel(self, task_id: str) -> Task:
        return self._control.cancel(task_id)

    def retry(self, task_id: str) -> Task:
        return self._control.retry(task_id)

    def resume(self, task_id: str, sink: EventSink | None = None) -> tuple[Task, TaskStatus | None]:
        """Resume in the calling thread. Returns the task that ran and how it ended."""
        task = self._control.prepare_resume(task_id)
        return task, self._runner.run(task.task_id, sink)

    def resume_stream(self, task_id: str) -> tuple[Task, EventStream]:
        """Resume on the worker pool. For a FAILED task the returned task is the retry."""
        task = self._control.prepare_resume(task_id)
        return task, self.stream(task.task_id)

    # === Incremental refresh ===

    def detect_changes(self, summary_id: str) -> ChangeSet:
        """Raises PipelineError if the summary does not exist."""
        return detect_changes(self._gateway, summary_id)

    def start_refresh(self, summary_id: str) -> tuple[ChangeSet, Task | None]:
        """Create a summary-refresh task from the detected change set.

        Returns:
            (change set, new task), the task being None when nothing changed

        Raises:
            PipelineError: If the summary does not exist
            TaskBusyError: If the owner already has an active refresh task
        """
        changes = self.detect_changes(summary_id)
        if changes.up_to_date:
            return changes, None
        active = self._store.get_active(changes.owner_id, TaskType.SUMMARY_REFRESH)
        if active is not None:
            raise TaskBusyError(active.task_id)
        task = self._store.create(
            TaskType.SUMMARY_REFRESH,
            changes.owner_id,
            {
                "summary_id": summary_id,
                "unchanged_unit_ids": list(changes.unchanged),
                "changed_unit_ids": list(changes.changed),
            },
        )
        return changes, task

    # === Maintenance ===

    def sweep(self) -> list[str]:
        """Fail RUNNING tasks with a stale heartbeat that do not execute here."""
        return self._store.fail_stale(self._engine.heartbeat_timeout_seconds, exclude=self._locks.held_ids())

    def purge(self, older_than_days: int) -> int:
        return self._store.purge_finished(older_than_days)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def _log_crash(task_id: str) -> Callable[[Future[TaskStatus | None]], None]:
    def callback(future: Future[TaskStatus | None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("task_run_crashed", task_id=task_id, error=str(error), error_type=type(error).__name__)

    return callback
