"""PipelineRunner: the resumable step loop.

For one task id the runner:

1. loads the task (a missing task yields an ``error`` event);
2. walks the step table, skipping steps already in completed_steps;
3. before each step re-reads the status and stops on PAUSED or CANCELLED;
4. persists current_step/progress, then emits ``progress``;
5. runs the step, then persists completed_steps and the checkpoint in one
   update, then emits ``stepComplete``;
6. on a step failure persists FAILED with the message and emits ``error``;
7. after the last step persists COMPLETED/100 and emits ``done``.

Every event is emitted after the write it describes has committed. Every
write the runner makes is compare-and-set against RUNNING: if a pause or
cancel landed in between, the runner notices on the failed write instead
of overwriting it. Work finished before a pause is still persisted (pause
preserves); nothing is written after a cancel (cancel discards).

Re-running the loop is always safe. Completed steps are no-ops, which is
what makes resume, crash recovery, and retry the same operation.
"""

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from waypoint.contracts.checkpoint import SummaryCheckpoint
from waypoint.contracts.enums import StepName, TaskStatus, TaskType
from waypoint.contracts.errors import (
    PipelineError,
    StepInterrupted,
    TaskBusyError,
    TaskValidationError,
    TransportError,
)
from waypoint.contracts.events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    PausedEvent,
    ProgressEvent,
    StepCompleteEvent,
    TaskEvent,
)
from waypoint.contracts.parameters import parse_parameters
from waypoint.contracts.task import Task
from waypoint.core.events import EventSink, NullEventBus
from waypoint.core.logging import get_logger, task_log_context
from waypoint.core.store.tasks import TaskStore
from waypoint.engine.context import StepContext
from waypoint.engine.executors import StepExecutor
from waypoint.engine.steps import STEP_TABLES, StepSpec, StepTable

logger = get_logger(__name__)


class TaskLocks:
    """Per-task mutex registry.

    At most one control loop executes for a task id at a time. Acquisition
    never blocks: a second run for a busy task fails fast with TaskBusyError.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, task_id: str) -> Iterator[None]:
        with self._guard:
            if task_id in self._held:
                raise TaskBusyError(task_id)
            self._held.add(task_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(task_id)

    def is_held(self, task_id: str) -> bool:
        with self._guard:
            return task_id in self._held

    def held_ids(self) -> frozenset[str]:
        with self._guard:
            return frozenset(self._held)


@dataclass
class _RunState:
    """Mutable bookkeeping for one invocation of the loop."""

    task: Task
    sink: EventSink
    checkpoint: SummaryCheckpoint
    progress: int
    completed: list[StepName] = field(default_factory=list)


class PipelineRunner:
    """Executes tasks step by step against the task store.

    Args:
        store: Task store (single source of truth for status and checkpoint)
        executors: Step executor per task type
        step_tables: Step table per task type
        locks: Shared per-task mutex registry
    """

    def __init__(
        self,
        store: TaskStore,
        executors: Mapping[TaskType, StepExecutor],
        *,
        step_tables: Mapping[TaskType, StepTable] = STEP_TABLES,
        locks: TaskLocks | None = None,
    ) -> None:
        self._store = store
        self._executors = executors
        self._step_tables = step_tables
        self._locks = locks if locks is not None else TaskLocks()

    @property
    def locks(self) -> TaskLocks:
        return self._locks

    def run(self, task_id: str, sink: EventSink | None = None) -> TaskStatus | None:
        """Run (or continue) a task until it completes, fails, pauses, or is cancelled.

        A task that is already PAUSED, FAILED, CANCELLED, or COMPLETED is not
        executed; its closing event is replayed instead.

        Returns:
            The status the run ended with, or None if the task does not exist
            or is already executing elsewhere in this process
        """
        sink = sink if sink is not None else NullEventBus()
        try:
            with self._locks.hold(task_id), task_log_context(task_id):
                return self._run_locked(task_id, sink)
        except TaskBusyError as e:
            logger.warning("task_busy", task_id=task_id)
            _emit(sink, ErrorEvent(task_id=task_id, message=str(e), recoverable=True))
            return None

    def _run_locked(self, task_id: str, sink: EventSink) -> TaskStatus | None:
        task = self._store.find(task_id)
        if task is None:
            _emit(sink, ErrorEvent(task_id=task_id, message=f"Task not found: {task_id}", recoverable=False))
            return None

        if task.status == TaskStatus.PENDING:
            now = self._store.clock.now()
            if not self._store.update(
                task_id, expected_status=TaskStatus.PENDING, heartbeat=True, status=TaskStatus.RUNNING, started_at=now
            ):
                return self._stop(task_id, self._store.get(task_id).status, sink)
            logger.info("task_started", task_id=task_id, task_type=str(task.task_type))
        elif task.status != TaskStatus.RUNNING:
            return self._stop(task_id, task.status, sink)
        else:
            logger.info("task_continuing", task_id=task_id, completed_steps=[str(s) for s in task.completed_steps])

        table = self._step_tables[task.task_type]
        executor = self._executors[task.task_type]
        try:
            parameters = parse_parameters(task.task_type, task.parameters)
            checkpoint = executor.load_checkpoint(task.intermediate_data)
        except (PipelineError, TaskValidationError) as e:
            return self._fail(task_id, str(e), sink)

        state = _RunState(
            task=task,
            sink=sink,
            checkpoint=checkpoint,
            progress=task.progress,
            completed=list(task.completed_steps),
        )

        for spec in table:
            if spec.name in state.completed:
                continue

            status = self._store.get(task_id).status
            if status != TaskStatus.RUNNING:
                return self._stop(task_id, status, sink)

            progress = max(state.progress, spec.progress_weight)
            status = self._write(task_id, preserve_on_pause=False, current_step=spec.name, progress=progress)
            if status != TaskStatus.RUNNING:
                return self._stop(task_id, status, sink)
            state.progress = progress
            _emit(sink, ProgressEvent(task_id=task_id, step=spec.name, progress=progress, message=spec.message))

            ctx = StepContext(
                task_id=task_id,
                owner_id=task.owner_id,
                parameters=parameters,
                checkpoint=checkpoint,
                step=spec,
                _check_control=lambda: self._check_control(task_id),
                _checkpoint=lambda p, m, d, spec=spec: self._checkpoint_mid_step(state, spec, p, m, d),
            )
            log = logger.bind(task_id=task_id, step=str(spec.name))
            try:
                executor.execute(spec.name, ctx)
            except StepInterrupted as e:
                log.info("step_interrupted", status=str(e.status))
                return self._stop(task_id, e.status, sink)
            except PipelineError as e:
                log.warning("step_failed", error=str(e))
                return self._fail(task_id, str(e), sink)
            except Exception as e:
                # Unexpected bug in a step: still record it, the checkpoint stays usable
                log.exception("step_crashed")
                return self._fail(task_id, f"{type(e).__name__}: {e}", sink)

            state.completed.append(spec.name)
            completed_steps = table.order(state.completed)
            status = self._write(
                task_id,
                preserve_on_pause=True,
                completed_steps=completed_steps,
                intermediate_data=checkpoint.to_payload(),
            )
            if status not in (TaskStatus.RUNNING, TaskStatus.PAUSED):
                return self._stop(task_id, status, sink)
            log.info("step_completed")
            _emit(
                sink,
                StepCompleteEvent(
                    task_id=task_id,
                    step=spec.name,
                    message=f"{spec.message}: done",
                    completed_steps=completed_steps,
                ),
            )
            if status == TaskStatus.PAUSED:
                return self._stop(task_id, status, sink)

        now = self._store.clock.now()
        if not self._store.update(
            task_id,
            expected_status=TaskStatus.RUNNING,
            heartbeat=True,
            status=TaskStatus.COMPLETED,
            progress=100,
            completed_at=now,
            result=executor.outcome(checkpoint),
        ):
            return self._stop(task_id, self._store.get(task_id).status, sink)
        logger.info("task_completed", task_id=task_id)
        _emit(sink, DoneEvent(task_id=task_id))
        return TaskStatus.COMPLETED

    def _write(self, task_id: str, *, preserve_on_pause: bool, **changes: Any) -> TaskStatus:
        """Persist changes if the task is still RUNNING.

        With ``preserve_on_pause`` the changes are also persisted when the task
        was paused meanwhile, because pausing keeps finished work.

        Returns:
            The status the task had; the write was applied if that is RUNNING,
            or PAUSED with preserve_on_pause
        """
        if self._store.update(task_id, expected_status=TaskStatus.RUNNING, heartbeat=True, **changes):
            return TaskStatus.RUNNING
        status = self._store.get(task_id).status
        if status == TaskStatus.PAUSED and preserve_on_pause:
            if self._store.update(task_id, expected_status=TaskStatus.PAUSED, **changes):
                return TaskStatus.PAUSED
            status = self._store.get(task_id).status
        return status

    def _check_control(self, task_id: str) -> None:
        status = self._store.get(task_id).status
        if status != TaskStatus.RUNNING:
            raise StepInterrupted(status)

    def _checkpoint_mid_step(
        self,
        state: _RunState,
        spec: StepSpec,
        progress: int,
        message: str,
        data: dict[str, Any] | None,
    ) -> None:
        task_id = state.task.task_id
        progress = max(state.progress, progress)
        status = self._write(
            task_id,
            preserve_on_pause=True,
            progress=progress,
            intermediate_data=state.checkpoint.to_payload(),
        )
        if status in (TaskStatus.RUNNING, TaskStatus.PAUSED):
            state.progress = progress
            _emit(state.sink, ProgressEvent(task_id=task_id, step=spec.name, progress=progress, message=message, data=data))
        if status != TaskStatus.RUNNING:
            raise StepInterrupted(status)

    def _fail(self, task_id: str, message: str, sink: EventSink) -> TaskStatus:
        if self._store.update(
            task_id, expected_status=TaskStatus.RUNNING, heartbeat=True, status=TaskStatus.FAILED, error=message
        ):
            logger.error("task_failed", task_id=task_id, error=message)
            _emit(sink, ErrorEvent(task_id=task_id, message=message, recoverable=True))
            return TaskStatus.FAILED
        # Paused or cancelled while the step was failing: that request wins
        return self._stop(task_id, self._store.get(task_id).status, sink)

    def _stop(self, task_id: str, status: TaskStatus, sink: EventSink) -> TaskStatus:
        """Emit the closing event for a run that ends without completing here."""
        event: TaskEvent
        match status:
            case TaskStatus.PAUSED:
                logger.info("task_paused", task_id=task_id)
                event = PausedEvent(task_id=task_id)
            case TaskStatus.CANCELLED:
                logger.info("task_cancelled", task_id=task_id)
                event = CancelledEvent(task_id=task_id)
            case TaskStatus.COMPLETED:
                event = DoneEvent(task_id=task_id)
            case TaskStatus.FAILED:
                error = self._store.get(task_id).error or "Task failed"
                event = ErrorEvent(task_id=task_id, message=error, recoverable=True)
            case TaskStatus.PENDING | TaskStatus.RUNNING:
                event = ErrorEvent(task_id=task_id, message=f"Task stopped unexpectedly in status {status}", recoverable=True)
        _emit(sink, event)
        return status


def _emit(sink: EventSink, event: TaskEvent) -> None:
    """Deliver an event; delivery failures never affect the run."""
    try:
        sink.emit(event)
    except TransportError as e:
        logger.warning("event_delivery_failed", task_id=event.task_id, event_type=str(event.type), error=str(e))
