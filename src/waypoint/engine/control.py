"""Control surface: pause, resume, cancel, retry, and status reads.

Pause and cancel are requests. They only write the task status; a running
loop observes them at its next check (before each unit, before each step,
and on every compare-and-set write).
"""

from waypoint.contracts.enums import TaskStatus
from waypoint.contracts.errors import InvalidTransitionError, TaskBusyError
from waypoint.contracts.task import Task
from waypoint.core.events import EventSink
from waypoint.core.logging import get_logger
from waypoint.core.store.tasks import TaskStore
from waypoint.engine.runner import PipelineRunner

logger = get_logger(__name__)


class ControlSurface:
    """Task lifecycle operations on top of the store and the runner.

    Args:
        store: Task store
        runner: Runner used by resume(); its locks tell which tasks execute here
        heartbeat_timeout_seconds: Heartbeat age after which a RUNNING task
            that is not executing in this process is failed on read
    """

    def __init__(self, store: TaskStore, runner: PipelineRunner, *, heartbeat_timeout_seconds: float = 300.0) -> None:
        self._store = store
        self._runner = runner
        self._heartbeat_timeout = heartbeat_timeout_seconds

    def status(self, task_id: str) -> Task:
        """Current task state.

        A RUNNING task whose heartbeat went stale, and which no local run
        holds, is marked FAILED first so it can be retried.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        task = self._store.get(task_id)
        if (
            task.status == TaskStatus.RUNNING
            and not self._runner.locks.is_held(task_id)
            and self._store.is_stale(task, self._heartbeat_timeout)
        ):
            if self._store.update(
                task_id,
                expected_status=TaskStatus.RUNNING,
                status=TaskStatus.FAILED,
                error="Task timed out without a heartbeat",
            ):
                logger.warning("task_timed_out", task_id=task_id)
            task = self._store.get(task_id)
        return task

    def pause(self, task_id: str) -> Task:
        """Request a pause. Only RUNNING tasks can be paused.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTransitionError: If the task is not RUNNING
        """
        return self._store.transition(task_id, TaskStatus.PAUSED, paused_at=self._store.clock.now())

    def cancel(self, task_id: str) -> Task:
        """Cancel a RUNNING, PAUSED, or FAILED task.

        Cancelling an already cancelled task succeeds without a write.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTransitionError: If the task is PENDING or COMPLETED
        """
        task = self._store.get(task_id)
        if task.status == TaskStatus.CANCELLED:
            return task
        return self._store.transition(task_id, TaskStatus.CANCELLED, cancelled_at=self._store.clock.now())

    def prepare_resume(self, task_id: str) -> Task:
        """Make a task runnable again and return the task to run.

        PAUSED tasks go back to RUNNING. FAILED tasks are retried, which
        returns the new task.

        Raises:
            TaskNotFoundError: If the task does not exist
            TaskBusyError: If the loop that was paused has not unwound yet
            InvalidTransitionError: If the task is neither PAUSED nor FAILED
        """
        task = self._store.get(task_id)
        if task.status == TaskStatus.FAILED:
            return self.retry(task_id)
        if task.status != TaskStatus.PAUSED:
            raise InvalidTransitionError(task_id, task.status, TaskStatus.RUNNING)
        if self._runner.locks.is_held(task_id):
            raise TaskBusyError(task_id)
        return self._store.transition(task_id, TaskStatus.RUNNING)

    def resume(self, task_id: str, sink: EventSink | None = None) -> TaskStatus | None:
        """Resume a task and run it to its next stop in the calling thread."""
        task = self.prepare_resume(task_id)
        return self._runner.run(task.task_id, sink)

    def retry(self, task_id: str) -> Task:
        """Start a new task from a FAILED task's last good checkpoint.

        The failed task keeps its status and error. The new task inherits
        completed steps, intermediate data, and progress, so completed steps
        are not executed again.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTransitionError: If the task is not FAILED
        """
        failed = self._store.get(task_id)
        if failed.status != TaskStatus.FAILED:
            raise InvalidTransitionError(task_id, failed.status, TaskStatus.PENDING)
        task = self._store.create(
            failed.task_type,
            failed.owner_id,
            failed.parameters,
            completed_steps=failed.completed_steps,
            intermediate_data=failed.intermediate_data,
            progress=failed.progress,
        )
        logger.info("task_retried", task_id=task.task_id, retry_of=task_id)
        return task
