# src/waypoint/core/store/tasks.py
"""TaskStore: durable task records.

Every method runs in its own transaction and is durable when it returns,
which is what makes resume-after-crash correct: the runner never proceeds
past a write that has not committed.

Status changes made by the runner are compare-and-set (``expected_status``)
so a concurrent pause or cancel from the control surface is never
overwritten by a run that has not observed it yet.
"""

import json
import uuid
from collections.abc import Collection
from datetime import timedelta
from typing import Any

from sqlalchemy import Row, delete, select, update

from waypoint.contracts.enums import (
    ACTIVE_STATUSES,
    FINISHED_STATUSES,
    StepName,
    TaskStatus,
    TaskType,
    can_transition,
)
from waypoint.contracts.errors import InvalidTransitionError, TaskNotFoundError
from waypoint.contracts.parameters import parse_parameters
from waypoint.contracts.task import Task
from waypoint.core.clock import DEFAULT_CLOCK, Clock, ensure_utc
from waypoint.core.logging import get_logger
from waypoint.core.serialization import checkpoint_dumps, checkpoint_loads
from waypoint.core.store.database import TaskDB
from waypoint.core.store.schema import tasks_table

logger = get_logger(__name__)

# Fields update() accepts, mapped to the column each one is written to.
_UPDATABLE_FIELDS: dict[str, str] = {
    "status": "status",
    "current_step": "current_step",
    "progress": "progress",
    "completed_steps": "completed_steps_json",
    "intermediate_data": "intermediate_json",
    "result": "result_json",
    "error": "error",
    "started_at": "started_at",
    "paused_at": "paused_at",
    "cancelled_at": "cancelled_at",
    "completed_at": "completed_at",
}


def _encode(field_name: str, value: Any) -> Any:
    if field_name == "status":
        return str(TaskStatus(value))
    if field_name == "current_step":
        return str(StepName(value)) if value is not None else None
    if field_name == "completed_steps":
        return json.dumps([str(StepName(s)) for s in value])
    if field_name == "intermediate_data":
        return checkpoint_dumps(value)
    if field_name == "result":
        return checkpoint_dumps(value) if value is not None else None
    return value


def _row_to_task(row: Row[Any]) -> Task:
    created_at = ensure_utc(row.created_at)
    updated_at = ensure_utc(row.updated_at)
    assert created_at is not None and updated_at is not None  # NOT NULL columns
    return Task(
        task_id=row.task_id,
        task_type=TaskType(row.task_type),
        owner_id=row.owner_id,
        status=TaskStatus(row.status),
        parameters=json.loads(row.parameters_json),
        created_at=created_at,
        updated_at=updated_at,
        current_step=StepName(row.current_step) if row.current_step else None,
        progress=row.progress,
        completed_steps=tuple(StepName(s) for s in json.loads(row.completed_steps_json)),
        intermediate_data=checkpoint_loads(row.intermediate_json),
        error=row.error,
        result=checkpoint_loads(row.result_json) if row.result_json is not None else None,
        started_at=ensure_utc(row.started_at),
        last_heartbeat_at=ensure_utc(row.last_heartbeat_at),
        paused_at=ensure_utc(row.paused_at),
        cancelled_at=ensure_utc(row.cancelled_at),
        completed_at=ensure_utc(row.completed_at),
    )


class TaskStore:
    """Single source of truth for task state.

    Example:
        store = TaskStore(TaskDB.in_memory())
        task = store.create(TaskType.SUMMARY, "owner-1", {"startDate": "2026-01-05", "endDate": "2026-01-11"})
        store.update(task.task_id, expected_status=TaskStatus.RUNNING, progress=40)
    """

    def __init__(self, db: TaskDB, *, clock: Clock = DEFAULT_CLOCK) -> None:
        self._db = db
        self._clock = clock

    @property
    def clock(self) -> Clock:
        return self._clock

    def create(
        self,
        task_type: TaskType,
        owner_id: str,
        parameters: dict[str, Any],
        *,
        completed_steps: Collection[StepName] = (),
        intermediate_data: dict[str, Any] | None = None,
        progress: int = 0,
    ) -> Task:
        """Create a PENDING task with validated parameters.

        The keyword-only seed arguments are used when retrying a failed task
        so the new run starts from the failed run's checkpoint.

        Raises:
            TaskValidationError: If parameters are invalid for the task type
        """
        validated = parse_parameters(task_type, parameters)
        now = self._clock.now()
        task_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                tasks_table.insert().values(
                    task_id=task_id,
                    task_type=str(task_type),
                    owner_id=owner_id,
                    status=str(TaskStatus.PENDING),
                    parameters_json=validated.model_dump_json(),
                    current_step=None,
                    progress=progress,
                    completed_steps_json=_encode("completed_steps", completed_steps),
                    intermediate_json=checkpoint_dumps(intermediate_data or {}),
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("task_created", task_id=task_id, task_type=str(task_type), owner_id=owner_id)
        return self.get(task_id)

    def find(self, task_id: str) -> Task | None:
        """Get a task, or None if it does not exist."""
        with self._db.connection() as conn:
            row = conn.execute(select(tasks_table).where(tasks_table.c.task_id == task_id)).first()
        return _row_to_task(row) if row is not None else None

    def get(self, task_id: str) -> Task:
        """Get a task.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        task = self.find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def update(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus | None = None,
        heartbeat: bool = False,
        **changes: Any,
    ) -> bool:
        """Atomically apply a set of field changes in one statement.

        Args:
            task_id: Task to update
            expected_status: Only apply if the task currently has this status
            heartbeat: Also stamp last_heartbeat_at
            **changes: Field values keyed by Task attribute name

        Returns:
            True if applied, False if expected_status did not match

        Raises:
            TaskNotFoundError: If the task does not exist
            ValueError: If a change names an unknown or read-only field
            InvalidTransitionError: If a status change is not legal from expected_status
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")
        if "status" in changes and expected_status is not None:
            target = TaskStatus(changes["status"])
            if target != expected_status and not can_transition(expected_status, target):
                raise InvalidTransitionError(task_id, expected_status, target)

        now = self._clock.now()
        values: dict[str, Any] = {_UPDATABLE_FIELDS[k]: _encode(k, v) for k, v in changes.items()}
        values["updated_at"] = now
        if heartbeat:
            values["last_heartbeat_at"] = now

        stmt = update(tasks_table).where(tasks_table.c.task_id == task_id)
        if expected_status is not None:
            stmt = stmt.where(tasks_table.c.status == str(expected_status))

        with self._db.connection() as conn:
            result = conn.execute(stmt.values(**values))
            if result.rowcount == 1:
                return True
            exists = conn.execute(select(tasks_table.c.task_id).where(tasks_table.c.task_id == task_id)).first()
        if exists is None:
            raise TaskNotFoundError(task_id)
        return False

    def transition(self, task_id: str, target: TaskStatus, **changes: Any) -> Task:
        """Move a task to ``target`` if the status DAG allows it from its current status.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTransitionError: If the move is not allowed, including when
                another writer changed the status between read and write
        """
        current = self.get(task_id).status
        if not can_transition(current, target):
            raise InvalidTransitionError(task_id, current, target)
        if not self.update(task_id, expected_status=current, status=target, **changes):
            raise InvalidTransitionError(task_id, self.get(task_id).status, target)
        logger.info("task_status_changed", task_id=task_id, from_status=str(current), to_status=str(target))
        return self.get(task_id)

    def list_by_owner(self, owner_id: str, task_type: TaskType | None = None) -> list[Task]:
        """All tasks of an owner, newest first."""
        stmt = select(tasks_table).where(tasks_table.c.owner_id == owner_id)
        if task_type is not None:
            stmt = stmt.where(tasks_table.c.task_type == str(task_type))
        stmt = stmt.order_by(tasks_table.c.created_at.desc(), tasks_table.c.task_id)
        with self._db.connection() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_task(row) for row in rows]

    def get_active(self, owner_id: str, task_type: TaskType) -> Task | None:
        """Most recent PENDING, RUNNING, or PAUSED task of this owner and type."""
        stmt = (
            select(tasks_table)
            .where(tasks_table.c.owner_id == owner_id)
            .where(tasks_table.c.task_type == str(task_type))
            .where(tasks_table.c.status.in_([str(s) for s in ACTIVE_STATUSES]))
            .order_by(tasks_table.c.created_at.desc())
            .limit(1)
        )
        with self._db.connection() as conn:
            row = conn.execute(stmt).first()
        return _row_to_task(row) if row is not None else None

    def is_stale(self, task: Task, timeout_seconds: float) -> bool:
        """True if a RUNNING task has not written a heartbeat within the timeout."""
        if task.status != TaskStatus.RUNNING:
            return False
        last_seen = task.last_heartbeat_at or task.started_at or task.updated_at
        return self._clock.now() - last_seen > timedelta(seconds=timeout_seconds)

    def fail_stale(self, timeout_seconds: float, *, exclude: Collection[str] = ()) -> list[str]:
        """Mark RUNNING tasks without a recent heartbeat as FAILED.

        Args:
            timeout_seconds: Heartbeat age after which a run is considered dead
            exclude: Task ids known to be executing in this process

        Returns:
            Ids of the tasks that were failed
        """
        with self._db.connection() as conn:
            rows = conn.execute(select(tasks_table).where(tasks_table.c.status == str(TaskStatus.RUNNING))).fetchall()
        failed: list[str] = []
        for row in rows:
            task = _row_to_task(row)
            if task.task_id in exclude or not self.is_stale(task, timeout_seconds):
                continue
            if self.update(
                task.task_id,
                expected_status=TaskStatus.RUNNING,
                status=TaskStatus.FAILED,
                error="Task timed out without a heartbeat",
            ):
                logger.warning("task_timed_out", task_id=task.task_id, last_heartbeat_at=str(task.last_heartbeat_at))
                failed.append(task.task_id)
        return failed

    def purge_finished(self, older_than_days: int) -> int:
        """Delete COMPLETED, FAILED, and CANCELLED tasks not updated for ``older_than_days``.

        Returns:
            Number of tasks deleted
        """
        cutoff = self._clock.now() - timedelta(days=older_than_days)
        stmt = (
            delete(tasks_table)
            .where(tasks_table.c.status.in_([str(s) for s in FINISHED_STATUSES]))
            .where(tasks_table.c.updated_at < cutoff)
        )
        with self._db.connection() as conn:
            deleted = conn.execute(stmt).rowcount
        logger.info("finished_tasks_purged", count=deleted, older_than_days=older_than_days)
        return deleted
