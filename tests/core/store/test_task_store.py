# tests/core/store/test_task_store.py
"""Tests for TaskStore: creation, CAS updates, transitions, and housekeeping."""

import pytest

from tests.fixtures.factories import OWNER_ID, summary_params
from waypoint.contracts.enums import StepName, TaskStatus, TaskType
from waypoint.contracts.errors import InvalidTransitionError, TaskNotFoundError, TaskValidationError
from waypoint.core.clock import MockClock
from waypoint.core.store import TaskStore


class TestCreate:
    def test_new_task_is_pending(self, store: TaskStore, clock: MockClock) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        assert task.status == TaskStatus.PENDING
        assert task.progress == 0
        assert task.completed_steps == ()
        assert task.intermediate_data == {}
        assert task.created_at == clock.now()
        assert task.started_at is None

    def test_parameters_are_stored_normalized(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params(forceReprocess=True))

        assert task.parameters["start_date"] == "2026-01-05"
        assert task.parameters["force_reprocess"] is True

    def test_invalid_parameters_are_rejected(self, store: TaskStore) -> None:
        with pytest.raises(TaskValidationError):
            store.create(TaskType.SUMMARY, OWNER_ID, {"startDate": "not-a-date", "endDate": "2026-01-05"})

        assert store.list_by_owner(OWNER_ID) == []

    def test_seeded_checkpoint(self, store: TaskStore) -> None:
        task = store.create(
            TaskType.SUMMARY,
            OWNER_ID,
            summary_params(),
            completed_steps=[StepName.AUTHORIZE, StepName.FETCH],
            intermediate_data={"version": 1, "data": {"units": []}},
            progress=10,
        )

        assert task.completed_steps == (StepName.AUTHORIZE, StepName.FETCH)
        assert task.intermediate_data == {"version": 1, "data": {"units": []}}
        assert task.progress == 10

    def test_get_missing_raises(self, store: TaskStore) -> None:
        assert store.find("nope") is None
        with pytest.raises(TaskNotFoundError):
            store.get("nope")


class TestUpdate:
    """Compare-and-set writes."""

    def test_applies_when_status_matches(self, store: TaskStore, clock: MockClock) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(task.task_id, TaskStatus.RUNNING)
        clock.advance(seconds=5)

        applied = store.update(
            task.task_id,
            expected_status=TaskStatus.RUNNING,
            heartbeat=True,
            progress=40,
            current_step=StepName.ANALYZE,
        )

        updated = store.get(task.task_id)
        assert applied
        assert updated.progress == 40
        assert updated.current_step == StepName.ANALYZE
        assert updated.last_heartbeat_at == clock.now()
        assert updated.updated_at == clock.now()

    def test_skipped_when_status_differs(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        applied = store.update(task.task_id, expected_status=TaskStatus.RUNNING, progress=40)

        assert not applied
        assert store.get(task.task_id).progress == 0

    def test_missing_task_raises(self, store: TaskStore) -> None:
        with pytest.raises(TaskNotFoundError):
            store.update("nope", progress=1)

    def test_unknown_field_raises(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        with pytest.raises(ValueError, match="owner_id"):
            store.update(task.task_id, owner_id="someone-else")

    def test_illegal_status_change_raises(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        with pytest.raises(InvalidTransitionError):
            store.update(task.task_id, expected_status=TaskStatus.PENDING, status=TaskStatus.COMPLETED)

    def test_checkpoint_and_result_round_trip(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(task.task_id, TaskStatus.RUNNING)

        store.update(
            task.task_id,
            expected_status=TaskStatus.RUNNING,
            completed_steps=[StepName.AUTHORIZE],
            intermediate_data={"version": 1, "data": {"unit_results": {"u1": {"words": 3}}}},
            result={"summaryId": "s1"},
        )

        updated = store.get(task.task_id)
        assert updated.completed_steps == (StepName.AUTHORIZE,)
        assert updated.intermediate_data["data"]["unit_results"] == {"u1": {"words": 3}}
        assert updated.result == {"summaryId": "s1"}


class TestTransition:
    def test_follows_the_dag(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        running = store.transition(task.task_id, TaskStatus.RUNNING)
        paused = store.transition(task.task_id, TaskStatus.PAUSED)

        assert running.status == TaskStatus.RUNNING
        assert paused.status == TaskStatus.PAUSED

    def test_rejects_illegal_move(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        with pytest.raises(InvalidTransitionError) as exc_info:
            store.transition(task.task_id, TaskStatus.PAUSED)

        assert exc_info.value.current == TaskStatus.PENDING
        assert store.get(task.task_id).status == TaskStatus.PENDING

    def test_terminal_status_is_final(self, store: TaskStore) -> None:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(task.task_id, TaskStatus.RUNNING)
        store.transition(task.task_id, TaskStatus.CANCELLED)

        for target in (TaskStatus.RUNNING, TaskStatus.PAUSED, TaskStatus.FAILED):
            with pytest.raises(InvalidTransitionError):
                store.transition(task.task_id, target)


class TestQueries:
    def test_list_by_owner_newest_first(self, store: TaskStore, clock: MockClock) -> None:
        first = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        clock.advance(seconds=1)
        second = store.create(TaskType.SUMMARY_REFRESH, OWNER_ID, {"summaryId": "s1", "changedUnitIds": ["u1"]})
        store.create(TaskType.SUMMARY, "someone-else", summary_params())

        assert [t.task_id for t in store.list_by_owner(OWNER_ID)] == [second.task_id, first.task_id]
        assert [t.task_id for t in store.list_by_owner(OWNER_ID, TaskType.SUMMARY)] == [first.task_id]

    def test_get_active_ignores_finished(self, store: TaskStore, clock: MockClock) -> None:
        done = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(done.task_id, TaskStatus.RUNNING)
        store.transition(done.task_id, TaskStatus.FAILED)

        assert store.get_active(OWNER_ID, TaskType.SUMMARY) is None

        clock.advance(seconds=1)
        active = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(active.task_id, TaskStatus.RUNNING)
        store.transition(active.task_id, TaskStatus.PAUSED)

        found = store.get_active(OWNER_ID, TaskType.SUMMARY)
        assert found is not None
        assert found.task_id == active.task_id
        assert store.get_active(OWNER_ID, TaskType.SUMMARY_REFRESH) is None


class TestHousekeeping:
    """Heartbeat timeouts and retention."""

    def _running(self, store: TaskStore) -> str:
        task = store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(task.task_id, TaskStatus.RUNNING)
        store.update(task.task_id, expected_status=TaskStatus.RUNNING, heartbeat=True)
        return task.task_id

    def test_fresh_heartbeat_is_not_stale(self, store: TaskStore, clock: MockClock) -> None:
        task_id = self._running(store)
        clock.advance(seconds=299)

        assert not store.is_stale(store.get(task_id), timeout_seconds=300)
        assert store.fail_stale(timeout_seconds=300) == []

    def test_old_heartbeat_fails_task(self, store: TaskStore, clock: MockClock) -> None:
        task_id = self._running(store)
        clock.advance(seconds=301)

        assert store.fail_stale(timeout_seconds=300) == [task_id]
        failed = store.get(task_id)
        assert failed.status == TaskStatus.FAILED
        assert failed.error == "Task timed out without a heartbeat"

    def test_excluded_tasks_are_left_alone(self, store: TaskStore, clock: MockClock) -> None:
        task_id = self._running(store)
        clock.advance(seconds=301)

        assert store.fail_stale(timeout_seconds=300, exclude={task_id}) == []
        assert store.get(task_id).status == TaskStatus.RUNNING

    def test_paused_tasks_never_go_stale(self, store: TaskStore, clock: MockClock) -> None:
        task_id = self._running(store)
        store.transition(task_id, TaskStatus.PAUSED)
        clock.advance(days=30)

        assert not store.is_stale(store.get(task_id), timeout_seconds=300)
        assert store.fail_stale(timeout_seconds=300) == []

    def test_purge_removes_only_old_finished_tasks(self, store: TaskStore, clock: MockClock) -> None:
        old_done = self._running(store)
        store.transition(old_done, TaskStatus.CANCELLED)
        old_paused = self._running(store)
        store.transition(old_paused, TaskStatus.PAUSED)
        clock.advance(days=8)
        recent_failed = self._running(store)
        store.transition(recent_failed, TaskStatus.FAILED)

        assert store.purge_finished(older_than_days=7) == 1
        assert store.find(old_done) is None
        assert store.find(old_paused) is not None
        assert store.find(recent_failed) is not None
