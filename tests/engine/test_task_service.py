# tests/engine/test_task_service.py
"""Tests for TaskService wiring: start, streaming on the worker pool, maintenance."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from tests.fixtures.factories import OWNER_ID, make_service, seed_owner, summary_params
from tests.fixtures.fakes import FakeProcessor, FakeSummarizer
from waypoint.contracts.enums import TaskStatus, TaskType
from waypoint.contracts.events import DoneEvent, ProgressEvent
from waypoint.core.clock import MockClock
from waypoint.core.config import ConcurrencySettings, DatabaseSettings, WaypointSettings
from waypoint.core.store import SqlRecordGateway, TaskDB, TaskStore
from waypoint.engine.service import TaskService


@pytest.fixture
def threaded_service(file_db: TaskDB) -> Iterator[TaskService]:
    """Service over a file database so worker threads each get a connection."""
    store = TaskStore(file_db)
    gateway = SqlRecordGateway(file_db)
    seed_owner(gateway)
    seed_owner(gateway, "owner-2")
    svc = make_service(store, gateway, FakeProcessor(), FakeSummarizer(), max_workers=2)
    yield svc
    svc.shutdown()


class TestStart:
    def test_creates_task(self, service: TaskService) -> None:
        task, created = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())

        assert created
        assert task.status == TaskStatus.PENDING

    def test_reuses_active_task(self, service: TaskService) -> None:
        first, _ = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())

        second, created = service.start(TaskType.SUMMARY, OWNER_ID, summary_params(days=3))

        assert not created
        assert second.task_id == first.task_id

    def test_finished_task_is_not_reused(self, service: TaskService, unit_ids: list[str]) -> None:
        first, _ = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
        service.run(first.task_id)

        second, created = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())

        assert created
        assert second.task_id != first.task_id

    def test_list_tasks_filters_by_type(self, service: TaskService, clock: MockClock) -> None:
        summary, _ = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
        clock.advance(seconds=1)
        refresh, _ = service.start(TaskType.SUMMARY_REFRESH, OWNER_ID, {"summaryId": "s1", "changedUnitIds": ["u1"]})

        assert [t.task_id for t in service.list_tasks(OWNER_ID)] == [refresh.task_id, summary.task_id]
        assert [t.task_id for t in service.list_tasks(OWNER_ID, TaskType.SUMMARY)] == [summary.task_id]


class TestStreaming:
    def test_stream_delivers_every_event(self, threaded_service: TaskService) -> None:
        task, _ = threaded_service.start(TaskType.SUMMARY, OWNER_ID, summary_params())

        events = list(threaded_service.stream(task.task_id))

        assert isinstance(events[-1], DoneEvent)
        progress = [e.progress for e in events if isinstance(e, ProgressEvent)]
        assert progress == sorted(progress)
        assert threaded_service.get(task.task_id).status == TaskStatus.COMPLETED

    def test_tasks_of_different_owners_run_in_parallel(self, threaded_service: TaskService) -> None:
        first, _ = threaded_service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
        second, _ = threaded_service.start(TaskType.SUMMARY, "owner-2", summary_params())

        futures = [threaded_service.submit(first.task_id), threaded_service.submit(second.task_id)]

        assert [f.result(timeout=30) for f in futures] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]

    def test_stream_ends_when_task_is_missing(self, threaded_service: TaskService) -> None:
        events = list(threaded_service.stream("missing"))

        assert [str(e.type) for e in events] == ["error"]


class TestMaintenance:
    def test_sweep_fails_stale_tasks(self, service: TaskService, store: TaskStore, clock: MockClock) -> None:
        task, _ = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
        store.transition(task.task_id, TaskStatus.RUNNING)
        clock.advance(seconds=600)

        assert service.sweep() == [task.task_id]
        assert store.get(task.task_id).status == TaskStatus.FAILED

    def test_purge(self, service: TaskService, store: TaskStore, clock: MockClock, unit_ids: list[str]) -> None:
        task, _ = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
        service.run(task.task_id)
        clock.advance(days=10)

        assert service.purge(7) == 1
        assert store.find(task.task_id) is None


class TestFromSettings:
    def test_builds_http_collaborators(self, tmp_path: Path) -> None:
        settings = WaypointSettings(
            database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'svc.db'}"),
            concurrency=ConcurrencySettings(max_workers=1),
        )

        service = TaskService.from_settings(settings)
        try:
            task, created = service.start(TaskType.SUMMARY, OWNER_ID, summary_params())
            assert created
            assert service.get(task.task_id).status == TaskStatus.PENDING
        finally:
            service.shutdown()
