# tests/cli/test_waypoint_cli.py
"""Tests for the waypoint typer CLI."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import yaml
from typer.testing import CliRunner

from tests.fixtures.factories import OWNER_ID, WEEK_START, summary_params
from waypoint import __version__
from waypoint.cli import app
from waypoint.contracts.enums import TaskStatus, TaskType
from waypoint.core.clock import MockClock
from waypoint.core.store import SqlRecordGateway, TaskDB, TaskStore

runner = CliRunner()


def _json_lines(output: str) -> list[dict[str, Any]]:
    """JSON objects printed by the command, skipping interleaved log lines."""
    records = []
    for line in output.splitlines():
        if not line.startswith("{"):
            continue
        record = json.loads(line)
        if "event" not in record:
            records.append(record)
    return records


class TestGlobalOptions:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"waypoint version {__version__}" in result.output

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])

        assert "Usage" in result.output

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "nope.env"), "config", "show"])

        assert result.exit_code == 1


class TestConfigShow:
    def test_shows_resolved_settings(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "config", "show"])

        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert data["database"]["url"] == cli_db_url

    def test_missing_config_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "config", "show", "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Settings file not found" in result.output

    def test_invalid_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("server:\n  port: 99999\n")

        result = runner.invoke(app, ["--no-dotenv", "config", "show", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "server.port" in result.output


class TestStartCommands:
    def test_start_creates_task(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        params = json.dumps(summary_params())

        result = runner.invoke(app, ["--no-dotenv", "start", "--owner", OWNER_ID, "--params", params, "-f", "json"])

        assert result.exit_code == 0, result.output
        (record,) = _json_lines(result.output)
        assert record["status"] == "PENDING"
        assert record["existing"] is False
        assert cli_store.get(record["taskId"]).task_type == TaskType.SUMMARY

    def test_start_reuses_active_task(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "start", "-o", OWNER_ID, "-p", json.dumps(summary_params())])

        assert f"Active task already exists: {task.task_id} (PENDING)" in result.output

    def test_start_and_run(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        result = runner.invoke(
            app, ["--no-dotenv", "start", "-o", OWNER_ID, "-p", json.dumps(summary_params()), "--run"]
        )

        assert result.exit_code == 0, result.output
        (task,) = cli_store.list_by_owner(OWNER_ID)
        assert task.status == TaskStatus.COMPLETED

    def test_invalid_parameters_are_rejected(self, cli_store: TaskStore) -> None:
        params = json.dumps(summary_params(days=10))

        result = runner.invoke(app, ["--no-dotenv", "start", "-o", OWNER_ID, "-p", params])

        assert result.exit_code == 1
        assert cli_store.list_by_owner(OWNER_ID) == []

    def test_params_must_be_json_object(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "start", "-o", OWNER_ID, "-p", "[1, 2]"])

        assert result.exit_code == 1
        assert "must be a JSON object" in result.output

    def test_refresh_after_unit_edit(self, cli_db: TaskDB, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        assert runner.invoke(app, ["--no-dotenv", "run", task.task_id]).exit_code == 0
        result = cli_store.get(task.task_id).result
        assert result is not None
        summary_id = str(result["summaryId"])
        later = SqlRecordGateway(cli_db, clock=MockClock(datetime(2100, 1, 1, tzinfo=UTC)))
        later.upsert_unit(cli_unit_ids[1], OWNER_ID, WEEK_START + timedelta(days=1), "Day 2", {"text": "edited"})

        refreshed = runner.invoke(app, ["--no-dotenv", "refresh", summary_id, "--run"])

        assert refreshed.exit_code == 0, refreshed.output
        assert "(1 changed, 4 unchanged)" in refreshed.output
        (refresh_task,) = cli_store.list_by_owner(OWNER_ID, TaskType.SUMMARY_REFRESH)
        assert refresh_task.status == TaskStatus.COMPLETED

    def test_refresh_up_to_date(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        runner.invoke(app, ["--no-dotenv", "run", task.task_id])
        result = cli_store.get(task.task_id).result
        assert result is not None

        refreshed = runner.invoke(app, ["--no-dotenv", "refresh", str(result["summaryId"])])

        assert f"Summary {result['summaryId']} is up to date." in refreshed.output

    def test_refresh_unknown_summary(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "refresh", "missing"])

        assert result.exit_code == 1


class TestTaskCommands:
    def test_run_prints_progress(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "run", task.task_id])

        assert result.exit_code == 0, result.output
        assert "[  5%] authorize: Verifying owner" in result.output
        assert f"Done: {task.task_id}" in result.output
        assert cli_store.get(task.task_id).status == TaskStatus.COMPLETED

    def test_run_json_events(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "run", task.task_id, "--format", "json"])

        events = _json_lines(result.output)
        assert events[0]["type"] == "progress"
        assert events[-1] == {"type": "done", "taskId": task.task_id, "message": "Task completed"}

    def test_failed_run_exits_nonzero(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, "ghost", summary_params())

        result = runner.invoke(app, ["--no-dotenv", "run", task.task_id])

        assert result.exit_code == 1
        assert "Owner not found: ghost" in result.output

    def test_status(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "status", task.task_id, "-f", "json"])

        assert result.exit_code == 0
        (record,) = _json_lines(result.output)
        assert record["taskId"] == task.task_id
        assert record["status"] == "PENDING"

    def test_status_of_unknown_task(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "status", "missing"])

        assert result.exit_code == 1
        assert "Task not found: missing" in result.output

    def test_tasks_lists_owner(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "tasks", "--owner", OWNER_ID, "--type", "summary"])

        assert result.exit_code == 0
        assert task.task_id in result.output

    def test_tasks_empty(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "tasks", "-o", "nobody"])

        assert "No tasks found." in result.output


class TestControlCommands:
    def test_pause_then_resume(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        cli_store.transition(task.task_id, TaskStatus.RUNNING)

        paused = runner.invoke(app, ["--no-dotenv", "pause", task.task_id])
        resumed = runner.invoke(app, ["--no-dotenv", "resume", task.task_id])

        assert f"{task.task_id}: PAUSED" in paused.output
        assert resumed.exit_code == 0, resumed.output
        assert cli_store.get(task.task_id).status == TaskStatus.COMPLETED

    def test_pause_pending_task_fails(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())

        result = runner.invoke(app, ["--no-dotenv", "pause", task.task_id])

        assert result.exit_code == 1
        assert "cannot move from PENDING to PAUSED" in result.output

    def test_cancel(self, cli_store: TaskStore) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        cli_store.transition(task.task_id, TaskStatus.RUNNING)

        result = runner.invoke(app, ["--no-dotenv", "cancel", task.task_id])

        assert f"{task.task_id}: CANCELLED" in result.output

    def test_retry_with_run(self, cli_store: TaskStore, cli_unit_ids: list[str]) -> None:
        task = cli_store.create(TaskType.SUMMARY, OWNER_ID, summary_params())
        cli_store.transition(task.task_id, TaskStatus.RUNNING)
        cli_store.transition(task.task_id, TaskStatus.FAILED, error="boom")

        result = runner.invoke(app, ["--no-dotenv", "retry", task.task_id, "--run"])

        assert result.exit_code == 0, result.output
        assert "Retry task: " in result.output
        retries = [t for t in cli_store.list_by_owner(OWNER_ID) if t.task_id != task.task_id]
        assert [t.status for t in retries] == [TaskStatus.COMPLETED]


class TestMaintenanceCommands:
    def test_sweep(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "sweep"])

        assert result.exit_code == 0
        assert "Timed out 0 task(s)." in result.output

    def test_purge_uses_retention_default(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "purge"])

        assert "Purged 0 finished task(s) older than 7 day(s)." in result.output

    def test_purge_days_option(self, cli_db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "purge", "--days", "30"])

        assert "older than 30 day(s)" in result.output
