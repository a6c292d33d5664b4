# tests/cli/conftest.py
"""Shared fixtures for CLI tests.

Every command reads its database from WAYPOINT_DATABASE__URL, pointed at a
file in tmp_path, so the CLI and the test see the same records.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from tests.fixtures.factories import seed_owner
from tests.fixtures.fakes import FakeProcessor, FakeSummarizer
from waypoint.core.store import SqlRecordGateway, TaskDB, TaskStore


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """The CLI configures logging onto CliRunner's stream; undo that afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def fake_collaborators(monkeypatch: pytest.MonkeyPatch) -> None:
    """Commands build their service from settings; swap the HTTP clients for fakes."""
    monkeypatch.setattr("waypoint.engine.service.build_processor", lambda settings: FakeProcessor())
    monkeypatch.setattr("waypoint.engine.service.build_summarizer", lambda settings: FakeSummarizer())


@pytest.fixture
def cli_db_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("WAYPOINT_DATABASE__URL", url)
    return url


@pytest.fixture
def cli_db(cli_db_url: str) -> Iterator[TaskDB]:
    db = TaskDB.from_url(cli_db_url)
    yield db
    db.close()


@pytest.fixture
def cli_store(cli_db: TaskDB) -> TaskStore:
    return TaskStore(cli_db)


@pytest.fixture
def cli_unit_ids(cli_db: TaskDB) -> list[str]:
    return seed_owner(SqlRecordGateway(cli_db))
