# tests/conftest.py
"""Shared test fixtures.

Every test gets a fresh database. Single-threaded tests use the in-memory
TaskDB (one shared connection through StaticPool); tests that run the
pipeline on worker threads use ``file_db``, a SQLite file in tmp_path.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from tests.fixtures.factories import make_service, seed_owner
from tests.fixtures.fakes import FakeProcessor, FakeSummarizer, RecordingSink
from waypoint.core.clock import MockClock
from waypoint.core.store import SqlRecordGateway, TaskDB, TaskStore
from waypoint.engine.service import TaskService

# =============================================================================
# Database and store fixtures
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    return MockClock(datetime(2026, 1, 12, 9, 0, tzinfo=UTC))


@pytest.fixture
def db() -> Iterator[TaskDB]:
    """Function-scoped in-memory TaskDB: fresh per test."""
    database = TaskDB.in_memory()
    yield database
    database.close()


@pytest.fixture
def file_db(tmp_path: Path) -> Iterator[TaskDB]:
    """File-backed TaskDB for tests that touch the store from several threads."""
    database = TaskDB.from_url(f"sqlite:///{tmp_path / 'waypoint.db'}")
    yield database
    database.close()


@pytest.fixture
def store(db: TaskDB, clock: MockClock) -> TaskStore:
    return TaskStore(db, clock=clock)


@pytest.fixture
def gateway(db: TaskDB, clock: MockClock) -> SqlRecordGateway:
    return SqlRecordGateway(db, clock=clock)


@pytest.fixture
def unit_ids(gateway: SqlRecordGateway) -> list[str]:
    """Seed the default owner with five units (Mon-Fri) and return their ids."""
    return seed_owner(gateway)


# =============================================================================
# Collaborators and service
# =============================================================================


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service(
    store: TaskStore,
    gateway: SqlRecordGateway,
    processor: FakeProcessor,
    summarizer: FakeSummarizer,
) -> Iterator[TaskService]:
    svc = make_service(store, gateway, processor, summarizer)
    yield svc
    svc.shutdown()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
