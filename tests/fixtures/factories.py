# tests/fixtures/factories.py
"""Test-only factories: seeded domain records, parameters, and services.

Usage:
    from tests.fixtures.factories import OWNER_ID, seed_owner, summary_params
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from waypoint.contracts.work import Summarizer, WorkUnitProcessor
from waypoint.core.config import EngineSettings
from waypoint.core.store import SqlRecordGateway, TaskStore
from waypoint.engine.retry import RetryConfig
from waypoint.engine.service import TaskService

OWNER_ID = "owner-1"
WEEK_START = date(2026, 1, 5)
OWNER_CONTEXT = {"guidelines": "Summarize the week in plain language."}


def unit_text(index: int) -> str:
    """Text of the index-th seeded unit (1-based); it has ``index`` words."""
    return " ".join(["word"] * index)


def seed_owner(
    gateway: SqlRecordGateway,
    owner_id: str = OWNER_ID,
    *,
    units: int = 5,
    start: date = WEEK_START,
    context: dict[str, Any] | None = OWNER_CONTEXT,
    supplement: dict[str, Any] | None = None,
) -> list[str]:
    """Create an owner with one unit per day starting at ``start``.

    Returns:
        Unit ids in processing order ("<owner>-u1", "<owner>-u2", ...)
    """
    gateway.add_owner(owner_id, f"Owner {owner_id}", context=context, supplement=supplement)
    unit_ids: list[str] = []
    for i in range(1, units + 1):
        unit_id = f"{owner_id}-u{i}"
        gateway.upsert_unit(unit_id, owner_id, start + timedelta(days=i - 1), f"Day {i}", {"text": unit_text(i)})
        unit_ids.append(unit_id)
    return unit_ids


def summary_params(start: date = WEEK_START, days: int = 5, **extra: Any) -> dict[str, Any]:
    """camelCase parameters for a summary task over ``days`` days."""
    params: dict[str, Any] = {
        "startDate": start.isoformat(),
        "endDate": (start + timedelta(days=days - 1)).isoformat(),
    }
    params.update(extra)
    return params


def make_service(
    store: TaskStore,
    gateway: SqlRecordGateway,
    processor: WorkUnitProcessor,
    summarizer: Summarizer,
    *,
    max_attempts: int = 3,
    max_workers: int = 2,
    **engine: Any,
) -> TaskService:
    """TaskService with immediate retries and the given engine overrides."""
    return TaskService(
        store,
        gateway,
        processor,
        summarizer,
        engine=EngineSettings(**engine),
        retry=RetryConfig.immediate(max_attempts),
        max_workers=max_workers,
    )
