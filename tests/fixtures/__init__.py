# tests/fixtures/__init__.py
"""Shared test helpers for waypoint tests.

Available helpers:
- FakeProcessor / FakeSummarizer: deterministic collaborators that record calls
- RecordingSink: EventSink keeping every event in order
- seed_owner / summary_params / make_service: data and wiring factories
"""

from tests.fixtures.factories import OWNER_ID, WEEK_START, make_service, seed_owner, summary_params
from tests.fixtures.fakes import FakeProcessor, FakeSummarizer, RecordingSink, analysis_for

__all__ = [
    "OWNER_ID",
    "WEEK_START",
    "FakeProcessor",
    "FakeSummarizer",
    "RecordingSink",
    "analysis_for",
    "make_service",
    "seed_owner",
    "summary_params",
]
