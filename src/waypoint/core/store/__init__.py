"""Durable storage: task records and the domain records steps operate on."""

from waypoint.core.store.database import SchemaCompatibilityError, TaskDB
from waypoint.core.store.records import SqlRecordGateway
from waypoint.core.store.tasks import TaskStore

__all__ = [
    "SchemaCompatibilityError",
    "SqlRecordGateway",
    "TaskDB",
    "TaskStore",
]
