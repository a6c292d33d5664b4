# src/waypoint/core/store/schema.py
"""SQLAlchemy table definitions for the task store and domain records.

Uses SQLAlchemy Core (not ORM) for explicit control over queries,
in particular the compare-and-set updates the runner relies on.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

# === Tasks ===

tasks_table = Table(
    "tasks",
    metadata,
    Column("task_id", String(64), primary_key=True),
    Column("task_type", String(64), nullable=False),
    Column("owner_id", String(64), nullable=False),
    Column("status", String(16), nullable=False),
    # Validated parameters, snake_case keys; immutable after insert
    Column("parameters_json", Text, nullable=False),
    Column("current_step", String(32)),
    Column("progress", Integer, nullable=False, default=0),
    # Ordered JSON array of step names, append-only
    Column("completed_steps_json", Text, nullable=False),
    # Versioned checkpoint envelope, written with checkpoint_dumps()
    Column("intermediate_json", Text, nullable=False),
    Column("result_json", Text),
    Column("error", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("last_heartbeat_at", DateTime(timezone=True)),
    Column("paused_at", DateTime(timezone=True)),
    Column("cancelled_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    CheckConstraint("progress >= 0 AND progress <= 100", name="ck_tasks_progress_range"),
)

Index("ix_tasks_owner_type", tasks_table.c.owner_id, tasks_table.c.task_type)
Index("ix_tasks_status_updated", tasks_table.c.status, tasks_table.c.updated_at)

# === Domain records ===

owners_table = Table(
    "owners",
    metadata,
    Column("owner_id", String(64), primary_key=True),
    Column("display_name", String(256), nullable=False),
    # Reference document for analysis; required by the context step
    Column("context_json", Text),
    Column("supplement_json", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

work_units_table = Table(
    "work_units",
    metadata,
    Column("unit_id", String(64), primary_key=True),
    Column("owner_id", String(64), ForeignKey("owners.owner_id"), nullable=False),
    Column("unit_date", Date, nullable=False),
    Column("label", String(256), nullable=False),
    Column("content_json", Text, nullable=False),
    Column("analysis_json", Text),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index("ix_work_units_owner_date", work_units_table.c.owner_id, work_units_table.c.unit_date)

summaries_table = Table(
    "summaries",
    metadata,
    Column("summary_id", String(64), primary_key=True),
    Column("owner_id", String(64), ForeignKey("owners.owner_id"), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("name", String(256)),
    Column("unit_ids_json", Text, nullable=False),
    Column("result_json", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index("ix_summaries_owner_window", summaries_table.c.owner_id, summaries_table.c.start_date, summaries_table.c.end_date)
