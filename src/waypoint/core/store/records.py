# src/waypoint/core/store/records.py
"""SQL-backed domain records: owners, work units, and summaries.

Implements the RecordGateway protocol the step strategies depend on. The
engine never touches these tables directly.
"""

import json
import uuid
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from sqlalchemy import Row, delete, select, update

from waypoint.contracts.work import SummaryRecord, WorkUnit
from waypoint.core.clock import DEFAULT_CLOCK, Clock, ensure_utc
from waypoint.core.logging import get_logger
from waypoint.core.serialization import checkpoint_dumps, checkpoint_loads
from waypoint.core.store.database import TaskDB
from waypoint.core.store.schema import owners_table, summaries_table, work_units_table

logger = get_logger(__name__)


def _row_to_unit(row: Row[Any]) -> WorkUnit:
    return WorkUnit(
        unit_id=row.unit_id,
        owner_id=row.owner_id,
        unit_date=row.unit_date,
        label=row.label,
        content=checkpoint_loads(row.content_json),
        analysis=checkpoint_loads(row.analysis_json) if row.analysis_json is not None else None,
        updated_at=ensure_utc(row.updated_at),
    )


def _row_to_summary(row: Row[Any]) -> SummaryRecord:
    created_at = ensure_utc(row.created_at)
    updated_at = ensure_utc(row.updated_at)
    assert created_at is not None and updated_at is not None  # NOT NULL columns
    return SummaryRecord(
        summary_id=row.summary_id,
        owner_id=row.owner_id,
        start_date=row.start_date,
        end_date=row.end_date,
        name=row.name,
        unit_ids=tuple(json.loads(row.unit_ids_json)),
        result=checkpoint_loads(row.result_json),
        created_at=created_at,
        updated_at=updated_at,
    )


class SqlRecordGateway:
    """RecordGateway over the waypoint database.

    Besides the read/write operations the pipeline uses, it offers
    add_owner() and upsert_unit() for loading data and for tests.
    """

    def __init__(self, db: TaskDB, *, clock: Clock = DEFAULT_CLOCK) -> None:
        self._db = db
        self._clock = clock

    # === Loading ===

    def add_owner(
        self,
        owner_id: str,
        display_name: str,
        *,
        context: Mapping[str, Any] | None = None,
        supplement: Mapping[str, Any] | None = None,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                owners_table.insert().values(
                    owner_id=owner_id,
                    display_name=display_name,
                    context_json=checkpoint_dumps(dict(context)) if context is not None else None,
                    supplement_json=checkpoint_dumps(dict(supplement)) if supplement is not None else None,
                    updated_at=self._clock.now(),
                )
            )

    def upsert_unit(
        self,
        unit_id: str,
        owner_id: str,
        unit_date: date,
        label: str,
        content: Mapping[str, Any],
    ) -> None:
        """Insert a unit or replace its content.

        Replacing content bumps updated_at and drops the stored analysis, which
        no longer describes the unit.
        """
        now = self._clock.now()
        with self._db.connection() as conn:
            exists = conn.execute(select(work_units_table.c.unit_id).where(work_units_table.c.unit_id == unit_id)).first()
            if exists is None:
                conn.execute(
                    work_units_table.insert().values(
                        unit_id=unit_id,
                        owner_id=owner_id,
                        unit_date=unit_date,
                        label=label,
                        content_json=checkpoint_dumps(dict(content)),
                        updated_at=now,
                    )
                )
            else:
                conn.execute(
                    update(work_units_table)
                    .where(work_units_table.c.unit_id == unit_id)
                    .values(
                        unit_date=unit_date,
                        label=label,
                        content_json=checkpoint_dumps(dict(content)),
                        analysis_json=None,
                        updated_at=now,
                    )
                )

    # === RecordGateway ===

    def owner_exists(self, owner_id: str) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(select(owners_table.c.owner_id).where(owners_table.c.owner_id == owner_id)).first()
        return row is not None

    def list_units(
        self,
        owner_id: str,
        start_date: date,
        end_date: date,
        unit_ids: Sequence[str] | None = None,
    ) -> list[WorkUnit]:
        """Units of an owner within [start_date, end_date], ordered by date then id."""
        stmt = (
            select(work_units_table)
            .where(work_units_table.c.owner_id == owner_id)
            .where(work_units_table.c.unit_date >= start_date)
            .where(work_units_table.c.unit_date <= end_date)
        )
        if unit_ids is not None:
            stmt = stmt.where(work_units_table.c.unit_id.in_(list(unit_ids)))
        stmt = stmt.order_by(work_units_table.c.unit_date, work_units_table.c.unit_id)
        with self._db.connection() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_unit(row) for row in rows]

    def get_units(self, unit_ids: Sequence[str]) -> list[WorkUnit]:
        """Units with the given ids, ordered by date then id. Unknown ids are ignored."""
        if not unit_ids:
            return []
        stmt = (
            select(work_units_table)
            .where(work_units_table.c.unit_id.in_(list(unit_ids)))
            .order_by(work_units_table.c.unit_date, work_units_table.c.unit_id)
        )
        with self._db.connection() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_unit(row) for row in rows]

    def record_analysis(self, unit_id: str, analysis: Mapping[str, Any]) -> None:
        # Leaves updated_at alone: storing an analysis is not a content change
        with self._db.connection() as conn:
            conn.execute(
                update(work_units_table)
                .where(work_units_table.c.unit_id == unit_id)
                .values(analysis_json=checkpoint_dumps(dict(analysis)))
            )

    def load_context(self, owner_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(select(owners_table.c.context_json).where(owners_table.c.owner_id == owner_id)).first()
        if row is None or row.context_json is None:
            return None
        context: dict[str, Any] = checkpoint_loads(row.context_json)
        return context

    def load_supplement(self, owner_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(select(owners_table.c.supplement_json).where(owners_table.c.owner_id == owner_id)).first()
        if row is None or row.supplement_json is None:
            return None
        supplement: dict[str, Any] = checkpoint_loads(row.supplement_json)
        return supplement

    def get_summary(self, summary_id: str) -> SummaryRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(select(summaries_table).where(summaries_table.c.summary_id == summary_id)).first()
        return _row_to_summary(row) if row is not None else None

    def create_summary(
        self,
        *,
        owner_id: str,
        start_date: date,
        end_date: date,
        name: str | None,
        unit_ids: Sequence[str],
        result: Mapping[str, Any],
    ) -> str:
        """Write a new summary, replacing any summary of the same owner and window."""
        summary_id = uuid.uuid4().hex
        now = self._clock.now()
        with self._db.connection() as conn:
            replaced = conn.execute(
                delete(summaries_table)
                .where(summaries_table.c.owner_id == owner_id)
                .where(summaries_table.c.start_date == start_date)
                .where(summaries_table.c.end_date == end_date)
            ).rowcount
            conn.execute(
                summaries_table.insert().values(
                    summary_id=summary_id,
                    owner_id=owner_id,
                    start_date=start_date,
                    end_date=end_date,
                    name=name,
                    unit_ids_json=json.dumps(list(unit_ids)),
                    result_json=checkpoint_dumps(dict(result)),
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("summary_created", summary_id=summary_id, owner_id=owner_id, replaced=replaced)
        return summary_id

    def update_summary(self, summary_id: str, *, unit_ids: Sequence[str], result: Mapping[str, Any]) -> None:
        with self._db.connection() as conn:
            conn.execute(
                update(summaries_table)
                .where(summaries_table.c.summary_id == summary_id)
                .values(
                    unit_ids_json=json.dumps(list(unit_ids)),
                    result_json=checkpoint_dumps(dict(result)),
                    updated_at=self._clock.now(),
                )
            )
        logger.info("summary_updated", summary_id=summary_id)

    def changed_units(self, summary: SummaryRecord) -> tuple[list[str], list[str]]:
        """Partition the units in a summary's window by modification since the summary.

        Units added to the window after the summary was written count as changed.

        Returns:
            (changed unit ids, unchanged unit ids), each ordered by date then id
        """
        units = self.list_units(summary.owner_id, summary.start_date, summary.end_date)
        changed: list[str] = []
        unchanged: list[str] = []
        for unit in units:
            is_new = unit.unit_id not in summary.unit_ids
            modified = unit.updated_at is not None and unit.updated_at > summary.updated_at
            (changed if is_new or modified else unchanged).append(unit.unit_id)
        return changed, unchanged
