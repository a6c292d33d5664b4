"""Typed, immutable parameters for each task type.

Parameters are validated once, when a task is created. Callers may send
either snake_case or camelCase keys; storage always uses snake_case.
"""

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from waypoint.contracts.enums import TaskType
from waypoint.contracts.errors import TaskValidationError

MAX_WINDOW_DAYS = 7


class SummaryParameters(BaseModel):
    """Parameters for building a new summary over a window of work units."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True, "alias_generator": to_camel}

    start_date: date = Field(description="First day of the window (inclusive)")
    end_date: date = Field(description="Last day of the window (inclusive)")
    name: str | None = Field(default=None, description="Display name for the summary")
    window: Literal["week", "custom"] = Field(default="custom", description="How the window was chosen")
    unit_ids: tuple[str, ...] | None = Field(default=None, description="Restrict the summary to these units")
    force_reprocess: bool = Field(default=False, description="Re-analyze units that already have an analysis")

    @model_validator(mode="after")
    def validate_window(self) -> "SummaryParameters":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        span = (self.end_date - self.start_date).days + 1
        if span > MAX_WINDOW_DAYS:
            raise ValueError(f"window spans {span} days; at most {MAX_WINDOW_DAYS} are allowed")
        return self


class RefreshParameters(BaseModel):
    """Parameters for refreshing an existing summary after some units changed.

    A unit listed as both unchanged and changed is treated as changed.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True, "alias_generator": to_camel}

    summary_id: str = Field(min_length=1, description="Summary to update in place")
    unchanged_unit_ids: tuple[str, ...] = Field(default=(), description="Units whose stored analysis is reused")
    changed_unit_ids: tuple[str, ...] = Field(description="Units to reprocess")

    @field_validator("changed_unit_ids")
    @classmethod
    def validate_changed(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("at least one changed unit is required")
        return v


TaskParameters = SummaryParameters | RefreshParameters

_PARAMETER_MODELS: dict[TaskType, type[SummaryParameters] | type[RefreshParameters]] = {
    TaskType.SUMMARY: SummaryParameters,
    TaskType.SUMMARY_REFRESH: RefreshParameters,
}


def parse_parameters(task_type: TaskType, raw: dict[str, Any]) -> TaskParameters:
    """Validate raw parameters for a task type.

    Raises:
        TaskValidationError: If the parameters do not match the task type's schema
    """
    model = _PARAMETER_MODELS[task_type]
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'parameters'}: {err['msg']}" for err in e.errors()
        )
        raise TaskValidationError(f"Invalid parameters for {task_type}: {details}") from e
