"""Type-preserving JSON serialization for checkpoint payloads.

Checkpoints must round-trip exactly: a resumed run has to see the same
values the interrupted run wrote. Plain json.dumps() cannot carry datetime
or date values, so they are wrapped in collision-safe envelopes keyed by
``__waypoint_type__`` / ``__waypoint_value__``. User dicts that happen to
contain the reserved key are escaped before encoding.

NaN and Infinity are rejected: they are not valid JSON and would silently
turn into strings or nulls in other readers.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, date, datetime
from typing import Any

_ENVELOPE_TYPE_KEY = "__waypoint_type__"
_ENVELOPE_VALUE_KEY = "__waypoint_value__"


class CheckpointEncoder(json.JSONEncoder):
    """JSON encoder that wraps datetime and date values in type envelopes."""

    def default(self, obj: Any) -> Any:
        """Encode non-standard types.

        Raises:
            TypeError: If object cannot be serialized
        """
        # datetime is a date subclass, so it must be checked first
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=UTC)
            return {_ENVELOPE_TYPE_KEY: "datetime", _ENVELOPE_VALUE_KEY: obj.isoformat()}
        if isinstance(obj, date):
            return {_ENVELOPE_TYPE_KEY: "date", _ENVELOPE_VALUE_KEY: obj.isoformat()}
        return super().default(obj)


def _reject_nan_infinity(obj: Any) -> Any:
    """Recursively check for NaN/Infinity in a data structure.

    Raises:
        ValueError: If NaN or Infinity found
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}. Use None for missing values, not NaN/Infinity.")
    elif isinstance(obj, dict):
        for v in obj.values():
            _reject_nan_infinity(v)
    elif isinstance(obj, (list, tuple)):
        for v in obj:
            _reject_nan_infinity(v)
    return obj


def _escape_reserved_keys(obj: Any) -> Any:
    """Wrap user dicts that contain the reserved key in an escape envelope."""
    if isinstance(obj, date):
        return obj
    if isinstance(obj, dict):
        escaped = {k: _escape_reserved_keys(v) for k, v in obj.items()}
        if _ENVELOPE_TYPE_KEY in escaped:
            return {_ENVELOPE_TYPE_KEY: "escaped_dict", _ENVELOPE_VALUE_KEY: escaped}
        return escaped
    if isinstance(obj, (list, tuple)):
        return [_escape_reserved_keys(v) for v in obj]
    return obj


def checkpoint_dumps(obj: Any) -> str:
    """Serialize a checkpoint payload to JSON with type preservation.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains non-serializable types
    """
    _reject_nan_infinity(obj)
    escaped = _escape_reserved_keys(obj)
    return json.dumps(escaped, cls=CheckpointEncoder, allow_nan=False)


def _restore_types(obj: Any) -> Any:
    if isinstance(obj, dict):
        if _ENVELOPE_TYPE_KEY in obj and _ENVELOPE_VALUE_KEY in obj and len(obj) == 2:
            envelope_type = obj[_ENVELOPE_TYPE_KEY]
            envelope_value = obj[_ENVELOPE_VALUE_KEY]

            if envelope_type == "datetime" and isinstance(envelope_value, str):
                return datetime.fromisoformat(envelope_value)
            if envelope_type == "date" and isinstance(envelope_value, str):
                return date.fromisoformat(envelope_value)
            if envelope_type == "escaped_dict" and isinstance(envelope_value, dict):
                return {k: _restore_types(v) for k, v in envelope_value.items()}

        return {k: _restore_types(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_restore_types(v) for v in obj]
    return obj


def checkpoint_loads(s: str) -> Any:
    """Deserialize JSON produced by checkpoint_dumps, restoring types.

    Raises:
        json.JSONDecodeError: If string is not valid JSON
    """
    return _restore_types(json.loads(s))
