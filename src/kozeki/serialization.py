"""JSON and time helpers shared by the state store and rendered artifacts."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def json_default(value: Any) -> Any:
    """Serialise datetimes (and YAML dates) as ISO-8601 strings."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def normalize_json(value: Any) -> Any:
    """Return *value* with every datetime/date replaced by its ISO-8601 string."""
    if isinstance(value, dict):
        return {k: normalize_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_json(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def dump_json(value: Any) -> str:
    """Compact JSON document with a trailing newline, as written to destinations."""
    return json.dumps(
        value, ensure_ascii=False, separators=(",", ":"), default=json_default
    ) + "\n"


def to_millis(value: datetime) -> int:
    """Truncate *value* to whole milliseconds since the epoch (exact, no floats)."""
    return (_as_aware(value) - EPOCH) // _MILLISECOND


def from_millis(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def to_epoch_seconds(value: datetime) -> int:
    return (_as_aware(value) - EPOCH) // timedelta(seconds=1)


def from_epoch_seconds(value: int) -> datetime:
    return EPOCH + timedelta(seconds=value)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a metadata timestamp (ISO-8601 string, datetime or date)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return _as_aware(datetime.fromisoformat(str(value)))


def _as_aware(value: datetime) -> datetime:
    # Naive datetimes are taken as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
