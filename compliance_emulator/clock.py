"""Clock and timestamp helpers.

Rows store instants as ISO-8601 strings in UTC with a fixed microsecond
precision, so lexicographic comparison of two stamps agrees with
chronological order. Range filters and ordering on timestamp columns depend
on this.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Format an instant the way every row in the store is stamped."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_instant(value: str | datetime | None) -> datetime | None:
    """Parse a stored stamp back into an aware datetime (naive input is UTC)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_store_value(value: Any) -> Any:
    """Datetimes become ISO stamps; anything else is stored as given."""
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def to_store_row(row: Mapping[str, Any]) -> dict[str, Any]:
    return {key: to_store_value(value) for key, value in row.items()}
