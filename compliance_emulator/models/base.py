"""Common base for entity models parsed from stored rows."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, field_validator

from compliance_emulator.clock import parse_instant, to_iso


class RowModel(BaseModel):
    """An entity backed by one snake_case row in the store.

    Unknown columns are ignored so a model can be parsed from a row that
    carries extra keys.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    tenant_id: str

    @field_validator("*", mode="after")
    @classmethod
    def _naive_instants_are_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return parse_instant(value)
        return value

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Self:
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        """Dump back to a storable row with timestamps in the store format."""
        row = self.model_dump(mode="python", by_alias=True, exclude_none=False)
        for key, value in row.items():
            if isinstance(value, datetime):
                row[key] = to_iso(value)
            elif isinstance(value, StrEnum):
                row[key] = str(value)
        return row
