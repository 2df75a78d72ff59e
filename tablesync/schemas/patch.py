"""Declarative row patch schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

PATCH_FILE_VERSION = "1.0"


class PatchOp(StrEnum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class JsonValuePatch(BaseModel):
    """A single field-level change: ``{op, path, value?}``.

    ``path`` uses dot-separated keys with bracket indexes, e.g.
    ``"address.city"`` or ``"tags[0]"``.
    """

    model_config = ConfigDict(extra="forbid")

    op: PatchOp
    path: str = Field(min_length=1)
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def value_matches_op(cls, data: Any) -> Any:
        """Require ``value`` for add/replace and reject it for remove."""
        if not isinstance(data, dict):
            return data
        op = data.get("op")
        if op in (PatchOp.ADD, PatchOp.REPLACE) and "value" not in data:
            raise ValueError(f"'{op}' patch requires a value")
        if op == PatchOp.REMOVE and "value" in data:
            raise ValueError("'remove' patch must not carry a value")
        return data


class _PatchModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class PatchFile(_PatchModel):
    """Patches for a single row of a table."""

    version: Literal["1.0"] = PATCH_FILE_VERSION
    table: str = Field(min_length=1)
    row_id: str = Field(min_length=1)
    created_at: datetime
    patches: list[JsonValuePatch] = Field(min_length=1)


class PatchRow(_PatchModel):
    row_id: str = Field(min_length=1)
    patches: list[JsonValuePatch] = Field(min_length=1)


class PatchFileMerged(_PatchModel):
    """Patches for many rows of one table, stored together."""

    version: Literal["1.0"] = PATCH_FILE_VERSION
    table: str = Field(min_length=1)
    created_at: datetime
    rows: list[PatchRow] = Field(min_length=1)

    def to_patch_files(self) -> list[PatchFile]:
        """Split into one ``PatchFile`` per row, keeping row order."""
        return [
            PatchFile(
                version=self.version,
                table=self.table,
                row_id=row.row_id,
                created_at=self.created_at,
                patches=list(row.patches),
            )
            for row in self.rows
        ]
