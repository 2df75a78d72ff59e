"""Schema migration records exchanged with the remote API."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for camelCase wire models that are addressed by snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class InitMigration(_WireModel):
    """Creates a table with the given schema."""

    change_type: Literal["init"] = "init"
    id: str
    table_id: str
    hash: str | None = None
    table_schema: dict[str, Any] = Field(alias="schema")


class UpdateMigration(_WireModel):
    """Alters a table schema with a list of JSON patch operations."""

    change_type: Literal["update"] = "update"
    id: str
    table_id: str
    hash: str | None = None
    patches: list[dict[str, Any]] = Field(default_factory=list)


class RenameMigration(_WireModel):
    change_type: Literal["rename"] = "rename"
    id: str
    table_id: str
    next_table_id: str


class RemoveMigration(_WireModel):
    change_type: Literal["remove"] = "remove"
    id: str
    table_id: str


Migration = Annotated[
    InitMigration | UpdateMigration | RenameMigration | RemoveMigration,
    Field(discriminator="change_type"),
]

MIGRATION_LIST_ADAPTER: TypeAdapter[list[Migration]] = TypeAdapter(list[Migration])


class MigrationStatus(StrEnum):
    """Outcome reported by the target for one migration."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class MigrationApplyResult(_WireModel):
    id: str
    status: MigrationStatus
    error: str | None = None


def parse_migrations(payload: Any) -> list[Migration]:
    """Validate a decoded JSON array of migrations, preserving order."""
    return MIGRATION_LIST_ADAPTER.validate_python(payload)


def dump_migration(migration: Migration) -> dict[str, Any]:
    """Serialize a migration to its camelCase wire form."""
    return migration.model_dump(by_alias=True, exclude_none=True)
