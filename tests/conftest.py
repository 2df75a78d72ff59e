"""Shared test fixtures for tablesync."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from tablesync.exceptions import HTTP_NOT_FOUND, GatewayError
from tablesync.gateway.base import Page, Row
from tablesync.schemas.migration import (
    InitMigration,
    MigrationApplyResult,
    MigrationStatus,
    RemoveMigration,
    RenameMigration,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tablesync.schemas.migration import Migration


def fk(table_id: str) -> dict[str, Any]:
    """Schema of a string field referencing ``table_id``."""
    return {"type": "string", "default": "", "foreignKey": table_id}


def object_schema(**properties: Any) -> dict[str, Any]:
    return {"type": "object", "required": list(properties), "properties": properties}


def not_found(what: str = "Not Found") -> GatewayError:
    return GatewayError(what, status_code=HTTP_NOT_FOUND)


class FakeGateway:
    """In-memory ``TableApiGateway`` that records every call.

    ``errors`` maps a method name to an error raised on every call of that
    method. ``row_errors`` maps a row id to an error raised by the single-row
    write methods for that row.
    """

    def __init__(
        self,
        schemas: dict[str, Any] | None = None,
        rows: dict[str, dict[str, Any]] | None = None,
        migrations: Sequence[Migration] = (),
        page_size: int = 2,
    ) -> None:
        self.schemas: dict[str, Any] = dict(schemas or {})
        self.rows: dict[str, dict[str, Any]] = {
            table_id: dict(table_rows) for table_id, table_rows in (rows or {}).items()
        }
        for table_id in self.schemas:
            self.rows.setdefault(table_id, {})
        self.migrations = list(migrations)
        self.page_size = page_size
        self.calls: list[tuple[Any, ...]] = []
        self.errors: dict[str, GatewayError] = {}
        self.row_errors: dict[str, GatewayError] = {}
        self.migration_results: dict[str, MigrationApplyResult] = {}
        self.applied: list[str] = []
        self.patches: dict[str, dict[str, list[dict[str, Any]]]] = {}
        self.revision_comments: list[str] = []

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    def _page(self, items: list[Any], cursor: str | None) -> Page[Any]:
        start = int(cursor) if cursor is not None else 0
        end = start + self.page_size
        has_next = end < len(items)
        return Page(
            items=items[start:end],
            has_next_page=has_next,
            next_cursor=str(end) if has_next else None,
        )

    def _table(self, table_id: str) -> dict[str, Any]:
        if table_id not in self.rows:
            raise not_found(f"Table {table_id} not found")
        return self.rows[table_id]

    async def list_tables(self, cursor: str | None = None) -> Page[str]:
        self._record("list_tables", cursor)
        return self._page(list(self.rows), cursor)

    async def list_rows(self, table_id: str, cursor: str | None = None) -> Page[Row]:
        self._record("list_rows", table_id, cursor)
        table = self._table(table_id)
        ordered = [Row(id=row_id, data=table[row_id]) for row_id in sorted(table)]
        return self._page(ordered, cursor)

    async def get_row(self, table_id: str, row_id: str) -> Any | None:
        self._record("get_row", table_id, row_id)
        return self._table(table_id).get(row_id)

    async def get_table_schema(self, table_id: str) -> dict[str, Any]:
        self._record("get_table_schema", table_id)
        if table_id not in self.schemas:
            raise not_found(f"Schema for {table_id} not found")
        schema: dict[str, Any] = self.schemas[table_id]
        return schema

    def _store(self, table_id: str, rows: Sequence[Row]) -> None:
        table = self._table(table_id)
        for row in rows:
            table[row.id] = row.data

    def _store_patches(self, table_id: str, rows: Sequence[Row]) -> None:
        table_patches = self.patches.setdefault(table_id, {})
        for row in rows:
            table_patches[row.id] = list(row.data)

    async def create_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        self._record("create_rows_bulk", table_id, [row.id for row in rows])
        self._store(table_id, rows)

    async def update_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        self._record("update_rows_bulk", table_id, [row.id for row in rows])
        self._store(table_id, rows)

    async def patch_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        self._record("patch_rows_bulk", table_id, [row.id for row in rows])
        self._store_patches(table_id, rows)

    def _check_row(self, row: Row) -> None:
        error = self.row_errors.get(row.id)
        if error is not None:
            raise error

    async def create_row(self, table_id: str, row: Row) -> None:
        self._record("create_row", table_id, row.id)
        self._check_row(row)
        self._store(table_id, [row])

    async def update_row(self, table_id: str, row: Row) -> None:
        self._record("update_row", table_id, row.id)
        self._check_row(row)
        self._store(table_id, [row])

    async def patch_row(self, table_id: str, row: Row) -> None:
        self._record("patch_row", table_id, row.id)
        self._check_row(row)
        self._store_patches(table_id, [row])

    async def list_migrations(self) -> list[Migration]:
        self._record("list_migrations")
        return list(self.migrations)

    async def apply_migration(self, migration: Migration) -> MigrationApplyResult:
        self._record("apply_migration", migration.id)
        result = self.migration_results.get(
            migration.id, MigrationApplyResult(id=migration.id, status=MigrationStatus.APPLIED)
        )
        if result.status is MigrationStatus.APPLIED:
            self.applied.append(migration.id)
            if isinstance(migration, InitMigration):
                self.schemas[migration.table_id] = migration.table_schema
                self.rows.setdefault(migration.table_id, {})
            elif isinstance(migration, RenameMigration):
                self.rows[migration.next_table_id] = self.rows.pop(migration.table_id, {})
            elif isinstance(migration, RemoveMigration):
                self.rows.pop(migration.table_id, None)
                self.schemas.pop(migration.table_id, None)
        return result

    async def create_revision(self, comment: str) -> str:
        self._record("create_revision", comment)
        self.revision_comments.append(comment)
        return f"rev-{len(self.revision_comments)}"


@pytest.fixture
def blog_schemas() -> dict[str, Any]:
    """users -> posts -> images, listed in reverse dependency order."""
    return {
        "users": object_schema(name={"type": "string", "default": ""}, lastPost=fk("posts")),
        "posts": object_schema(title={"type": "string", "default": ""}, cover=fk("images")),
        "images": object_schema(url={"type": "string", "default": ""}),
    }
