"""Gateway protocol and data classes for talking to a table API instance."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from tablesync.schemas.migration import Migration, MigrationApplyResult

T = TypeVar("T")


@dataclass
class Row:
    """A table row. ``data`` is an arbitrary JSON value."""

    id: str
    data: Any


@dataclass
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""

    items: list[T] = field(default_factory=list)
    has_next_page: bool = False
    next_cursor: str | None = None


@runtime_checkable
class TableApiGateway(Protocol):
    """Remote operations the sync engine needs from one API instance.

    Every failure is raised as ``GatewayError``; ``status_code`` distinguishes
    an unsupported endpoint (404) and an oversized payload (413) from other
    failures.
    """

    async def list_tables(self, cursor: str | None = None) -> Page[str]:
        """Return one page of table identifiers."""
        ...

    async def list_rows(self, table_id: str, cursor: str | None = None) -> Page[Row]:
        """Return one page of rows, ordered by id."""
        ...

    async def get_row(self, table_id: str, row_id: str) -> Any | None:
        """Return the row's data, or None if the row does not exist."""
        ...

    async def get_table_schema(self, table_id: str) -> dict[str, Any]: ...

    async def create_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None: ...

    async def update_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None: ...

    async def patch_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        """Patch many rows. Each ``Row.data`` is a list of wire-form patches."""
        ...

    async def create_row(self, table_id: str, row: Row) -> None: ...

    async def update_row(self, table_id: str, row: Row) -> None: ...

    async def patch_row(self, table_id: str, row: Row) -> None: ...

    async def list_migrations(self) -> list[Migration]:
        """Return every migration of the revision, oldest first."""
        ...

    async def apply_migration(self, migration: Migration) -> MigrationApplyResult: ...

    async def create_revision(self, comment: str) -> str:
        """Commit the draft revision and return the new revision id."""
        ...


async def collect_pages(fetch_page: Callable[[str | None], Awaitable[Page[T]]]) -> list[T]:
    """Fetch pages one after another until the listing reports no next page."""
    items: list[T] = []
    cursor: str | None = None
    while True:
        page = await fetch_page(cursor)
        items.extend(page.items)
        if not page.has_next_page or page.next_cursor is None:
            return items
        cursor = page.next_cursor
