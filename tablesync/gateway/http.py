"""``TableApiGateway`` over the REST API, using ``httpx.AsyncClient``."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from tablesync.exceptions import HTTP_NOT_FOUND, GatewayError
from tablesync.gateway.base import Page, Row
from tablesync.schemas.migration import MigrationApplyResult, dump_migration, parse_migrations

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from tablesync.config import EndpointSettings
    from tablesync.schemas.migration import Migration

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_PAGE_SIZE = 100
DRAFT_REVISION = "draft"
HEAD_REVISION = "head"


def _segment(value: str) -> str:
    return quote(value, safe="")


def _parse_page(payload: dict[str, Any]) -> tuple[list[dict[str, Any]], bool, str | None]:
    nodes = [edge["node"] for edge in payload.get("edges", [])]
    page_info = payload.get("pageInfo", {})
    return nodes, bool(page_info.get("hasNextPage")), page_info.get("endCursor")


class HttpTableApiGateway:
    """One API instance, pinned to one revision.

    Every method raises ``GatewayError``: HTTP error responses carry their
    status code, transport failures (timeouts, refused connections) carry
    ``None``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        revision_id: str,
        organization: str = "",
        project: str = "",
        branch: str = "master",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.revision_id = revision_id
        self.organization = organization
        self.project = project
        self.branch = branch
        self.page_size = page_size
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> HttpTableApiGateway:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self.client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            msg = f"{method} {url} failed with HTTP {status}: {exc.response.text}"
            raise GatewayError(msg, status_code=status) from exc
        except httpx.TransportError as exc:
            msg = f"{method} {url} failed: {exc}"
            raise GatewayError(msg) from exc
        return resp

    def _revision_path(self, suffix: str = "") -> str:
        return f"/api/revision/{_segment(self.revision_id)}{suffix}"

    def _table_path(self, table_id: str, suffix: str = "") -> str:
        return self._revision_path(f"/tables/{_segment(table_id)}{suffix}")

    def _branch_path(self, suffix: str) -> str:
        return (
            f"/api/organization/{_segment(self.organization)}"
            f"/projects/{_segment(self.project)}"
            f"/branches/{_segment(self.branch)}{suffix}"
        )

    async def resolve_revision(self, name: str) -> str:
        """Map ``draft``/``head`` to a revision id; any other value is an id already."""
        if name not in (DRAFT_REVISION, HEAD_REVISION):
            return name
        resp = await self._request("GET", self._branch_path(f"/{name}-revision"))
        revision_id: str = resp.json()["id"]
        return revision_id

    async def list_tables(self, cursor: str | None = None) -> Page[str]:
        params: dict[str, Any] = {"first": self.page_size}
        if cursor is not None:
            params["after"] = cursor
        resp = await self._request("GET", self._revision_path("/tables"), params=params)
        nodes, has_next, end_cursor = _parse_page(resp.json())
        return Page(
            items=[node["id"] for node in nodes],
            has_next_page=has_next,
            next_cursor=end_cursor,
        )

    async def list_rows(self, table_id: str, cursor: str | None = None) -> Page[Row]:
        body: dict[str, Any] = {
            "first": self.page_size,
            "orderBy": [{"field": "id", "direction": "asc"}],
        }
        if cursor is not None:
            body["after"] = cursor
        resp = await self._request("POST", self._table_path(table_id, "/rows"), json=body)
        nodes, has_next, end_cursor = _parse_page(resp.json())
        return Page(
            items=[Row(id=node["id"], data=node.get("data")) for node in nodes],
            has_next_page=has_next,
            next_cursor=end_cursor,
        )

    async def get_row(self, table_id: str, row_id: str) -> Any | None:
        try:
            resp = await self._request(
                "GET", self._table_path(table_id, f"/rows/{_segment(row_id)}")
            )
        except GatewayError as exc:
            if exc.status_code == HTTP_NOT_FOUND:
                return None
            raise
        return resp.json().get("data")

    async def get_table_schema(self, table_id: str) -> dict[str, Any]:
        resp = await self._request("GET", self._table_path(table_id, "/schema"))
        schema: dict[str, Any] = resp.json()
        return schema

    async def create_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        body = {
            "rows": [{"rowId": row.id, "data": row.data} for row in rows],
            "isRestore": True,
        }
        await self._request("POST", self._table_path(table_id, "/create-rows"), json=body)

    async def update_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        body = {"rows": [{"rowId": row.id, "data": row.data} for row in rows]}
        await self._request("PUT", self._table_path(table_id, "/update-rows"), json=body)

    async def patch_rows_bulk(self, table_id: str, rows: Sequence[Row]) -> None:
        body = {"rows": [{"rowId": row.id, "patches": row.data} for row in rows]}
        await self._request("PATCH", self._table_path(table_id, "/patch-rows"), json=body)

    async def create_row(self, table_id: str, row: Row) -> None:
        body = {"rowId": row.id, "data": row.data, "isRestore": True}
        await self._request("POST", self._table_path(table_id, "/create-row"), json=body)

    async def update_row(self, table_id: str, row: Row) -> None:
        body = {"data": row.data}
        await self._request(
            "PUT", self._table_path(table_id, f"/rows/{_segment(row.id)}"), json=body
        )

    async def patch_row(self, table_id: str, row: Row) -> None:
        await self._request(
            "PATCH",
            self._table_path(table_id, f"/rows/{_segment(row.id)}"),
            json={"patches": row.data},
        )

    async def list_migrations(self) -> list[Migration]:
        resp = await self._request("GET", self._revision_path("/migrations"))
        return parse_migrations(resp.json())

    async def apply_migration(self, migration: Migration) -> MigrationApplyResult:
        resp = await self._request(
            "POST",
            self._revision_path("/apply-migrations"),
            json=[dump_migration(migration)],
        )
        results = resp.json()
        if not results:
            msg = f"Empty response when applying migration {migration.id}"
            raise GatewayError(msg)
        return MigrationApplyResult.model_validate(results[0])

    async def create_revision(self, comment: str) -> str:
        resp = await self._request(
            "POST", self._branch_path("/create-revision"), json={"comment": comment}
        )
        revision_id: str = resp.json()["id"]
        return revision_id


@asynccontextmanager
async def open_gateway(
    endpoint: EndpointSettings,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    page_size: int = DEFAULT_PAGE_SIZE,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[HttpTableApiGateway]:
    """Open a gateway for an endpoint, resolving its revision name to an id."""
    gateway = HttpTableApiGateway(
        base_url=endpoint.base_url,
        token=endpoint.token,
        revision_id=endpoint.revision,
        organization=endpoint.organization,
        project=endpoint.project,
        branch=endpoint.branch,
        timeout=timeout,
        page_size=page_size,
        transport=transport,
    )
    async with gateway:
        gateway.revision_id = await gateway.resolve_revision(endpoint.revision)
        logger.info(
            "Connected to %s (%s/%s, branch %s, revision %s)",
            gateway.base_url,
            endpoint.organization,
            endpoint.project,
            endpoint.branch,
            gateway.revision_id,
        )
        yield gateway
