"""Batched row writes with adaptive fallback from bulk to single-row endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from tablesync.exceptions import GatewayError, RowSyncError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from tablesync.gateway.base import Row, TableApiGateway

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class MutationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    PATCH = "patch"


class BulkSupport(StrEnum):
    """Whether a connection's bulk endpoint for one mutation kind works."""

    UNKNOWN = "unknown"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


@dataclass
class BulkSupportFlags:
    """Sticky bulk-endpoint support, one tri-state per mutation kind.

    Lives for one sync run against one connection. Once a kind is marked
    unsupported it stays unsupported for the rest of the run.
    """

    states: dict[MutationKind, BulkSupport] = field(
        default_factory=lambda: {kind: BulkSupport.UNKNOWN for kind in MutationKind}
    )

    def get(self, kind: MutationKind) -> BulkSupport:
        return self.states[kind]

    def mark_supported(self, kind: MutationKind) -> None:
        if self.states[kind] is BulkSupport.UNKNOWN:
            self.states[kind] = BulkSupport.SUPPORTED

    def mark_unsupported(self, kind: MutationKind) -> None:
        self.states[kind] = BulkSupport.UNSUPPORTED


@dataclass
class BatchResult:
    success: int = 0
    errors: int = 0


@dataclass
class ProgressState:
    kind: MutationKind
    current: int
    total: int


class BatchMutationExecutor:
    """Writes rows to one target, batch by batch, in order.

    Bulk endpoints are tried first. A 404 from a bulk endpoint marks the kind
    unsupported and re-sends the current and all later rows one at a time. A
    413 aborts the table with ``RowSyncError``; other HTTP errors are counted
    against the batch and processing continues.
    """

    def __init__(
        self,
        gateway: TableApiGateway,
        bulk_support: BulkSupportFlags,
        on_progress: Callable[[ProgressState], None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.bulk_support = bulk_support
        self.on_progress = on_progress

    def _bulk_call(self, kind: MutationKind) -> Callable[[str, Sequence[Row]], Awaitable[None]]:
        if kind is MutationKind.CREATE:
            return self.gateway.create_rows_bulk
        if kind is MutationKind.UPDATE:
            return self.gateway.update_rows_bulk
        return self.gateway.patch_rows_bulk

    def _single_call(self, kind: MutationKind) -> Callable[[str, Row], Awaitable[None]]:
        if kind is MutationKind.CREATE:
            return self.gateway.create_row
        if kind is MutationKind.UPDATE:
            return self.gateway.update_row
        return self.gateway.patch_row

    def _report(self, kind: MutationKind, result: BatchResult, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(ProgressState(kind=kind, current=result.success, total=total))

    async def execute(
        self,
        table_id: str,
        rows: Sequence[Row],
        kind: MutationKind,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> BatchResult:
        """Write ``rows`` to ``table_id`` and return success/error counts."""
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        result = BatchResult()
        if self.bulk_support.get(kind) is BulkSupport.UNSUPPORTED:
            await self._execute_single(table_id, rows, kind, result, len(rows))
            return result

        bulk_call = self._bulk_call(kind)
        for start in range(0, len(rows), batch_size):
            batch = rows[start : start + batch_size]
            try:
                await bulk_call(table_id, batch)
            except GatewayError as exc:
                if exc.is_not_supported:
                    logger.warning(
                        "Bulk %s not supported by target, falling back to single-row mode", kind
                    )
                    self.bulk_support.mark_unsupported(kind)
                    await self._execute_single(table_id, rows[start:], kind, result, len(rows))
                    return result
                if exc.is_payload_too_large or exc.status_code is None:
                    msg = f"Batch {kind} failed: {exc}"
                    raise RowSyncError(
                        msg, table_id, status_code=exc.status_code, batch_size=batch_size
                    ) from exc
                logger.warning(
                    "Batch %s of %d row(s) in table %s failed (HTTP %s): %s",
                    kind,
                    len(batch),
                    table_id,
                    exc.status_code,
                    exc,
                )
                result.errors += len(batch)
                continue

            if self.bulk_support.get(kind) is BulkSupport.UNKNOWN:
                logger.info("Bulk %s supported", kind)
            self.bulk_support.mark_supported(kind)
            result.success += len(batch)
            self._report(kind, result, len(rows))

        return result

    async def _execute_single(
        self,
        table_id: str,
        rows: Sequence[Row],
        kind: MutationKind,
        result: BatchResult,
        total: int,
    ) -> None:
        single_call = self._single_call(kind)
        for row in rows:
            try:
                await single_call(table_id, row)
            except GatewayError as exc:
                if exc.is_payload_too_large or exc.status_code is None:
                    msg = f"Failed to {kind} row {row.id}: {exc}"
                    raise RowSyncError(msg, table_id, status_code=exc.status_code) from exc
                logger.warning(
                    "Failed to %s row %s in table %s (HTTP %s): %s",
                    kind,
                    row.id,
                    table_id,
                    exc.status_code,
                    exc,
                )
                result.errors += 1
                continue
            result.success += 1
            self._report(kind, result, total)
