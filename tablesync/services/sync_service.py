"""Sync orchestration: schema migrations, dependency-ordered row sync, patch application."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from tablesync.exceptions import (
    GatewayError,
    MigrationFailedError,
    PatchValidationError,
    RowSyncError,
    SyncAbortedError,
)
from tablesync.gateway.base import Row, collect_pages
from tablesync.schemas.patch import PatchOp
from tablesync.services.batch_service import (
    DEFAULT_BATCH_SIZE,
    BatchMutationExecutor,
    BulkSupportFlags,
    MutationKind,
)
from tablesync.services.dependency_service import analyze_dependencies, format_dependency_info
from tablesync.services.diff_service import (
    DiffResult,
    DiffStatus,
    categorize,
    compare_with_api,
)
from tablesync.services.migration_service import (
    SchemaSyncResult,
    analyze_migrations,
    apply_migrations,
)
from tablesync.services.patch_service import PatchValidationIssue, validate_patch_file

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from tablesync.config import Settings
    from tablesync.gateway.base import TableApiGateway
    from tablesync.schemas.patch import PatchFile
    from tablesync.services.batch_service import ProgressState

logger = logging.getLogger(__name__)

CLIENT_NAME = "tablesync"


@dataclass
class SyncOptions:
    """What a sync run should do."""

    sync_schema: bool = True
    sync_data: bool = True
    dry_run: bool = False
    commit: bool = False
    tables: list[str] | None = None
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncOptions:
        return cls(
            sync_schema=settings.sync_schema,
            sync_data=settings.sync_data,
            dry_run=settings.dry_run,
            commit=settings.commit,
            tables=list(settings.tables) or None,
            batch_size=settings.batch_size,
        )


@dataclass
class RowSyncStats:
    """Write-phase counters for one table."""

    total_rows: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    create_errors: int = 0
    update_errors: int = 0


@dataclass
class TableSyncResult:
    table_id: str
    rows_created: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    errors: int = 0


@dataclass
class DataSyncResult:
    """Per-table results plus run totals, in processing order."""

    tables: list[TableSyncResult] = field(default_factory=list)
    total_rows_created: int = 0
    total_rows_updated: int = 0
    total_rows_skipped: int = 0
    total_errors: int = 0

    def add(self, table: TableSyncResult) -> None:
        self.tables.append(table)
        self.total_rows_created += table.rows_created
        self.total_rows_updated += table.rows_updated
        self.total_rows_skipped += table.rows_skipped
        self.total_errors += table.errors

    @property
    def total_changes(self) -> int:
        return self.total_rows_created + self.total_rows_updated


@dataclass
class SyncResult:
    schema: SchemaSyncResult | None = None
    data: DataSyncResult | None = None
    revision_id: str | None = None

    @property
    def change_count(self) -> int:
        schema_changes = self.schema.migrations_applied if self.schema else 0
        data_changes = self.data.total_changes if self.data else 0
        return schema_changes + data_changes


@dataclass
class PatchApplyResult:
    diff: DiffResult
    rows_applied: int = 0
    rows_skipped: int = 0
    errors: int = 0
    revision_id: str | None = None


def commit_comment(action: str, count: int) -> str:
    item_word = "item" if count == 1 else "items"
    return f"{action} {count} {item_word} via {CLIENT_NAME}"


class SyncOrchestrator:
    """Runs schema and data synchronization from ``source`` to ``target``.

    Tables are processed one at a time in foreign-key order and rows are
    written in batch order; nothing runs concurrently. Bulk endpoint support
    is tracked per run, so each call to ``sync_data`` or ``apply_patches``
    starts with fresh flags.
    """

    def __init__(
        self,
        source: TableApiGateway,
        target: TableApiGateway,
        on_progress: Callable[[ProgressState], None] | None = None,
    ) -> None:
        self.source = source
        self.target = target
        self.on_progress = on_progress

    async def resolve_tables(self, table_filter: Sequence[str] | None = None) -> list[str]:
        """Return the explicit filter (deduplicated) or every table of the source."""
        if table_filter:
            return list(dict.fromkeys(table_filter))
        return await collect_pages(self.source.list_tables)

    async def fetch_schemas(self, tables: Sequence[str]) -> dict[str, Any]:
        """Fetch source schemas; a table whose schema cannot be read maps to None."""
        schemas: dict[str, Any] = {}
        for table_id in tables:
            try:
                schemas[table_id] = await self.source.get_table_schema(table_id)
            except GatewayError as exc:
                logger.warning("Could not fetch schema for table %s: %s", table_id, exc)
                schemas[table_id] = None
        return schemas

    def order_tables(self, tables: Sequence[str], schemas: dict[str, Any]) -> list[str]:
        """Sort tables so referenced tables are written before referencing ones."""
        analysis = analyze_dependencies({table_id: schemas.get(table_id) for table_id in tables})
        logger.info("%s", format_dependency_info(analysis, list(tables)))
        for warning in analysis.warnings:
            logger.warning("%s", warning)
        candidates = set(tables)
        return [table_id for table_id in analysis.sorted_tables if table_id in candidates]

    async def sync_schema(self, dry_run: bool = False) -> SchemaSyncResult:
        """Replay the source's migrations on the target."""
        migrations = await self.source.list_migrations()
        if not migrations:
            logger.info("No migrations found in source")
            return SchemaSyncResult()
        logger.info("Found %d migration(s) in source", len(migrations))
        if dry_run:
            return analyze_migrations(migrations)
        return await apply_migrations(self.target, migrations)

    async def _source_rows(self, table_id: str) -> list[Row]:
        return await collect_pages(partial(self.source.list_rows, table_id))

    async def _target_rows(self, table_id: str) -> dict[str, Any]:
        rows = await collect_pages(partial(self.target.list_rows, table_id))
        return {row.id: row.data for row in rows}

    async def _analyze_table(self, table_id: str) -> TableSyncResult:
        source_rows = await self._source_rows(table_id)
        try:
            existing = await self._target_rows(table_id)
        except GatewayError as exc:
            logger.warning(
                'Could not read existing rows for table "%s" in target '
                "(table may not exist yet): %s",
                table_id,
                exc,
            )
            existing = {}
        plan = categorize(source_rows, existing)
        if plan.to_create or plan.to_update:
            logger.info(
                "%s: %d to create, %d to update, %d unchanged",
                table_id,
                len(plan.to_create),
                len(plan.to_update),
                plan.skipped_count,
            )
        return TableSyncResult(
            table_id=table_id,
            rows_created=len(plan.to_create),
            rows_updated=len(plan.to_update),
            rows_skipped=plan.skipped_count,
        )

    async def sync_table_rows(
        self,
        executor: BatchMutationExecutor,
        table_id: str,
        source_rows: Sequence[Row],
        batch_size: int,
    ) -> RowSyncStats:
        """Categorize one table's rows against the target and write the difference."""
        stats = RowSyncStats(total_rows=len(source_rows))
        existing = await self._target_rows(table_id)
        plan = categorize(source_rows, existing)
        stats.skipped = plan.skipped_count

        if plan.to_create:
            created = await executor.execute(
                table_id, plan.to_create, MutationKind.CREATE, batch_size
            )
            stats.created = created.success
            stats.create_errors = created.errors
        if plan.to_update:
            updated = await executor.execute(
                table_id, plan.to_update, MutationKind.UPDATE, batch_size
            )
            stats.updated = updated.success
            stats.update_errors = updated.errors
        return stats

    async def _sync_table(
        self, executor: BatchMutationExecutor, table_id: str, batch_size: int
    ) -> TableSyncResult:
        logger.info("Syncing table %s", table_id)
        source_rows = await self._source_rows(table_id)
        logger.info("Found %d row(s) in source", len(source_rows))
        stats = await self.sync_table_rows(executor, table_id, source_rows, batch_size)
        logger.info(
            "%s: %d created, %d updated, %d skipped, %d error(s)",
            table_id,
            stats.created,
            stats.updated,
            stats.skipped,
            stats.create_errors + stats.update_errors,
        )
        return TableSyncResult(
            table_id=table_id,
            rows_created=stats.created,
            rows_updated=stats.updated,
            rows_skipped=stats.skipped,
            errors=stats.create_errors + stats.update_errors,
        )

    @staticmethod
    def _aborted(
        message: str, data: DataSyncResult, run_result: SyncResult | None
    ) -> SyncAbortedError:
        aborted = run_result if run_result is not None else SyncResult()
        aborted.data = data
        return SyncAbortedError(message, aborted)

    async def sync_data(
        self, options: SyncOptions, run_result: SyncResult | None = None
    ) -> DataSyncResult:
        """Sync rows of every candidate table in dependency order.

        A ``RowSyncError`` or a failed remote read stops the run; the tables
        finished before it are reported through ``SyncAbortedError.result``,
        attached to ``run_result`` when one is given.
        """
        result = DataSyncResult()
        try:
            tables = await self.resolve_tables(options.tables)
        except GatewayError as exc:
            logger.error("Could not list source tables: %s", exc)
            msg = f"Data sync aborted while listing tables: {exc}"
            raise self._aborted(msg, result, run_result) from exc
        if not tables:
            logger.info("No tables to sync")
            return result
        logger.info("Found %d table(s) to sync", len(tables))

        schemas = await self.fetch_schemas(tables)
        ordered = self.order_tables(tables, schemas)

        if options.dry_run:
            for table_id in ordered:
                try:
                    result.add(await self._analyze_table(table_id))
                except GatewayError as exc:
                    logger.error('Dry run stopped due to error in table "%s": %s', table_id, exc)
                    msg = f'Data sync aborted at table "{table_id}": {exc}'
                    raise self._aborted(msg, result, run_result) from exc
            return result

        executor = BatchMutationExecutor(self.target, BulkSupportFlags(), self.on_progress)
        for table_id in ordered:
            try:
                result.add(await self._sync_table(executor, table_id, options.batch_size))
            except (RowSyncError, GatewayError) as exc:
                if isinstance(exc, RowSyncError):
                    for line in exc.hint_lines(options.batch_size):
                        logger.error("%s", line)
                else:
                    logger.error('Sync stopped due to error in table "%s": %s', table_id, exc)
                msg = f'Data sync aborted at table "{table_id}": {exc}'
                raise self._aborted(msg, result, run_result) from exc

        logger.info("Synced %d row(s)", result.total_changes)
        return result

    async def sync_all(self, options: SyncOptions) -> SyncResult:
        """Schema first, then data: rows cannot land in tables that do not exist yet."""
        result = SyncResult()
        if options.sync_schema:
            try:
                result.schema = await self.sync_schema(options.dry_run)
            except MigrationFailedError as exc:
                logger.error("%s", exc)
                result.schema = exc.partial
                msg = f"Schema sync aborted: {exc}"
                raise SyncAbortedError(msg, result) from exc
            except GatewayError as exc:
                logger.error("Could not read source migrations: %s", exc)
                msg = f"Schema sync aborted: {exc}"
                raise SyncAbortedError(msg, result) from exc
        if options.sync_data:
            result.data = await self.sync_data(options, run_result=result)

        if options.commit and not options.dry_run and result.change_count:
            try:
                result.revision_id = await self.target.create_revision(
                    commit_comment("Synchronized", result.change_count)
                )
            except GatewayError as exc:
                logger.error("Could not create revision: %s", exc)
                msg = f"Changes applied but revision was not created: {exc}"
                raise SyncAbortedError(msg, result) from exc
            logger.info("Created revision %s", result.revision_id)
        elif result.change_count and not options.dry_run:
            logger.info("Changes applied to draft; enable commit to create a revision")
        return result

    async def preview_patches(self, patch_files: Sequence[PatchFile]) -> DiffResult:
        """Compare patch files with the target's live rows without writing."""
        if not patch_files:
            msg = "No patches provided"
            raise ValueError(msg)
        table_id = patch_files[0].table

        async def load_row(row_id: str) -> Any | None:
            return await self.target.get_row(table_id, row_id)

        return await compare_with_api(patch_files, load_row)

    async def validate_patches(
        self, patch_files: Sequence[PatchFile]
    ) -> list[PatchValidationIssue]:
        """Check patch paths and values against the target's table schemas."""
        issues: list[PatchValidationIssue] = []
        schemas: dict[str, dict[str, Any] | GatewayError] = {}
        for patch_file in patch_files:
            if patch_file.table not in schemas:
                try:
                    schemas[patch_file.table] = await self.target.get_table_schema(
                        patch_file.table
                    )
                except GatewayError as exc:
                    schemas[patch_file.table] = exc
            schema = schemas[patch_file.table]
            if isinstance(schema, GatewayError):
                issues.append(
                    PatchValidationIssue(
                        patch_file.row_id, f"Failed to fetch table schema: {schema}"
                    )
                )
                continue
            issues.extend(validate_patch_file(patch_file, schema))
        return issues

    async def apply_patches(
        self,
        patch_files: Sequence[PatchFile],
        batch_size: int = DEFAULT_BATCH_SIZE,
        commit: bool = False,
    ) -> PatchApplyResult:
        """Apply the patches that would change live values; skip the rest.

        Every patch is validated against the target table schema first; any
        issue raises ``PatchValidationError`` before anything is written.
        """
        if not patch_files:
            msg = "No patches provided"
            raise ValueError(msg)
        issues = await self.validate_patches(patch_files)
        if issues:
            for issue in issues:
                logger.error("Validation failed for %s/%s", patch_files[0].table, issue)
            raise PatchValidationError(issues)
        diff = await self.preview_patches(patch_files)
        result = PatchApplyResult(diff=diff)
        if diff.summary.total_changes == 0:
            logger.info("No changes detected; all values match current data")
            result.rows_skipped = len(diff.rows)
            return result

        rows: list[Row] = []
        for row_diff in diff.rows:
            changes = [p for p in row_diff.patches if p.status is DiffStatus.CHANGE]
            if not changes:
                result.rows_skipped += 1
                continue
            wire: list[dict[str, Any]] = []
            for change in changes:
                entry: dict[str, Any] = {"op": change.op, "path": change.path}
                if change.op != PatchOp.REMOVE:
                    entry["value"] = change.new_value
                wire.append(entry)
            rows.append(Row(id=row_diff.row_id, data=wire))

        executor = BatchMutationExecutor(self.target, BulkSupportFlags(), self.on_progress)
        written = await executor.execute(diff.table, rows, MutationKind.PATCH, batch_size)
        result.rows_applied = written.success
        result.errors = written.errors
        logger.info(
            "Patched %d row(s) in %s, %d skipped, %d error(s)",
            result.rows_applied,
            diff.table,
            result.rows_skipped,
            result.errors,
        )

        if commit and result.rows_applied:
            result.revision_id = await self.target.create_revision(
                commit_comment("Applied patches to", result.rows_applied)
            )
            logger.info("Created revision %s", result.revision_id)
        return result
