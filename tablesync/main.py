"""Command-line entry point: sync one project endpoint into another, or apply patches."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from tablesync.config import Settings
from tablesync.exceptions import GatewayError, PatchValidationError, SyncAbortedError
from tablesync.gateway.http import open_gateway
from tablesync.services.diff_service import DiffStatus
from tablesync.services.patch_service import load_patch_files
from tablesync.services.sync_service import (
    PatchApplyResult,
    SyncOptions,
    SyncOrchestrator,
    SyncResult,
)

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def log_summary(result: SyncResult) -> None:
    if result.schema is not None:
        schema = result.schema
        logger.info(
            "Schema: %d migration(s) applied (%d created, %d updated, %d removed)",
            schema.migrations_applied,
            len(schema.tables_created),
            len(schema.tables_updated),
            len(schema.tables_removed),
        )
    if result.data is not None:
        data = result.data
        logger.info(
            "Data: %d table(s), %d created, %d updated, %d skipped, %d error(s)",
            len(data.tables),
            data.total_rows_created,
            data.total_rows_updated,
            data.total_rows_skipped,
            data.total_errors,
        )
    if result.revision_id is not None:
        logger.info("Revision: %s", result.revision_id)


async def run(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> SyncResult:
    """Run one sync with the given settings and return its result."""
    settings.validate_runtime()
    assert settings.source is not None
    assert settings.target is not None
    options = SyncOptions.from_settings(settings)
    logger.info(
        "Starting sync (schema=%s, data=%s, dry_run=%s, commit=%s)",
        options.sync_schema,
        options.sync_data,
        options.dry_run,
        options.commit,
    )

    async with (
        open_gateway(
            settings.source,
            timeout=settings.request_timeout_seconds,
            page_size=settings.page_size,
            transport=transport,
        ) as source,
        open_gateway(
            settings.target,
            timeout=settings.request_timeout_seconds,
            page_size=settings.page_size,
            transport=transport,
        ) as target,
    ):
        result = await SyncOrchestrator(source, target).sync_all(options)

    log_summary(result)
    return result


def log_patch_summary(result: PatchApplyResult) -> None:
    summary = result.diff.summary
    logger.info(
        "Patches for %s: %d row(s), %d change(s), %d unchanged, %d diff error(s)",
        result.diff.table,
        summary.total_rows,
        summary.total_changes,
        summary.skipped,
        summary.errors,
    )
    logger.info(
        "Applied %d row(s), %d skipped, %d error(s)",
        result.rows_applied,
        result.rows_skipped,
        result.errors,
    )
    if result.revision_id is not None:
        logger.info("Revision: %s", result.revision_id)


async def run_patches(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> PatchApplyResult:
    """Apply (or, in a dry run, preview) the patch files named by ``settings.patches``."""
    settings.validate_runtime()
    assert settings.patches is not None
    assert settings.target is not None
    patch_files = load_patch_files(settings.patches)
    logger.info("Loaded %d patch file(s) from %s", len(patch_files), settings.patches)

    async with open_gateway(
        settings.target,
        timeout=settings.request_timeout_seconds,
        page_size=settings.page_size,
        transport=transport,
    ) as target:
        orchestrator = SyncOrchestrator(target, target)
        if settings.dry_run:
            result = PatchApplyResult(diff=await orchestrator.preview_patches(patch_files))
            for row in result.diff.rows:
                for change in row.patches:
                    if change.status is DiffStatus.CHANGE:
                        logger.info(
                            "%s %s: %r -> %r",
                            row.row_id,
                            change.path,
                            change.current_value,
                            change.new_value,
                        )
        else:
            result = await orchestrator.apply_patches(
                patch_files, batch_size=settings.batch_size, commit=settings.commit
            )

    log_patch_summary(result)
    return result


def cli_entry() -> None:
    """CLI entry point. Configuration comes from ``TABLESYNC_*`` variables.

    With ``TABLESYNC_PATCHES`` set, patch files are applied to the target
    instead of syncing from a source.
    """
    try:
        settings = Settings()
        configure_logging(settings.debug)
        if settings.patches is not None:
            patch_result = asyncio.run(run_patches(settings))
            if patch_result.errors:
                logger.error("Some patches failed to apply")
                sys.exit(1)
        else:
            asyncio.run(run(settings))
    except SyncAbortedError as exc:
        logger.error("Sync aborted: %s", exc)
        log_summary(exc.result)
        sys.exit(1)
    except PatchValidationError as exc:
        logger.error("%s; fix them before applying", exc)
        sys.exit(1)
    except (GatewayError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)
