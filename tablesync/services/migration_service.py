"""Applying schema migrations to a target, in order, stopping at the first failure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tablesync.exceptions import GatewayError, MigrationFailedError
from tablesync.schemas.migration import (
    InitMigration,
    MigrationStatus,
    RemoveMigration,
    RenameMigration,
    UpdateMigration,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tablesync.gateway.base import TableApiGateway
    from tablesync.schemas.migration import Migration

logger = logging.getLogger(__name__)


@dataclass
class SchemaSyncResult:
    migrations_applied: int = 0
    tables_created: list[str] = field(default_factory=list)
    tables_updated: list[str] = field(default_factory=list)
    tables_removed: list[str] = field(default_factory=list)

    def record(self, migration: Migration) -> None:
        """File the migration's table under the bucket matching its kind."""
        if isinstance(migration, InitMigration):
            self.tables_created.append(migration.table_id)
        elif isinstance(migration, UpdateMigration):
            self.tables_updated.append(migration.table_id)
        elif isinstance(migration, RemoveMigration):
            self.tables_removed.append(migration.table_id)
        elif isinstance(migration, RenameMigration):
            self.tables_updated.append(f"{migration.table_id} → {migration.next_table_id}")


def analyze_migrations(migrations: Sequence[Migration]) -> SchemaSyncResult:
    """Dry run: classify migrations by kind without contacting the target."""
    result = SchemaSyncResult()
    for migration in migrations:
        result.record(migration)
    return result


async def apply_migrations(
    gateway: TableApiGateway, migrations: Sequence[Migration]
) -> SchemaSyncResult:
    """Apply migrations one at a time, in order.

    A skipped migration means the target already has it. A failed migration
    raises ``MigrationFailedError`` and nothing after it is attempted;
    migrations applied before it stay applied.
    """
    result = SchemaSyncResult()
    for migration in migrations:
        try:
            response = await gateway.apply_migration(migration)
        except GatewayError as exc:
            raise MigrationFailedError(migration.id, str(exc), partial=result) from exc

        if response.status is MigrationStatus.FAILED:
            raise MigrationFailedError(
                response.id or migration.id,
                response.error or "Unknown error",
                partial=result,
            )

        if response.status is MigrationStatus.SKIPPED:
            logger.info("Skipped migration %s (already applied)", response.id)
            continue

        result.migrations_applied += 1
        result.record(migration)
        logger.info(
            "Applied migration %s (%s %s)", migration.id, migration.change_type, migration.table_id
        )

    logger.info("Applied %d migration(s)", result.migrations_applied)
    return result
