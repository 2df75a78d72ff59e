"""Tests for applying schema migrations."""

from __future__ import annotations

import pytest

from tablesync.exceptions import GatewayError, MigrationFailedError
from tablesync.schemas.migration import (
    InitMigration,
    MigrationApplyResult,
    MigrationStatus,
    RemoveMigration,
    RenameMigration,
    UpdateMigration,
)
from tablesync.services.migration_service import analyze_migrations, apply_migrations
from tests.conftest import FakeGateway


def _migrations() -> list:
    return [
        InitMigration(id="m1", table_id="users", table_schema={"type": "object"}),
        InitMigration(id="m2", table_id="posts", table_schema={"type": "object"}),
        UpdateMigration(id="m3", table_id="posts", patches=[{"op": "add", "path": "/x"}]),
        RenameMigration(id="m4", table_id="posts", next_table_id="articles"),
        RemoveMigration(id="m5", table_id="users"),
    ]


class TestAnalyzeMigrations:
    def test_classifies_without_applying(self) -> None:
        result = analyze_migrations(_migrations())
        assert result.migrations_applied == 0
        assert result.tables_created == ["users", "posts"]
        assert result.tables_updated == ["posts", "posts → articles"]
        assert result.tables_removed == ["users"]


class TestApplyMigrations:
    async def test_applies_in_order(self) -> None:
        gateway = FakeGateway()

        result = await apply_migrations(gateway, _migrations())

        assert gateway.applied == ["m1", "m2", "m3", "m4", "m5"]
        assert result.migrations_applied == 5
        assert result.tables_created == ["users", "posts"]
        assert result.tables_updated == ["posts", "posts → articles"]
        assert result.tables_removed == ["users"]

    async def test_skipped_migrations_are_not_counted(self) -> None:
        gateway = FakeGateway()
        gateway.migration_results["m1"] = MigrationApplyResult(
            id="m1", status=MigrationStatus.SKIPPED
        )

        result = await apply_migrations(gateway, _migrations()[:2])

        assert result.migrations_applied == 1
        assert result.tables_created == ["posts"]

    async def test_failure_stops_before_later_migrations(self) -> None:
        gateway = FakeGateway()
        gateway.migration_results["m3"] = MigrationApplyResult(
            id="m3", status=MigrationStatus.FAILED, error="bad patch"
        )

        with pytest.raises(MigrationFailedError) as exc_info:
            await apply_migrations(gateway, _migrations())

        assert [c[1] for c in gateway.calls_to("apply_migration")] == ["m1", "m2", "m3"]
        assert exc_info.value.migration_id == "m3"
        assert str(exc_info.value) == "Migration m3 failed: bad patch"
        assert exc_info.value.partial is not None
        assert exc_info.value.partial.migrations_applied == 2

    async def test_failure_without_message(self) -> None:
        gateway = FakeGateway()
        gateway.migration_results["m1"] = MigrationApplyResult(
            id="m1", status=MigrationStatus.FAILED
        )

        with pytest.raises(MigrationFailedError, match="Unknown error"):
            await apply_migrations(gateway, _migrations())

    async def test_gateway_error_is_migration_failure(self) -> None:
        gateway = FakeGateway()
        gateway.errors["apply_migration"] = GatewayError("unavailable", status_code=503)

        with pytest.raises(MigrationFailedError) as exc_info:
            await apply_migrations(gateway, _migrations())

        assert exc_info.value.migration_id == "m1"
        assert isinstance(exc_info.value.__cause__, GatewayError)
        assert len(gateway.calls_to("apply_migration")) == 1

    async def test_no_migrations(self) -> None:
        result = await apply_migrations(FakeGateway(), [])
        assert result.migrations_applied == 0
