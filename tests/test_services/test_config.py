"""Tests for configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tablesync.config import EndpointSettings, Settings
from tablesync.services.sync_service import SyncOptions

if TYPE_CHECKING:
    from pathlib import Path


def _endpoint(revision: str = "draft") -> EndpointSettings:
    return EndpointSettings(
        base_url="https://api.example.com", organization="acme", project="blog", revision=revision
    )


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.source is None
        assert s.batch_size == 100
        assert s.page_size == 100
        assert s.request_timeout_seconds == 60.0
        assert s.sync_schema is True
        assert s.dry_run is False

    def test_nested_endpoints_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TABLESYNC_SOURCE__BASE_URL", "https://a.example.com")
        monkeypatch.setenv("TABLESYNC_SOURCE__ORGANIZATION", "acme")
        monkeypatch.setenv("TABLESYNC_SOURCE__PROJECT", "blog")
        monkeypatch.setenv("TABLESYNC_SOURCE__REVISION", "head")
        monkeypatch.setenv("TABLESYNC_BATCH_SIZE", "25")
        monkeypatch.setenv("TABLESYNC_TABLES", '["posts", "users"]')

        s = Settings(_env_file=None)

        assert s.source is not None
        assert s.source.base_url == "https://a.example.com"
        assert s.source.revision == "head"
        assert s.source.branch == "master"
        assert s.batch_size == 25
        assert s.tables == ["posts", "users"]

    def test_rejects_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, batch_size=0)

    def test_rejects_oversized_pages(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, page_size=5000)


class TestValidateRuntime:
    def test_valid(self) -> None:
        Settings(_env_file=None, source=_endpoint("head"), target=_endpoint()).validate_runtime()

    def test_reports_every_violation(self) -> None:
        s = Settings(_env_file=None, sync_schema=False, sync_data=False)
        with pytest.raises(ValueError) as exc_info:
            s.validate_runtime()
        message = str(exc_info.value)
        assert "TABLESYNC_SOURCE" in message
        assert "TABLESYNC_TARGET" in message
        assert "must be enabled" in message

    def test_target_must_be_draft(self) -> None:
        s = Settings(_env_file=None, source=_endpoint(), target=_endpoint("head"))
        with pytest.raises(ValueError, match="draft"):
            s.validate_runtime()


    def test_patch_mode_needs_only_target(self, tmp_path: Path) -> None:
        Settings(
            _env_file=None, target=_endpoint(), patches=tmp_path, sync_schema=False, sync_data=False
        ).validate_runtime()

    def test_patch_mode_still_needs_target(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="TABLESYNC_TARGET") as exc_info:
            Settings(_env_file=None, patches=tmp_path).validate_runtime()
        assert "TABLESYNC_SOURCE" not in str(exc_info.value)


class TestSyncOptions:
    def test_from_settings(self) -> None:
        s = Settings(_env_file=None, dry_run=True, tables=["posts"], batch_size=10)
        options = SyncOptions.from_settings(s)
        assert options.dry_run is True
        assert options.tables == ["posts"]
        assert options.batch_size == 10

    def test_empty_table_filter_means_all(self) -> None:
        options = SyncOptions.from_settings(Settings(_env_file=None))
        assert options.tables is None
