"""Configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EndpointSettings(BaseModel):
    """Where one side of the sync lives."""

    base_url: str
    token: str = ""
    organization: str
    project: str
    branch: str = "master"
    revision: str = "draft"


class Settings(BaseSettings):
    """tablesync settings.

    Nested endpoint fields use a double underscore, e.g.
    ``TABLESYNC_SOURCE__BASE_URL`` or ``TABLESYNC_TARGET__TOKEN``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Endpoints
    source: EndpointSettings | None = None
    target: EndpointSettings | None = None

    # Transport
    batch_size: int = Field(default=100, ge=1)
    page_size: int = Field(default=100, ge=1, le=1000)
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    # Run
    sync_schema: bool = True
    sync_data: bool = True
    dry_run: bool = False
    commit: bool = False
    tables: list[str] = Field(default_factory=list)

    # Patch mode: apply patch files to the target instead of syncing
    patches: Path | None = None

    debug: bool = False

    def validate_runtime(self) -> None:
        """Validate that the settings describe a runnable sync."""
        violations: list[str] = []
        if self.source is None and self.patches is None:
            violations.append("TABLESYNC_SOURCE must be configured")
        if self.target is None:
            violations.append("TABLESYNC_TARGET must be configured")
        elif self.target.revision != "draft":
            violations.append("TABLESYNC_TARGET__REVISION must be 'draft'; writes go to drafts")
        if self.patches is None and not self.sync_schema and not self.sync_data:
            violations.append("TABLESYNC_SYNC_SCHEMA or TABLESYNC_SYNC_DATA must be enabled")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
