"""Engine exception types.

Convention:
- ``GatewayError``: raised by gateway implementations for every failed remote
  call. ``status_code`` is the HTTP status, or ``None`` for transport failures
  (connection refused, timeouts).
- ``RowSyncError`` and ``MigrationFailedError``: fatal for the current run. They
  unwind the orchestrator, which re-raises them wrapped in ``SyncAbortedError``
  together with the statistics gathered so far.
- ``PatchValidationError``: raised before any patch is written when a patch
  path or value does not fit the target table schema.
- Recoverable conditions (row-level write failures, unsupported bulk endpoints,
  missing schemas) are logged and counted, never raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tablesync.services.migration_service import SchemaSyncResult
    from tablesync.services.patch_service import PatchValidationIssue
    from tablesync.services.sync_service import SyncResult

HTTP_NOT_FOUND = 404
HTTP_PAYLOAD_TOO_LARGE = 413


class TableSyncError(Exception):
    """Base class for all tablesync errors."""


class GatewayError(TableSyncError):
    """A remote API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_supported(self) -> bool:
        """True when the endpoint does not exist on the remote (HTTP 404)."""
        return self.status_code == HTTP_NOT_FOUND

    @property
    def is_payload_too_large(self) -> bool:
        return self.status_code == HTTP_PAYLOAD_TOO_LARGE


class TableOperationError(TableSyncError):
    """A write against a single table failed in a way that stops the run."""

    def __init__(
        self,
        message: str,
        table_id: str,
        status_code: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        super().__init__(message)
        self.table_id = table_id
        self.status_code = status_code
        self.batch_size = batch_size

    def hint_lines(self, default_batch_size: int | None = None) -> list[str]:
        """Return operator-facing remediation lines for this failure."""
        lines = [
            f'Operation stopped due to error in table "{self.table_id}"',
            f"Error: {self}",
        ]
        if self.status_code == HTTP_PAYLOAD_TOO_LARGE:
            batch_size = self.batch_size if self.batch_size is not None else default_batch_size
            lines.append("The request payload is too large (HTTP 413).")
            if batch_size is not None:
                lines.append(f"Current batch size: {batch_size} rows")
            lines.append("Try reducing the batch size (e.g. TABLESYNC_BATCH_SIZE=50 or 10).")
        elif self.status_code is not None:
            lines.append(f"HTTP status code: {self.status_code}")
        return lines


class RowSyncError(TableOperationError):
    """Raised when row writes for a table cannot continue."""


class MigrationFailedError(TableSyncError):
    """Raised when the target reports a migration as failed.

    ``partial`` holds what was applied before the failure; nothing after the
    failed migration was attempted and nothing before it is rolled back.
    """

    def __init__(
        self,
        migration_id: str,
        message: str,
        partial: SchemaSyncResult | None = None,
    ) -> None:
        super().__init__(f"Migration {migration_id} failed: {message}")
        self.migration_id = migration_id
        self.reason = message
        self.partial = partial


class SyncAbortedError(TableSyncError):
    """A sync run stopped early; ``result`` holds the statistics gathered so far."""

    def __init__(self, message: str, result: SyncResult) -> None:
        super().__init__(message)
        self.result = result


class PathResolutionError(ValueError):
    """Raised when a patch path cannot be resolved against a row value."""


class PatchValidationError(TableSyncError):
    """Patches do not fit the target table schema; nothing was written."""

    def __init__(self, issues: list[PatchValidationIssue]) -> None:
        super().__init__(f"{len(issues)} patch validation error(s)")
        self.issues = issues
