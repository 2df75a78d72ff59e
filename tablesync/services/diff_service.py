"""Row comparison: content hashing, create/update/skip categorization, patch diffs."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from tablesync.exceptions import PathResolutionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from tablesync.gateway.base import Row
    from tablesync.schemas.patch import PatchFile

logger = logging.getLogger(__name__)

_PATH_TOKEN = re.compile(r"\.?([^.\[\]]+)|\[(\d+)\]")


class DiffStatus(StrEnum):
    CHANGE = "CHANGE"
    SKIP = "SKIP"
    ERROR = "ERROR"


@dataclass
class RowCategorization:
    """Partition of one table's source rows against the target."""

    to_create: list[Row] = field(default_factory=list)
    to_update: list[Row] = field(default_factory=list)
    skipped_count: int = 0


@dataclass
class PatchDiff:
    path: str
    current_value: Any
    new_value: Any
    op: str
    status: DiffStatus
    error: str | None = None


@dataclass
class RowDiff:
    row_id: str
    patches: list[PatchDiff] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return any(p.status is DiffStatus.CHANGE for p in self.patches)


@dataclass
class DiffSummary:
    total_rows: int = 0
    total_changes: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class DiffResult:
    """Patch-level comparison of one table's patch files with live rows."""

    table: str
    rows: list[RowDiff] = field(default_factory=list)
    summary: DiffSummary = field(default_factory=DiffSummary)


def _canonical(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def content_hash(value: Any) -> str:
    """Compute a SHA-256 hash of a JSON value's canonical form.

    Object key order does not matter; list order does. Integral floats hash
    like the equal int, booleans stay distinct from numbers.
    """
    encoded = json.dumps(
        _canonical(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality of two JSON values, via ``content_hash``."""
    return content_hash(left) == content_hash(right)


def categorize(source_rows: Sequence[Row], existing_rows: Mapping[str, Any]) -> RowCategorization:
    """Split source rows into rows to create, rows to update and unchanged rows.

    ``existing_rows`` maps target row id to row data.
    """
    result = RowCategorization()
    for row in source_rows:
        if row.id not in existing_rows:
            result.to_create.append(row)
        elif not values_equal(row.data, existing_rows[row.id]):
            result.to_update.append(row)
        else:
            result.skipped_count += 1
    return result


def parse_path(path: str) -> list[str | int]:
    """Split ``"a.b[0].c"`` into ``["a", "b", 0, "c"]``."""
    tokens: list[str | int] = []
    pos = 0
    while pos < len(path):
        match = _PATH_TOKEN.match(path, pos)
        if match is None:
            raise PathResolutionError(f"Invalid path '{path}' at position {pos}")
        key, index = match.groups()
        # Keys after the first token need a dot separator; the first never has one.
        if key is not None and match.group(0).startswith(".") != (pos > 0):
            raise PathResolutionError(f"Invalid path '{path}' at position {pos}")
        tokens.append(key if key is not None else int(index))
        pos = match.end()
    if not tokens:
        raise PathResolutionError("Path must not be empty")
    return tokens


def get_value_by_path(value: Any, path: str) -> Any:
    """Resolve a patch path against a JSON value.

    A missing key or an out-of-range index resolves to None. Indexing into a
    scalar, or using a key on a list, raises ``PathResolutionError``.
    """
    current = value
    for token in parse_path(path):
        if current is None:
            return None
        if isinstance(token, int):
            if not isinstance(current, list):
                raise PathResolutionError(f"Cannot index {type(current).__name__} with [{token}]")
            current = current[token] if token < len(current) else None
        else:
            if not isinstance(current, dict):
                raise PathResolutionError(f"Cannot read '{token}' of {type(current).__name__}")
            current = current.get(token)
    return current


def _error_row(row_id: str, message: str) -> RowDiff:
    return RowDiff(
        row_id=row_id,
        patches=[
            PatchDiff(
                path="",
                current_value=None,
                new_value=None,
                op="error",
                status=DiffStatus.ERROR,
                error=message,
            )
        ],
    )


async def compare_with_api(
    patch_files: Sequence[PatchFile],
    load_row: Callable[[str], Awaitable[Any | None]],
) -> DiffResult:
    """Compare each declared patch with the live value of its row.

    All patch files must target the same table. ``load_row`` returns the live
    row data, or None when the row does not exist. Totals are counted per
    patch; a row that cannot be loaded counts as a single error.
    """
    if not patch_files:
        raise ValueError("No patches provided")
    table = patch_files[0].table
    if any(p.table != table for p in patch_files):
        raise ValueError("All patches must be from the same table")

    result = DiffResult(table=table)
    summary = result.summary
    summary.total_rows = len(patch_files)

    for patch_file in patch_files:
        try:
            current_row = await load_row(patch_file.row_id)
        except Exception as exc:
            logger.warning("Failed to load row %s/%s: %s", table, patch_file.row_id, exc)
            result.rows.append(_error_row(patch_file.row_id, f"Failed to load row: {exc}"))
            summary.errors += 1
            continue

        if current_row is None:
            result.rows.append(_error_row(patch_file.row_id, "Row not found in API"))
            summary.errors += 1
            continue

        row_diff = RowDiff(row_id=patch_file.row_id)
        for patch in patch_file.patches:
            try:
                current_value = get_value_by_path(current_row, patch.path)
            except PathResolutionError as exc:
                row_diff.patches.append(
                    PatchDiff(
                        path=patch.path,
                        current_value=None,
                        new_value=patch.value,
                        op=patch.op.value,
                        status=DiffStatus.ERROR,
                        error=f"Failed to get value: {exc}",
                    )
                )
                summary.errors += 1
                continue

            if values_equal(current_value, patch.value):
                status = DiffStatus.SKIP
                summary.skipped += 1
            else:
                status = DiffStatus.CHANGE
                summary.total_changes += 1
            row_diff.patches.append(
                PatchDiff(
                    path=patch.path,
                    current_value=current_value,
                    new_value=patch.value,
                    op=patch.op.value,
                    status=status,
                )
            )
        result.rows.append(row_diff)

    return result
