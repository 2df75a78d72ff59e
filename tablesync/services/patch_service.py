"""Patch file loading and validation against a table's JSON schema."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import TypeAdapter, ValidationError
from referencing.exceptions import Unresolvable

from tablesync.exceptions import PathResolutionError
from tablesync.schemas.patch import PatchFile, PatchFileMerged, PatchOp
from tablesync.services.diff_service import parse_path

logger = logging.getLogger(__name__)

_PATCH_DOCUMENT_ADAPTER: TypeAdapter[PatchFileMerged | PatchFile] = TypeAdapter(
    PatchFileMerged | PatchFile
)


@dataclass
class PatchValidationIssue:
    row_id: str
    message: str
    path: str | None = None

    def __str__(self) -> str:
        location = f" [{self.path}]" if self.path else ""
        return f"{self.row_id}: {self.message}{location}"


def load_patch_document(file: Path) -> list[PatchFile]:
    """Load one JSON file holding either a ``PatchFile`` or a ``PatchFileMerged``."""
    try:
        document = _PATCH_DOCUMENT_ADAPTER.validate_json(file.read_bytes())
    except ValidationError as exc:
        msg = f"Invalid patch file format in {file}. Expected PatchFile or PatchFileMerged: {exc}"
        raise ValueError(msg) from exc
    if isinstance(document, PatchFileMerged):
        return document.to_patch_files()
    return [document]


def load_patch_files(path: Path) -> list[PatchFile]:
    """Load patch files from a single file or every ``*.json`` file of a directory.

    Files in a directory are read in name order.
    """
    if not path.exists():
        raise ValueError(f"Patch input {path} does not exist")
    if not path.is_dir():
        return load_patch_document(path)

    files = sorted(p for p in path.iterdir() if p.suffix == ".json" and p.is_file())
    if not files:
        raise ValueError(f"No JSON files found in {path}")
    patch_files: list[PatchFile] = []
    for file in files:
        logger.debug("Reading patches from %s", file)
        patch_files.extend(load_patch_document(file))
    return patch_files


def schema_at_path(schema: dict[str, Any], path: str) -> dict[str, Any] | None:
    """Return the sub-schema a patch path points at, or None if it does not exist.

    Keys descend through ``properties`` and indexes through ``items``.
    """
    current: Any = schema
    for token in parse_path(path):
        if not isinstance(current, dict):
            return None
        if isinstance(token, int):
            current = current.get("items")
        else:
            current = current.get("properties", {}).get(token)
        if current is None:
            return None
    return current if isinstance(current, dict) else None


def _value_error(value: Any, field_schema: dict[str, Any], path: str) -> str | None:
    try:
        errors = [error.message for error in Draft202012Validator(field_schema).iter_errors(value)]
    except (SchemaError, Unresolvable) as exc:
        return f"Failed to validate value at '{path}': {exc}"
    if errors:
        return f"Value at '{path}' validation failed: {', '.join(errors)}"
    return None


def validate_patch_file(
    patch_file: PatchFile, table_schema: dict[str, Any]
) -> list[PatchValidationIssue]:
    """Check that every patch path exists in ``table_schema`` and every value fits it."""
    issues: list[PatchValidationIssue] = []
    for patch in patch_file.patches:
        try:
            field_schema = schema_at_path(table_schema, patch.path)
        except PathResolutionError as exc:
            issues.append(
                PatchValidationIssue(
                    patch_file.row_id, f"Invalid path '{patch.path}': {exc}", patch.path
                )
            )
            continue
        if field_schema is None:
            issues.append(
                PatchValidationIssue(
                    patch_file.row_id,
                    f"Path '{patch.path}' does not exist in table schema",
                    patch.path,
                )
            )
            continue
        if patch.op is PatchOp.REMOVE:
            continue
        error = _value_error(patch.value, field_schema, patch.path)
        if error is not None:
            issues.append(PatchValidationIssue(patch_file.row_id, error, patch.path))
    return issues
