"""
metadata/validator.py: JSON Schema validation for dbforge entity YAML files.

Usage:
    from dbforge.metadata.validator import validate_path

    issues = validate_path(Path("schemas"))
    for issue in issues:
        print(issue)

PyYAML quirk: the bare value ``on`` / ``off`` parses as a boolean, and a bare
``hidden: yes`` does too. Boolean ``hidden`` values are accepted by the schema,
so no preprocessing is needed beyond parsing.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

ENTITY_SCHEMA = "entity.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for an entity YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields[0]/type"
    severity: str = "error"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    schema_path = _SCHEMAS_DIR / name
    with schema_path.open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    """Build a jsonschema Registry containing the bundled schemas."""
    resources = []
    for name in ("_defs.schema.json", ENTITY_SCHEMA):
        schema = _load_schema(name)
        resources.append(
            (schema["$id"], Resource(contents=schema, specification=DRAFT202012))
        )
    return Registry().with_resources(resources)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def _semantic_issues(yaml_path: Path, doc: dict[str, Any]) -> list[ValidationIssue]:
    """Checks JSON Schema cannot express: unique names, one primary key, references."""
    issues: list[ValidationIssue] = []
    seen_names: set[str] = set()
    seen_columns: set[str] = set()
    primary_keys = 0
    for i, spec in enumerate(doc.get("fields") or []):
        if not isinstance(spec, dict):
            continue
        name = spec.get("name")
        column = spec.get("columnName", name)
        if name in seen_names:
            issues.append(ValidationIssue(yaml_path, f"Duplicate field name '{name}'", f"fields[{i}]"))
        elif column in seen_columns:
            issues.append(ValidationIssue(yaml_path, f"Duplicate column name '{column}'", f"fields[{i}]"))
        seen_names.add(name)
        seen_columns.add(column)
        if spec.get("primaryKey"):
            primary_keys += 1
    if primary_keys > 1:
        issues.append(ValidationIssue(yaml_path, "More than one primary key field", "fields"))
    scopes = doc.get("scopes") or {}
    for scope in doc.get("defaultScopes") or []:
        if scope not in scopes:
            issues.append(
                ValidationIssue(yaml_path, f"Default scope '{scope}' is not defined", "defaultScopes")
            )
    populated = {
        spec.get("name") for spec in doc.get("fields") or [] if isinstance(spec, dict) and spec.get("populate")
    }
    for name in doc.get("defaultPopulates") or []:
        if name not in populated:
            issues.append(
                ValidationIssue(
                    yaml_path,
                    f"Default populate '{name}' names a field without 'populate'; it is ignored",
                    "defaultPopulates",
                    severity="warning",
                )
            )
    return issues


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_yaml_file(
    yaml_path: Path,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """
    Validate a single entity YAML file.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    if registry is None:
        registry = _load_registry()

    validator = Draft202012Validator(_load_schema(ENTITY_SCHEMA), registry=registry)

    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(raw), key=_json_path)
    ]
    if not issues and isinstance(raw, dict):
        issues.extend(_semantic_issues(yaml_path, raw))
    return issues


def validate_path(path: Path, *, strict: bool = False) -> list[ValidationIssue]:
    """
    Validate one YAML file, or every ``*.yaml`` file in a directory.

    Args:
        path:   File or directory.
        strict: Escalate warnings to errors.
    """
    if not path.exists():
        return [ValidationIssue(file=path, message=f"Path does not exist: {path}")]

    registry = _load_registry()
    files = [path] if path.is_file() else sorted(path.glob("*.yaml"))
    logger.debug("Validating %d schema file(s) under %s", len(files), path)

    all_issues: list[ValidationIssue] = []
    for yaml_file in files:
        file_issues = validate_yaml_file(yaml_file, registry=registry)
        if strict:
            for issue in file_issues:
                issue.severity = "error"
        all_issues.extend(file_issues)
    return all_issues
