#!/usr/bin/env python3
"""
Schema Discovery & Validation

Turns the header row of a spreadsheet-backed table into a name -> index map and
checks it against a declared column contract:
- Named columns (required and optional) are matched by exact, trimmed name
- Pattern columns are matched by case-insensitive regex; the first header that
  matches wins
- Every missing item is collected into one result so callers never have to
  validate repeatedly to discover the next problem

Usage:
    from roster_sync.validation.schemas import validate_columns, require_valid_schema

    result = validate_columns(header_row, ROSTER_CONTRACT)
    if not result.is_valid:
        print(create_validation_error_message(result))

    # Fail fast before building anything that trusts the schema
    schema_map, result = require_valid_schema(header_row, ROSTER_CONTRACT)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from roster_sync.errors import SchemaValidationError
from roster_sync.validation.columns import (
    ROSTER_CONTRACT,
    ColumnContract,
    ColumnKind,
    cell_at,
    cell_text,
    parse_date,
    parse_number,
)

logger = logging.getLogger(__name__)

SchemaMap = Mapping[str, int]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
BOOLEAN_VALUES = {"true", "false", "yes", "no"}


# Validation result types
@dataclass
class ValidationError:
    """A single validation problem."""
    field: str
    message: str
    value: Any = None
    constraint: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of validating a header row against a column contract."""
    is_valid: bool = True
    missing_required: List[str] = field(default_factory=list)
    missing_optional: List[str] = field(default_factory=list)
    extra_columns: List[str] = field(default_factory=list)
    pattern_matches: Dict[str, str] = field(default_factory=dict)
    pattern_indices: Dict[str, int] = field(default_factory=dict)
    missing_patterns: List[str] = field(default_factory=list)
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    def add_error(self, field: str, message: str, value: Any = None, constraint: str = None) -> None:
        """Add a validation error."""
        self.errors.append(ValidationError(field, message, value, constraint))
        self.is_valid = False

    def add_warning(self, field: str, message: str, value: Any = None) -> None:
        """Add a validation warning (doesn't fail validation)."""
        self.warnings.append(ValidationError(field, message, value))


def build_schema_map(header_row: Sequence[Any]) -> SchemaMap:
    """
    Build a read-only name -> zero-based index map from a header row.

    Scans left to right, skips blank headers and keeps the first index for a
    repeated name. A fresh map is returned on every call.
    """
    mapping: Dict[str, int] = {}
    for index, raw in enumerate(header_row):
        name = cell_text(raw)
        if not name:
            continue
        mapping.setdefault(name, index)
    return MappingProxyType(mapping)


def validate_columns(
    header_row: Sequence[Any],
    contract: ColumnContract = ROSTER_CONTRACT,
) -> ValidationResult:
    """
    Validate a header row against ``contract``.

    ``is_valid`` is True only if every required column is present and every
    pattern column matched at least one header.
    """
    schema_map = build_schema_map(header_row)
    result = ValidationResult()

    for spec in contract.columns:
        if spec.name in schema_map:
            continue
        if spec.required:
            result.missing_required.append(spec.name)
            result.add_error(spec.name, f"Missing required column: {spec.name}", constraint="required")
        else:
            result.missing_optional.append(spec.name)
            result.add_warning(spec.name, f"Missing optional column: {spec.name}")

    headers = [(index, cell_text(raw)) for index, raw in enumerate(header_row)]
    for pattern in contract.patterns:
        for index, header in headers:
            if header and pattern.matches(header):
                result.pattern_matches[pattern.name] = header
                result.pattern_indices[pattern.name] = index
                break
        else:
            result.missing_patterns.append(pattern.name)
            result.add_error(
                pattern.name,
                f"Missing {pattern.name} column (should match pattern: {pattern.pattern})",
                constraint=pattern.pattern,
            )

    expected = contract.names
    matched_by_pattern = set(result.pattern_matches.values())
    result.extra_columns = [
        header for _, header in headers
        if header and header not in expected and header not in matched_by_pattern
    ]

    return result


def create_validation_error_message(result: ValidationResult) -> str:
    """One human-readable message listing every missing item."""
    errors: List[str] = []

    if result.missing_required:
        errors.append(f"Missing required columns: {', '.join(result.missing_required)}")

    for error in result.errors:
        if error.constraint != "required":
            errors.append(error.message)

    if result.missing_optional:
        errors.append(f"Missing optional columns: {', '.join(result.missing_optional)}")

    return "\n".join(errors)


def require_valid_schema(
    header_row: Sequence[Any],
    contract: ColumnContract = ROSTER_CONTRACT,
    table_name: str = "roster",
) -> tuple[SchemaMap, ValidationResult]:
    """
    Discover and validate a schema, raising SchemaValidationError when invalid.

    Returns:
        Tuple of (schema map, validation result)
    """
    result = validate_columns(header_row, contract)
    if not result.is_valid:
        message = f"Schema validation failed for {table_name}:\n{create_validation_error_message(result)}"
        logger.error(message)
        raise SchemaValidationError(message, result)

    if result.missing_optional:
        logger.warning(f"{table_name}: optional columns missing: {', '.join(result.missing_optional)}")

    return build_schema_map(header_row), result


def validate_row_kinds(
    row: Sequence[Any],
    schema_map: SchemaMap,
    contract: ColumnContract = ROSTER_CONTRACT,
    row_number: Optional[int] = None,
) -> ValidationResult:
    """
    Check that non-blank cells fit their declared kind.

    Problems are recorded as warnings; the row is never rejected.
    """
    result = ValidationResult()

    for spec in contract.columns:
        index = schema_map.get(spec.name)
        text = cell_at(row, index)
        if not text:
            continue

        if spec.kind is ColumnKind.NUMBER and parse_number(text) is None:
            result.add_warning(spec.name, "expected a number", text)
        elif spec.kind is ColumnKind.EMAIL and not EMAIL_PATTERN.match(text):
            result.add_warning(spec.name, "expected an email address", text)
        elif spec.kind is ColumnKind.BOOLEAN and text.lower() not in BOOLEAN_VALUES:
            result.add_warning(spec.name, "expected TRUE/FALSE", text)
        elif spec.kind is ColumnKind.DATE and parse_date(text) is None:
            result.add_warning(spec.name, "expected a date", text)

    if result.warnings:
        where = f"row {row_number}" if row_number is not None else "row"
        fields = ", ".join(w.field for w in result.warnings)
        logger.warning(f"{where}: cells do not match declared kinds: {fields}")

    return result
