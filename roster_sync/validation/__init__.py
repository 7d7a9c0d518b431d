"""
Schema discovery and validation for spreadsheet-backed tables.

Modules:
    columns: Column contracts, field roles, tagged cell values and typed accessors
    schemas: Schema map discovery and header validation
"""

from roster_sync.validation.columns import (
    ROSTER_CONTRACT,
    ColumnContract,
    ColumnKind,
    ColumnSpec,
    FieldRole,
    LinkedCell,
    PatternColumn,
    PlainCell,
    cell_text,
    coerce_bool,
    to_cell,
)
from roster_sync.validation.schemas import (
    SchemaMap,
    ValidationError,
    ValidationResult,
    build_schema_map,
    create_validation_error_message,
    require_valid_schema,
    validate_columns,
    validate_row_kinds,
)

__all__ = [
    # Contracts
    "ROSTER_CONTRACT",
    "ColumnContract",
    "ColumnKind",
    "ColumnSpec",
    "FieldRole",
    "PatternColumn",
    # Cells
    "LinkedCell",
    "PlainCell",
    "cell_text",
    "coerce_bool",
    "to_cell",
    # Validation
    "SchemaMap",
    "ValidationError",
    "ValidationResult",
    "build_schema_map",
    "create_validation_error_message",
    "require_valid_schema",
    "validate_columns",
    "validate_row_kinds",
]
