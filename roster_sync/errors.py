"""
Error taxonomy for the roster data pipeline.

Propagation policy:
    SchemaValidationError  fatal to whatever is about to trust the schema; never absorbed
    SourceFetchError       recoverable; caches fall back to the previous value when one exists
    SourceParseError       row-scoped; the parser drops the row and keeps going
    WriteError             row-scoped during synthesis; logged, the batch continues
    IdentityAmbiguityWarning  not an error; the first maximal candidate wins
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from roster_sync.validation.schemas import ValidationResult


class RosterError(Exception):
    """Base class for all roster pipeline errors."""


class SchemaValidationError(RosterError):
    """A header row does not satisfy its column contract."""

    def __init__(self, message: str, result: Optional["ValidationResult"] = None):
        super().__init__(message)
        self.result = result

    @property
    def missing(self) -> list[str]:
        """Every missing required column and unmatched pattern column."""
        if self.result is None:
            return []
        return list(self.result.missing_required) + list(self.result.missing_patterns)


class SourceFetchError(RosterError):
    """An upstream read (sheet range, file download, folder listing) failed."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class EmptySourceError(SourceFetchError):
    """A source was read successfully but yielded zero usable rows."""


class SourceParseError(RosterError):
    """A single source row could not be turned into a record."""

    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.row_number = row_number


class WriteError(RosterError):
    """A write to the authoritative roster sheet failed."""

    def __init__(self, message: str, target_range: Optional[str] = None):
        super().__init__(message)
        self.target_range = target_range


class IdentityAmbiguityWarning(UserWarning):
    """More than one candidate cleared the match threshold."""
