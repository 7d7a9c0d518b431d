"""
Column Contracts

Declares the columns a spreadsheet-backed table is expected to carry. Each
declared column is a typed field role with a matcher (an exact header name, or
a case-insensitive regex for pattern columns) and a typed accessor, so the
integration and synthesis code never threads raw header strings around.

Usage:
    from roster_sync.validation.columns import ROSTER_CONTRACT, FieldRole

    spec = ROSTER_CONTRACT.column(FieldRole.FIRST_NAME)
    first_name = spec.read(row, schema_map)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

TRUTHY_VALUES = frozenset({"true", "yes"})


# =============================================================================
# CELL VALUES
# =============================================================================

@dataclass(frozen=True)
class PlainCell:
    """A cell holding only text."""
    text: str


@dataclass(frozen=True)
class LinkedCell:
    """A cell holding display text plus a hyperlink."""
    text: str
    url: str


CellValue = Union[PlainCell, LinkedCell]


def to_cell(raw: Any) -> CellValue:
    """
    Convert a raw transport value into a tagged cell.

    Transports hand back plain scalars for most cells and a
    ``{"text": ..., "url": ...}`` mapping for hyperlinked ones.
    """
    if isinstance(raw, (PlainCell, LinkedCell)):
        return raw
    if isinstance(raw, Mapping):
        text = raw.get("text")
        url = raw.get("url")
        text = "" if text is None else str(text)
        if url:
            return LinkedCell(text=text, url=str(url))
        return PlainCell(text=text)
    if raw is None:
        return PlainCell(text="")
    if isinstance(raw, bool):
        return PlainCell(text="TRUE" if raw else "FALSE")
    return PlainCell(text=str(raw))


def cell_text(raw: Any) -> str:
    """Stripped display text of a raw cell."""
    return to_cell(raw).text.strip()


def cell_at(row: Sequence[Any], index: Optional[int]) -> str:
    """Stripped text of ``row[index]``; empty when the index is missing or out of range."""
    if index is None or index < 0 or index >= len(row):
        return ""
    return cell_text(row[index])


def coerce_bool(value: Any, truthy: Iterable[str] = TRUTHY_VALUES) -> bool:
    """Treat "true"/"yes" (case-insensitive) as True, everything else as False."""
    if isinstance(value, bool):
        return value
    return cell_text(value).lower() in set(truthy)


# =============================================================================
# FIELD ROLES
# =============================================================================

class ColumnKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EMAIL = "email"
    DATE = "date"


class FieldRole(Enum):
    """Every column the roster sheet is expected to carry."""
    STUDENT_ID = "student_id"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    FULL_NAME = "full_name"
    GRADE = "grade"
    GENDER = "gender"
    GENDER_IDENTIFICATION = "gender_identification"
    DATE_OF_BIRTH = "date_of_birth"
    TEAM = "team"

    PARENT_SIGNED = "parent_signed"
    STUDENT_SIGNED = "student_signed"
    PHYSICAL_CLEARED = "physical_cleared"
    FINAL_FORMS_CLEARED = "final_forms_cleared"

    PARENT1_FIRST_NAME = "parent1_first_name"
    PARENT1_LAST_NAME = "parent1_last_name"
    PARENT1_EMAIL = "parent1_email"
    PARENT1_MAILING_LIST = "parent1_mailing_list"
    PARENT2_FIRST_NAME = "parent2_first_name"
    PARENT2_LAST_NAME = "parent2_last_name"
    PARENT2_EMAIL = "parent2_email"
    PARENT2_MAILING_LIST = "parent2_mailing_list"

    STUDENT_SPS_EMAIL = "student_sps_email"
    STUDENT_PERSONAL_EMAIL = "student_personal_email"
    STUDENT_PERSONAL_MAILING_LIST = "student_personal_mailing_list"

    PRONOUNS = "pronouns"
    ALLERGIES = "allergies"
    COMPETING_SPORTS = "competing_sports"
    JERSEY_SIZE = "jersey_size"
    PLAYING_EXPERIENCE = "playing_experience"
    PLAYER_HOPES = "player_hopes"
    OTHER_INFO = "other_info"
    QUESTIONNAIRE_FILLED = "questionnaire_filled"

    PORTAL_LOOKUP_KEY = "portal_lookup_key"
    PORTAL_ID = "portal_id"


@dataclass(frozen=True)
class ColumnSpec:
    """A column matched by its exact (trimmed) header name."""
    role: FieldRole
    name: str
    required: bool
    kind: ColumnKind = ColumnKind.STRING
    description: str = ""

    def read(self, row: Sequence[Any], schema_map: Mapping[str, int]) -> Any:
        """
        Read this column from ``row`` as a typed value.

        Returns None for a column absent from the schema map; blank cells read as
        "" for text kinds, None for numbers and False for booleans.
        """
        index = schema_map.get(self.name)
        if index is None:
            return None
        return convert_cell(cell_at(row, index), self.kind)


@dataclass(frozen=True)
class PatternColumn:
    """A column located by a case-insensitive regex over all headers."""
    role: FieldRole
    name: str
    pattern: str
    exclude: Optional[str] = None
    description: str = ""

    def matches(self, header: str) -> bool:
        if not re.search(self.pattern, header, re.IGNORECASE):
            return False
        if self.exclude and re.search(self.exclude, header, re.IGNORECASE):
            return False
        return True


@dataclass(frozen=True)
class ColumnContract:
    """Ordered set of named columns plus zero or more pattern columns."""
    columns: tuple[ColumnSpec, ...]
    patterns: tuple[PatternColumn, ...] = field(default_factory=tuple)

    def __post_init__(self):
        seen: set[str] = set()
        for name in [c.name for c in self.columns] + [p.name for p in self.patterns]:
            if name in seen:
                raise ValueError(f"Duplicate column name in contract: {name!r}")
            seen.add(name)

    @property
    def required(self) -> tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.required)

    @property
    def optional(self) -> tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if not c.required)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(c.name for c in self.columns)

    def column(self, role: FieldRole) -> ColumnSpec:
        for spec in self.columns:
            if spec.role is role:
                return spec
        raise KeyError(f"No column declared for role {role.name}")

    def pattern(self, role: FieldRole) -> PatternColumn:
        for spec in self.patterns:
            if spec.role is role:
                return spec
        raise KeyError(f"No pattern column declared for role {role.name}")


def convert_cell(text: str, kind: ColumnKind) -> Any:
    """Convert stripped cell text to the Python value for ``kind``."""
    if kind is ColumnKind.BOOLEAN:
        return coerce_bool(text)
    if kind is ColumnKind.NUMBER:
        return parse_number(text)
    if kind is ColumnKind.EMAIL:
        return text.lower()
    return text


def parse_number(text: str) -> Optional[Union[int, float]]:
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


def parse_date(text: str) -> Optional[datetime]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


# =============================================================================
# ROSTER CONTRACT
# =============================================================================

def _col(role: FieldRole, name: str, required: bool, kind: ColumnKind, description: str) -> ColumnSpec:
    return ColumnSpec(role=role, name=name, required=required, kind=kind, description=description)


S, N, B, E, D = (
    ColumnKind.STRING, ColumnKind.NUMBER, ColumnKind.BOOLEAN, ColumnKind.EMAIL, ColumnKind.DATE
)

ROSTER_COLUMNS: tuple[ColumnSpec, ...] = (
    # Basic student info
    _col(FieldRole.STUDENT_ID, "StudentID", True, S, "Unique student identifier"),
    _col(FieldRole.FIRST_NAME, "First Name", True, S, "Student first name"),
    _col(FieldRole.LAST_NAME, "Last Name", True, S, "Student last name"),
    _col(FieldRole.FULL_NAME, "Full Name", True, S, "Student full name"),
    _col(FieldRole.GRADE, "Grade", True, N, "Student grade level"),
    _col(FieldRole.GENDER, "Gender", True, S, "Student gender"),
    _col(FieldRole.GENDER_IDENTIFICATION, "Gender Identification", True, S, "Student gender identification"),
    _col(FieldRole.DATE_OF_BIRTH, "Date of Birth", True, D, "Student date of birth"),
    _col(FieldRole.TEAM, "Team", True, S, "Team assignment (Blue/Gold)"),

    # Final Forms status
    _col(FieldRole.PARENT_SIGNED, "Are All Forms Parent Signed", True, B, "Parent signature status"),
    _col(FieldRole.STUDENT_SIGNED, "Are All Forms Student Signed", True, B, "Student signature status"),
    _col(FieldRole.PHYSICAL_CLEARED, "Physical Cleared", True, B, "Physical clearance status"),
    _col(FieldRole.FINAL_FORMS_CLEARED, "Final Forms Cleared?", True, B, "All forms cleared status"),

    # Caretaker contacts
    _col(FieldRole.PARENT1_FIRST_NAME, "Parent 1 First Name", True, S, "Parent 1 first name"),
    _col(FieldRole.PARENT1_LAST_NAME, "Parent 1 Last Name", True, S, "Parent 1 last name"),
    _col(FieldRole.PARENT1_EMAIL, "Parent 1 Email", True, E, "Parent 1 email address"),
    _col(FieldRole.PARENT1_MAILING_LIST, "Parent 1 Email On Mailing List?", True, S, "Parent 1 mailing list status"),
    _col(FieldRole.PARENT2_FIRST_NAME, "Parent 2 First Name", True, S, "Parent 2 first name"),
    _col(FieldRole.PARENT2_LAST_NAME, "Parent 2 Last Name", True, S, "Parent 2 last name"),
    _col(FieldRole.PARENT2_EMAIL, "Parent 2 Email", True, E, "Parent 2 email address"),
    _col(FieldRole.PARENT2_MAILING_LIST, "Parent 2 Email On Mailing List?", True, S, "Parent 2 mailing list status"),

    # Student emails
    _col(FieldRole.STUDENT_SPS_EMAIL, "Student SPS Email", False, E, "Student SPS email address"),
    _col(FieldRole.STUDENT_PERSONAL_EMAIL, "Student Personal Email", False, E, "Student personal email address"),
    _col(FieldRole.STUDENT_PERSONAL_MAILING_LIST, "Student Personal Email On Mailing List?", False, S,
         "Student personal email mailing list status"),

    # Additional questionnaire info ("Prounouns" is the header as it appears on the sheet)
    _col(FieldRole.PRONOUNS, "Prounouns", False, S, "Student pronouns"),
    _col(FieldRole.ALLERGIES, "Player Allergies", False, S, "Player allergies"),
    _col(FieldRole.COMPETING_SPORTS, "Competing Sports and Activities", False, S, "Other competing activities"),
    _col(FieldRole.JERSEY_SIZE, "Jersey Size", False, S, "Jersey size preference"),
    _col(FieldRole.PLAYING_EXPERIENCE, "Playing Experience", False, S, "Previous playing experience"),
    _col(FieldRole.PLAYER_HOPES, "Player hopes for the season", False, S, "Player goals and hopes"),
    _col(FieldRole.OTHER_INFO, "Other Player Info", False, S, "Other miscellaneous info"),
    _col(FieldRole.QUESTIONNAIRE_FILLED, "Additional Info Questionnaire Filled Out?", False, B,
         "Questionnaire completion status"),
)

PORTAL_LOOKUP_KEY = PatternColumn(
    role=FieldRole.PORTAL_LOOKUP_KEY,
    name="portal lookup key",
    pattern=r"^(?=.*portal)(?=.*lookup)",
    description="Key used to find a player's portal id",
)

PORTAL_ID = PatternColumn(
    role=FieldRole.PORTAL_ID,
    name="portal id",
    pattern=r"^(?=.*portal)(?=.*id)",
    exclude=r"lookup",
    description="Opaque external id of the player's portal page",
)

ROSTER_CONTRACT = ColumnContract(
    columns=ROSTER_COLUMNS,
    patterns=(PORTAL_LOOKUP_KEY, PORTAL_ID),
)
