"""
Roster sheet metadata.

The first four rows of the roster sheet describe its columns:

    row 1  column name
    row 2  column type ("string" when blank)
    row 3  source mapping, "<Data Source>: <Source Column>" or just "<Data Source>"
    row 4  free-form note

Player data starts on row 5. Each source mapping is resolved once, when the
metadata is parsed, into a SourceField; building a row afterwards is a table
lookup rather than repeated string matching.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from roster_sync.errors import SchemaValidationError
from roster_sync.integration.integrate import IntegratedProfile, email_on_list
from roster_sync.validation.columns import cell_text

logger = logging.getLogger(__name__)

SPS_EMAIL_DOMAIN = "@seattleschools.org"

SOURCE_MAPPING = re.compile(r"^([^:]+):\s*(.+)$")


class DataSource(Enum):
    FINAL_FORMS = "final_forms"
    QUESTIONNAIRE = "questionnaire"
    MAILING_LIST = "mailing_list"


class SourceField(Enum):
    """Where a roster column's value comes from."""
    UNMAPPED = "unmapped"

    # Final Forms
    PLAYER_FIRST_NAME = "player_first_name"
    PLAYER_LAST_NAME = "player_last_name"
    PLAYER_GRADE = "player_grade"
    PLAYER_GENDER = "player_gender"
    PLAYER_DATE_OF_BIRTH = "player_date_of_birth"
    STUDENT_SPS_EMAIL = "student_sps_email"
    STUDENT_PERSONAL_EMAIL = "student_personal_email"
    PARENT1_FIRST_NAME = "parent1_first_name"
    PARENT1_LAST_NAME = "parent1_last_name"
    PARENT1_EMAIL = "parent1_email"
    PARENT2_FIRST_NAME = "parent2_first_name"
    PARENT2_LAST_NAME = "parent2_last_name"
    PARENT2_EMAIL = "parent2_email"
    PARENT_SIGNED = "parent_signed"
    STUDENT_SIGNED = "student_signed"
    PHYSICAL_CLEARED = "physical_cleared"

    # Questionnaire
    PRONOUNS = "pronouns"
    QUESTIONNAIRE_FILLED = "questionnaire_filled"

    # Mailing list
    PARENT1_ON_MAILING_LIST = "parent1_on_mailing_list"
    PARENT2_ON_MAILING_LIST = "parent2_on_mailing_list"
    STUDENT_ON_MAILING_LIST = "student_on_mailing_list"


@dataclass(frozen=True)
class SourceMapping:
    data_source: str
    source_column: str = ""


@dataclass(frozen=True)
class RosterColumn:
    name: str
    type: str
    source: str
    note: str
    index: int
    field: SourceField = SourceField.UNMAPPED


@dataclass(frozen=True)
class RosterMetadata:
    columns: Tuple[RosterColumn, ...]
    data_start_row: int = 5

    @property
    def header_row(self) -> Tuple[str, ...]:
        header = [""] * self.width
        for column in self.columns:
            header[column.index] = column.name
        return tuple(header)

    @property
    def width(self) -> int:
        return max((c.index for c in self.columns), default=-1) + 1


def parse_source_mapping(source: str) -> Optional[SourceMapping]:
    """
    Split "SPS Final Forms: First Name" into data source and source column.

    A mapping without a colon names only the data source. Blank gives None.
    """
    if not source or not source.strip():
        return None
    match = SOURCE_MAPPING.match(source.strip())
    if match:
        return SourceMapping(match.group(1).strip(), match.group(2).strip())
    return SourceMapping(source.strip(), "")


def resolve_data_source(data_source: str) -> Optional[DataSource]:
    name = data_source.lower()
    if "finalforms" in name or "final forms" in name:
        return DataSource.FINAL_FORMS
    if "additionalinfoform" in name or "questionnaire" in name:
        return DataSource.QUESTIONNAIRE
    if "mailinglist" in name or "mailing list" in name:
        return DataSource.MAILING_LIST
    return None


def _final_forms_field(column: str) -> SourceField:
    # Order matters: player name checks must not catch parent columns
    if "first name" in column and "parent" not in column:
        return SourceField.PLAYER_FIRST_NAME
    if "last name" in column and "parent" not in column:
        return SourceField.PLAYER_LAST_NAME
    if "grade" in column:
        return SourceField.PLAYER_GRADE
    if "gender" in column:
        return SourceField.PLAYER_GENDER
    if "date of birth" in column:
        return SourceField.PLAYER_DATE_OF_BIRTH
    if "student sps email" in column:
        return SourceField.STUDENT_SPS_EMAIL
    if "student personal email" in column and "mailing list" not in column:
        return SourceField.STUDENT_PERSONAL_EMAIL
    for number, first, last, email in (
        (1, SourceField.PARENT1_FIRST_NAME, SourceField.PARENT1_LAST_NAME, SourceField.PARENT1_EMAIL),
        (2, SourceField.PARENT2_FIRST_NAME, SourceField.PARENT2_LAST_NAME, SourceField.PARENT2_EMAIL),
    ):
        if f"parent {number} first name" in column:
            return first
        if f"parent {number} last name" in column:
            return last
        if f"parent {number} email" in column:
            return email
    if "caretaker signed" in column or "parent signed" in column:
        return SourceField.PARENT_SIGNED
    if "student signed" in column or "player signed" in column:
        return SourceField.STUDENT_SIGNED
    if "physical cleared" in column or "physical clearance" in column:
        return SourceField.PHYSICAL_CLEARED
    return SourceField.UNMAPPED


def _mailing_list_field(column: str) -> SourceField:
    if "parent 1" in column:
        return SourceField.PARENT1_ON_MAILING_LIST
    if "parent 2" in column:
        return SourceField.PARENT2_ON_MAILING_LIST
    if "student" in column:
        return SourceField.STUDENT_ON_MAILING_LIST
    return SourceField.UNMAPPED


def resolve_source_field(source: str, column_name: str) -> SourceField:
    """
    Resolve a column's source mapping to a SourceField.

    The source column defaults to the roster column name when the mapping
    names only a data source.
    """
    mapping = parse_source_mapping(source)
    if mapping is None:
        return SourceField.UNMAPPED

    data_source = resolve_data_source(mapping.data_source)
    column = (mapping.source_column or column_name).lower()

    if data_source is DataSource.FINAL_FORMS:
        return _final_forms_field(column)
    if data_source is DataSource.QUESTIONNAIRE:
        return SourceField.PRONOUNS if "pronoun" in column else SourceField.QUESTIONNAIRE_FILLED
    if data_source is DataSource.MAILING_LIST:
        return _mailing_list_field(column)
    return SourceField.UNMAPPED


def parse_roster_metadata(
    metadata_rows: Sequence[Sequence[Any]],
    metadata_row_count: int = 4,
    data_start_row: int = 5,
) -> RosterMetadata:
    """
    Parse the metadata rows at the top of the roster sheet.

    Columns with a blank name are skipped.

    Raises:
        SchemaValidationError: Fewer metadata rows than expected
    """
    if len(metadata_rows) < metadata_row_count:
        raise SchemaValidationError(
            f"Expected {metadata_row_count} metadata rows, got {len(metadata_rows)}"
        )

    name_row, type_row, source_row, note_row = (list(r) for r in metadata_rows[:4])

    def at(row: Sequence[Any], index: int) -> str:
        return cell_text(row[index]) if index < len(row) else ""

    columns = []
    for index in range(len(name_row)):
        name = at(name_row, index)
        if not name:
            continue
        source = at(source_row, index)
        field = resolve_source_field(source, name)
        if source and field is SourceField.UNMAPPED:
            logger.warning(f"Roster column {name!r}: source mapping {source!r} is not recognised")
        columns.append(RosterColumn(
            name=name,
            type=at(type_row, index) or "string",
            source=source,
            note=at(note_row, index),
            index=index,
            field=field,
        ))

    return RosterMetadata(columns=tuple(columns), data_start_row=data_start_row)


# -----------------------------------------------------------------------------
# Value mapping
# -----------------------------------------------------------------------------

def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _student_personal_email(profile: IntegratedProfile) -> str:
    record = profile.final_forms
    email = record.email
    if email.endswith(SPS_EMAIL_DOMAIN) or email in (record.parent1_email, record.parent2_email):
        return ""
    return email


FIELD_VALUES: Dict[SourceField, Callable[[IntegratedProfile, frozenset], str]] = {
    SourceField.UNMAPPED: lambda p, emails: "",
    SourceField.PLAYER_FIRST_NAME: lambda p, emails: p.final_forms.first_name,
    SourceField.PLAYER_LAST_NAME: lambda p, emails: p.final_forms.last_name,
    SourceField.PLAYER_GRADE: lambda p, emails: p.final_forms.grade,
    SourceField.PLAYER_GENDER: lambda p, emails: p.final_forms.gender,
    SourceField.PLAYER_DATE_OF_BIRTH: lambda p, emails: p.final_forms.date_of_birth,
    SourceField.STUDENT_SPS_EMAIL: lambda p, emails: (
        p.final_forms.email if p.final_forms.email.endswith(SPS_EMAIL_DOMAIN) else ""
    ),
    SourceField.STUDENT_PERSONAL_EMAIL: lambda p, emails: _student_personal_email(p),
    SourceField.PARENT1_FIRST_NAME: lambda p, emails: p.final_forms.parent1_first_name,
    SourceField.PARENT1_LAST_NAME: lambda p, emails: p.final_forms.parent1_last_name,
    SourceField.PARENT1_EMAIL: lambda p, emails: p.final_forms.parent1_email,
    SourceField.PARENT2_FIRST_NAME: lambda p, emails: p.final_forms.parent2_first_name,
    SourceField.PARENT2_LAST_NAME: lambda p, emails: p.final_forms.parent2_last_name,
    SourceField.PARENT2_EMAIL: lambda p, emails: p.final_forms.parent2_email,
    SourceField.PARENT_SIGNED: lambda p, emails: _flag(p.final_forms.parents_signed),
    SourceField.STUDENT_SIGNED: lambda p, emails: _flag(p.final_forms.students_signed),
    SourceField.PHYSICAL_CLEARED: lambda p, emails: _flag(p.final_forms.physical_cleared),
    SourceField.PRONOUNS: lambda p, emails: p.questionnaire.pronouns if p.questionnaire else "",
    SourceField.QUESTIONNAIRE_FILLED: lambda p, emails: _flag(p.questionnaire is not None),
    SourceField.PARENT1_ON_MAILING_LIST: lambda p, emails: _flag(email_on_list(p.final_forms.parent1_email, emails)),
    SourceField.PARENT2_ON_MAILING_LIST: lambda p, emails: _flag(email_on_list(p.final_forms.parent2_email, emails)),
    SourceField.STUDENT_ON_MAILING_LIST: lambda p, emails: _flag(email_on_list(p.final_forms.email, emails)),
}


def column_value(profile: IntegratedProfile, field: SourceField, mailing_list_emails: frozenset) -> str:
    """Value a roster column should hold for ``profile``."""
    return FIELD_VALUES[field](profile, mailing_list_emails)


def build_player_row(
    profile: IntegratedProfile,
    metadata: RosterMetadata,
    mailing_list_emails: frozenset,
) -> list:
    """
    The full row ``profile`` should have. Every mapped column comes from source
    data; unmapped columns are written blank.
    """
    row = [""] * metadata.width
    for column in metadata.columns:
        row[column.index] = column_value(profile, column.field, mailing_list_emails)
    return row
