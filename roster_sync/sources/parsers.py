"""
Source parsers for the three roster inputs.

Each parser turns raw tabular input into typed records:
- SPS Final Forms export (CSV text) -> FinalFormsRecord
- Team mailing list export (CSV text with a banner line) -> MailingListRecord
- Additional questionnaire responses (2-D sheet values) -> QuestionnaireRecord

The ``iter_*`` functions are generators: lazy, finite, and restartable by
calling them again on the same input. A malformed row is logged and dropped;
the ``parse_*`` wrappers raise EmptySourceError when nothing usable is left.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, TypeVar

import pandas as pd

from roster_sync.errors import EmptySourceError, SourceParseError
from roster_sync.validation.columns import TRUTHY_VALUES, cell_at, cell_text, coerce_bool

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Source-specific column names
FINAL_FORMS_COLUMNS: dict[str, str] = {
    "first_name": "First Name",
    "last_name": "Last Name",
    "grade": "Grade",
    "gender": "Gender",
    "email": "Email",
    "date_of_birth": "Date of Birth",
    "parent1_first_name": "Parent 1 First Name",
    "parent1_last_name": "Parent 1 Last Name",
    "parent1_email": "Parent 1 Email",
    "parent2_first_name": "Parent 2 First Name",
    "parent2_last_name": "Parent 2 Last Name",
    "parent2_email": "Parent 2 Email",
    "parents_signed": "Are All Forms Parent Signed",
    "students_signed": "Are All Forms Student Signed",
    "physical_clearance": "Physical Clearance",
}

MAILING_LIST_COLUMNS: dict[str, str] = {
    "email": "Email address",
    "name": "Nickname",
    "join_year": "Join year",
    "join_month": "Join month",
    "join_day": "Join day",
}

# Questionnaire headers are free-form question text, so they are located by substring
QUESTIONNAIRE_COLUMNS: dict[str, tuple[str, ...]] = {
    "timestamp": ("timestamp",),
    "player_name": ("player name",),
    "pronouns": ("pronoun",),
}

PHYSICAL_CLEARANCE_VALUES = TRUTHY_VALUES | {"cleared"}


@dataclass(frozen=True)
class FinalFormsRecord:
    """One player row from the SPS Final Forms export."""
    first_name: str
    last_name: str
    grade: str = ""
    gender: str = ""
    email: str = ""
    date_of_birth: str = ""
    parent1_first_name: str = ""
    parent1_last_name: str = ""
    parent1_email: str = ""
    parent2_first_name: str = ""
    parent2_last_name: str = ""
    parent2_email: str = ""
    parents_signed: bool = False
    students_signed: bool = False
    physical_cleared: bool = False

    @property
    def caretaker1_email(self) -> str:
        """Guardian 1 email, falling back to the player's own email."""
        return self.parent1_email or self.email

    @property
    def caretaker2_email(self) -> str:
        return self.parent2_email

    @property
    def guardian_emails(self) -> tuple[str, ...]:
        """Up to two guardian emails, blanks removed."""
        return tuple(e for e in (self.caretaker1_email, self.caretaker2_email) if e)


@dataclass(frozen=True)
class MailingListRecord:
    """One member of the team mailing list."""
    email: str
    name: str = ""
    joined_date: str = ""


@dataclass(frozen=True)
class QuestionnaireRecord:
    """One submission of the additional-info questionnaire."""
    first_name: str
    last_name: str
    submission_timestamp: str = ""
    pronouns: str = ""
    caretaker_email: str = ""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def strip_preamble(csv_text: str, header_marker: str) -> str:
    """
    Drop provider-inserted lines that precede the real header.

    Everything before the first line containing ``header_marker`` is removed.
    Text without the marker is returned unchanged.
    """
    lines = csv_text.lstrip("\ufeff").splitlines()
    for index, line in enumerate(lines):
        if header_marker in line:
            return "\n".join(lines[index:])
    return "\n".join(lines)


def read_csv_records(csv_text: str, source: str) -> list[dict[str, str]]:
    """
    Read CSV text into a list of {header: value} dicts with every value a string.

    Lines with the wrong number of fields are logged and skipped.
    """
    def _skip_bad_line(bad_line: list[str]) -> None:
        logger.warning(f"{source}: skipping malformed line: {bad_line!r}")
        return None

    if not csv_text or not csv_text.strip():
        return []

    try:
        df = pd.read_csv(
            io.StringIO(csv_text.lstrip("\ufeff")),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_skip_bad_line,
        )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        raise EmptySourceError(f"{source}: CSV could not be parsed: {e}", source=source) from e

    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    logger.debug(f"{source}: available columns: {list(df.columns)}")
    return df.to_dict(orient="records")


def _value(row: Mapping[str, Any], columns: Mapping[str, str], key: str) -> str:
    """Stripped value for a logical field; empty when the column is absent."""
    header = columns.get(key)
    if header is None:
        return ""
    return cell_text(row.get(header))


def _iter_parsed(
    rows: Sequence[T],
    convert: Callable[[T, int], Any],
    source: str,
    first_row_number: int,
) -> Iterator[Any]:
    dropped = 0
    for offset, row in enumerate(rows):
        row_number = offset + first_row_number
        try:
            yield convert(row, row_number)
        except SourceParseError as e:
            dropped += 1
            logger.warning(f"{source}: dropping row {row_number}: {e}")
    if dropped:
        logger.info(f"{source}: dropped {dropped} malformed rows")


def _require_rows(records: list[T], source: str) -> list[T]:
    if not records:
        raise EmptySourceError(f"{source} yielded no usable rows", source=source)
    return records


# -----------------------------------------------------------------------------
# Final Forms
# -----------------------------------------------------------------------------

def _final_forms_record(row: Mapping[str, Any], columns: Mapping[str, str], row_number: int) -> FinalFormsRecord:
    first_name = _value(row, columns, "first_name")
    last_name = _value(row, columns, "last_name")
    if not first_name and not last_name:
        raise SourceParseError("player has no first or last name", row_number)

    return FinalFormsRecord(
        first_name=first_name,
        last_name=last_name,
        grade=_value(row, columns, "grade"),
        gender=_value(row, columns, "gender"),
        email=_value(row, columns, "email"),
        date_of_birth=_value(row, columns, "date_of_birth"),
        parent1_first_name=_value(row, columns, "parent1_first_name"),
        parent1_last_name=_value(row, columns, "parent1_last_name"),
        parent1_email=_value(row, columns, "parent1_email"),
        parent2_first_name=_value(row, columns, "parent2_first_name"),
        parent2_last_name=_value(row, columns, "parent2_last_name"),
        parent2_email=_value(row, columns, "parent2_email"),
        parents_signed=coerce_bool(_value(row, columns, "parents_signed")),
        students_signed=coerce_bool(_value(row, columns, "students_signed")),
        physical_cleared=coerce_bool(_value(row, columns, "physical_clearance"), PHYSICAL_CLEARANCE_VALUES),
    )


def iter_final_forms(
    csv_text: str,
    columns: Mapping[str, str] = FINAL_FORMS_COLUMNS,
) -> Iterator[FinalFormsRecord]:
    """Yield Final Forms records from a CSV export."""
    rows = read_csv_records(csv_text, "final_forms")
    yield from _iter_parsed(
        rows,
        lambda row, n: _final_forms_record(row, columns, n),
        "final_forms",
        first_row_number=2,
    )


def parse_final_forms(csv_text: str, columns: Mapping[str, str] = FINAL_FORMS_COLUMNS) -> list[FinalFormsRecord]:
    return _require_rows(list(iter_final_forms(csv_text, columns)), "final_forms")


# -----------------------------------------------------------------------------
# Mailing List
# -----------------------------------------------------------------------------

def _mailing_list_record(row: Mapping[str, Any], columns: Mapping[str, str], row_number: int) -> MailingListRecord:
    email = _value(row, columns, "email")
    if not email or email == columns.get("email") or "@" not in email:
        raise SourceParseError(f"invalid email address {email!r}", row_number)

    parts = [_value(row, columns, key) for key in ("join_year", "join_month", "join_day")]
    joined_date = "-".join(parts) if all(parts) else ""

    return MailingListRecord(
        email=email,
        name=_value(row, columns, "name"),
        joined_date=joined_date,
    )


def iter_mailing_list(
    csv_text: str,
    columns: Mapping[str, str] = MAILING_LIST_COLUMNS,
) -> Iterator[MailingListRecord]:
    """
    Yield mailing list members from a group export.

    The export starts with a "Members for group ..." banner line before the
    header; it is stripped before parsing.
    """
    body = strip_preamble(csv_text, columns["email"])
    rows = read_csv_records(body, "mailing_list")
    yield from _iter_parsed(
        rows,
        lambda row, n: _mailing_list_record(row, columns, n),
        "mailing_list",
        first_row_number=2,
    )


def parse_mailing_list(csv_text: str, columns: Mapping[str, str] = MAILING_LIST_COLUMNS) -> list[MailingListRecord]:
    return _require_rows(list(iter_mailing_list(csv_text, columns)), "mailing_list")


# -----------------------------------------------------------------------------
# Questionnaire
# -----------------------------------------------------------------------------

def find_column(headers: Sequence[Any], needles: Sequence[str]) -> Optional[int]:
    """Index of the first header containing any of ``needles`` (case-insensitive)."""
    for index, header in enumerate(headers):
        text = cell_text(header).lower()
        if any(needle in text for needle in needles):
            return index
    return None


def _questionnaire_record(row: Sequence[Any], indices: Mapping[str, Optional[int]], row_number: int) -> QuestionnaireRecord:
    player_name = cell_at(row, indices["player_name"])
    if not player_name:
        raise SourceParseError("response has no player name", row_number)

    first_name, _, last_name = " ".join(player_name.split()).partition(" ")
    return QuestionnaireRecord(
        first_name=first_name,
        last_name=last_name,
        submission_timestamp=cell_at(row, indices["timestamp"]),
        pronouns=cell_at(row, indices["pronouns"]),
        caretaker_email="",
    )


def iter_questionnaire(
    sheet_data: Sequence[Sequence[Any]],
    columns: Mapping[str, Sequence[str]] = QUESTIONNAIRE_COLUMNS,
) -> Iterator[QuestionnaireRecord]:
    """Yield questionnaire responses from sheet values (header row first)."""
    if len(sheet_data) < 2:
        return

    headers = sheet_data[0]
    indices = {key: find_column(headers, needles) for key, needles in columns.items()}
    logger.debug(f"questionnaire: column indices {indices}")

    if indices.get("player_name") is None:
        logger.error(f"questionnaire: no player name column among headers {list(headers)}")
        return

    yield from _iter_parsed(
        sheet_data[1:],
        lambda row, n: _questionnaire_record(row, indices, n),
        "questionnaire",
        first_row_number=2,
    )


def parse_questionnaire(
    sheet_data: Sequence[Sequence[Any]],
    columns: Mapping[str, Sequence[str]] = QUESTIONNAIRE_COLUMNS,
) -> list[QuestionnaireRecord]:
    return _require_rows(list(iter_questionnaire(sheet_data, columns)), "questionnaire")
