# tests/conftest.py
"""
Shared fixtures: an in-memory transport, a controllable clock and small,
realistic copies of the three sources plus the roster sheet.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import pytest

from roster_sync.config import RosterConfig
from roster_sync.errors import SourceFetchError, WriteError
from roster_sync.lib.transport import DriveFile, Rows
from roster_sync.validation.columns import ROSTER_COLUMNS

ROSTER_TAB = "📋 Roster"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """
    In-memory RosterTransport.

    Sheet values are keyed by the A1 range string the caller passes
    (e.g. "📋 Roster!A1:AZ4"); the source id is recorded but not used for lookup.
    """

    def __init__(self):
        self.ranges: Dict[str, Rows] = {}
        self.folders: Dict[str, DriveFile] = {}
        self.blobs: Dict[str, bytes] = {}

        self.fetch_calls: Counter = Counter()
        self.linked_fetch_calls: Counter = Counter()
        self.failing_ranges: set = set()
        self.failing_folders: set = set()
        self.failing_writes: set = set()
        self.fail_appends = False

        self.writes: List[tuple] = []
        self.appends: List[tuple] = []

        # Set to a threading.Event to hold fetches until the test releases them
        self.gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def fetch_range(self, source_id: str, range: str) -> Rows:
        with self._lock:
            self.fetch_calls[range] += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if range in self.failing_ranges:
            raise SourceFetchError(f"fetch of {range} failed", source=range)
        if range not in self.ranges:
            raise SourceFetchError(f"no such range {range}", source=range)
        return [list(row) for row in self.ranges[range]]

    def fetch_range_with_links(self, source_id: str, range: str) -> Rows:
        with self._lock:
            self.linked_fetch_calls[range] += 1
        return self.fetch_range(source_id, range)

    def download_blob(self, file_id: str) -> bytes:
        if file_id not in self.blobs:
            raise SourceFetchError(f"no such file {file_id}", source=file_id)
        return self.blobs[file_id]

    def most_recent_file(self, folder_id: str) -> Optional[DriveFile]:
        if folder_id in self.failing_folders:
            raise SourceFetchError(f"listing {folder_id} failed", source=folder_id)
        return self.folders.get(folder_id)

    def write_range(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        if range in self.failing_writes:
            raise WriteError(f"write to {range} failed", target_range=range)
        self.writes.append((source_id, range, [list(r) for r in rows]))

    def append_rows(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        if self.fail_appends:
            raise WriteError(f"append at {range} failed", target_range=range)
        self.appends.append((source_id, range, [list(r) for r in rows]))

    def add_file(self, folder_id: str, file_id: str, name: str, produced_at: str, content: str) -> None:
        self.folders[folder_id] = DriveFile(id=file_id, produced_at=produced_at, name=name)
        self.blobs[file_id] = content.encode("utf-8")


# -----------------------------------------------------------------------------
# Source data
# -----------------------------------------------------------------------------

FINAL_FORMS_CSV = """First Name,Last Name,Grade,Gender,Email,Date of Birth,Parent 1 First Name,Parent 1 Last Name,Parent 1 Email,Parent 2 First Name,Parent 2 Last Name,Parent 2 Email,Are All Forms Parent Signed,Are All Forms Student Signed,Physical Clearance
Alexandra,Lee,10,F,alee@seattleschools.org,2010-03-14,Mina,Lee,Mom.Lee@example.com,Joon,Lee,dad.lee@example.com,TRUE,Yes,Cleared
Bob,Smith,9,M,bob@gmail.com,2011-06-01,,,,,,,false,no,
Sam,Johnson,11,M,sjohnson@seattleschools.org,2009-11-30,Ann,Johnson,ann.j@example.com,,,,FALSE,FALSE,FALSE
"""

MAILING_LIST_CSV = """Members for group team-parents@googlegroups.com
Email address,Nickname,Group status,Email status,Join year,Join month,Join day
mom.lee@EXAMPLE.com,Mina,member,,2024,8,20
bob@gmail.com,Bob,member,,2024,9,1
someone@else.com,Someone,member,,2023,1,5
"""

QUESTIONNAIRE_VALUES = [
    ["Timestamp", "Player Name (first and last)", "Player Pronouns", "Allergies"],
    ["9/1/2025 10:00:00", "Alexandra Lee", "she/her", "none"],
    ["9/2/2025 11:30:00", "Sam Jonsen", "he/him", ""],
]

# (column name, type, source mapping)
ROSTER_LAYOUT = [
    ("StudentID", "number", ""),
    ("First Name", "string", "SPS Final Forms: First Name"),
    ("Last Name", "string", "SPS Final Forms: Last Name"),
    ("Full Name", "string", ""),
    ("Grade", "number", "SPS Final Forms: Grade"),
    ("Gender", "string", "SPS Final Forms: Gender"),
    ("Gender Identification", "string", ""),
    ("Date of Birth", "date", "SPS Final Forms: Date of Birth"),
    ("Team", "string", ""),
    ("Are All Forms Parent Signed", "boolean", "SPS Final Forms: Parent Signed"),
    ("Are All Forms Student Signed", "boolean", "SPS Final Forms: Student Signed"),
    ("Physical Cleared", "boolean", "SPS Final Forms: Physical Cleared"),
    ("Final Forms Cleared?", "boolean", ""),
    ("Parent 1 First Name", "string", "SPS Final Forms: Parent 1 First Name"),
    ("Parent 1 Last Name", "string", "SPS Final Forms: Parent 1 Last Name"),
    ("Parent 1 Email", "email", "SPS Final Forms: Parent 1 Email"),
    ("Parent 1 Email On Mailing List?", "boolean", "Team Mailing List: Parent 1"),
    ("Parent 2 First Name", "string", "SPS Final Forms: Parent 2 First Name"),
    ("Parent 2 Last Name", "string", "SPS Final Forms: Parent 2 Last Name"),
    ("Parent 2 Email", "email", "SPS Final Forms: Parent 2 Email"),
    ("Parent 2 Email On Mailing List?", "boolean", "Team Mailing List: Parent 2"),
    ("Student SPS Email", "email", "SPS Final Forms: Student SPS Email"),
    ("Student Personal Email", "email", "SPS Final Forms: Student Personal Email"),
    ("Student Personal Email On Mailing List?", "boolean", "Team Mailing List: Student"),
    ("Prounouns", "string", "Additional Questionnaire: Pronouns"),
    ("Additional Info Questionnaire Filled Out?", "boolean", "Additional Questionnaire"),
    ("Portal Lookup Key", "string", ""),
    ("Portal ID", "string", ""),
]

ROSTER_HEADER = [name for name, _, _ in ROSTER_LAYOUT]


def roster_metadata_rows() -> List[List[str]]:
    return [
        list(ROSTER_HEADER),
        [kind for _, kind, _ in ROSTER_LAYOUT],
        [source for _, _, source in ROSTER_LAYOUT],
        ["" for _ in ROSTER_LAYOUT],
    ]


def roster_row(**values: str) -> List[str]:
    """A roster data row with the given columns set, e.g. roster_row(**{"First Name": "Bob"})."""
    row = [""] * len(ROSTER_HEADER)
    for name, value in values.items():
        row[ROSTER_HEADER.index(name)] = value
    return row


def full_roster_header() -> List[str]:
    """Every contract column plus the two portal pattern columns."""
    return [spec.name for spec in ROSTER_COLUMNS] + ["Portal Lookup Key", "Portal ID"]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def config():
    return RosterConfig(
        roster_sheet_id="roster-sheet",
        final_forms_folder_id="ff-folder",
        mailing_list_folder_id="ml-folder",
        questionnaire_sheet_id="q-sheet",
        google_access_token="token",
        batch_size=2,
        batch_delay_seconds=2.0,
        row_delay_seconds=0.1,
    )


@pytest.fixture
def loaded_transport(transport, config):
    """Transport carrying all three integration sources."""
    transport.add_file(
        "ff-folder", "ff-1", "final_forms_2025-09-03T15_00_00Z.csv", "2025-09-03T15:00:00Z", FINAL_FORMS_CSV,
    )
    transport.add_file(
        "ml-folder", "ml-1", "mailing_list_2025-09-02T08_00_00Z.csv", "2025-09-02T08:00:00Z", MAILING_LIST_CSV,
    )
    transport.ranges[config.questionnaire_range] = QUESTIONNAIRE_VALUES
    return transport
