"""
Google Sheets / Drive transport over plain HTTPS.

Implements RosterTransport with a requests.Session. OAuth token acquisition is
out of scope: pass an access token, or a callable that returns a current one.

Usage:
    from roster_sync.lib.google_api import GoogleApiTransport

    transport = GoogleApiTransport(access_token=token)
    rows = transport.fetch_range(sheet_id, "📋 Roster!A1:Z4")
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional, Sequence, Union
from urllib.parse import quote

import requests

from roster_sync.errors import SourceFetchError, WriteError
from roster_sync.lib.transport import DriveFile, Rows

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_API = "https://www.googleapis.com/drive/v3/files"
USER_AGENT = "RosterSync/1.0"
DEFAULT_TIMEOUT = 30

# Exports are named with an ISO-8601 timestamp; ':' may be written as '_'
FILENAME_TIMESTAMP = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}[_:]\d{2}[_:]\d{2}Z)")


def extract_filename_timestamp(name: str) -> Optional[str]:
    """ISO timestamp embedded in a file name, normalised to use ':'."""
    match = FILENAME_TIMESTAMP.search(name or "")
    if not match:
        return None
    return match.group(1).replace("_", ":")


def select_most_recent(files: Sequence[dict[str, Any]]) -> Optional[DriveFile]:
    """
    Pick the file whose name carries the newest timestamp.

    Files without a timestamp in their name are ignored.
    """
    stamped = []
    for f in files:
        timestamp = extract_filename_timestamp(f.get("name", ""))
        if timestamp and f.get("id"):
            stamped.append((timestamp, f))

    if not stamped:
        return None

    timestamp, newest = max(stamped, key=lambda item: item[0])
    return DriveFile(id=newest["id"], produced_at=timestamp, name=newest["name"])


def grid_to_rows(grid_rows: Sequence[dict[str, Any]]) -> Rows:
    """Convert Sheets grid data to rows, keeping hyperlinks as {"text", "url"} cells."""
    rows: Rows = []
    for grid_row in grid_rows:
        row = []
        for cell in grid_row.get("values", []):
            text = cell.get("formattedValue") or cell.get("effectiveValue", {}).get("stringValue") or ""
            if cell.get("hyperlink"):
                row.append({"text": text, "url": cell["hyperlink"]})
            else:
                row.append(text)
        rows.append(row)
    return rows


class GoogleApiTransport:
    """RosterTransport backed by the Sheets v4 and Drive v3 REST APIs."""

    def __init__(
        self,
        access_token: Union[str, Callable[[], str]],
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self._token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}", "User-Agent": USER_AGENT}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def _values_url(self, source_id: str, range: str, suffix: str = "") -> str:
        return f"{SHEETS_API}/{source_id}/values/{quote(range, safe='')}{suffix}"

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def fetch_range(self, source_id: str, range: str) -> Rows:
        try:
            response = self._request("GET", self._values_url(source_id, range))
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to read {range!r} from sheet {source_id}: {e}", source=range) from e
        values = response.json().get("values", [])
        logger.debug(f"Fetched {len(values)} rows from {range!r}")
        return values

    def fetch_range_with_links(self, source_id: str, range: str) -> Rows:
        """Like fetch_range, but hyperlinked cells come back as {"text", "url"}."""
        try:
            response = self._request(
                "GET",
                f"{SHEETS_API}/{source_id}",
                params={"ranges": range, "includeGridData": "true"},
            )
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to read {range!r} with links from sheet {source_id}: {e}", source=range) from e

        sheets = response.json().get("sheets") or [{}]
        data = (sheets[0].get("data") or [{}])[0]
        return grid_to_rows(data.get("rowData", []))

    def download_blob(self, file_id: str) -> bytes:
        try:
            response = self._request("GET", f"{DRIVE_API}/{file_id}", params={"alt": "media"})
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to download file {file_id}: {e}", source=file_id) from e
        return response.content

    def most_recent_file(self, folder_id: str) -> Optional[DriveFile]:
        params = {
            "q": f"'{folder_id}' in parents and trashed=false",
            "orderBy": "name desc",
            "pageSize": 10,
            "fields": "files(id,name,modifiedTime)",
        }
        try:
            response = self._request("GET", DRIVE_API, params=params)
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to list folder {folder_id}: {e}", source=folder_id) from e

        files = response.json().get("files", [])
        logger.info(f"Found {len(files)} files in folder {folder_id}")
        newest = select_most_recent(files)
        if newest is None:
            logger.error(f"No files with a timestamp in their name in folder {folder_id}")
        else:
            logger.info(f"Selected most recent file: {newest.name}")
        return newest

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def write_range(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        try:
            self._request(
                "PUT",
                self._values_url(source_id, range),
                params={"valueInputOption": "USER_ENTERED"},
                json={"range": range, "values": [list(r) for r in rows]},
            )
        except requests.RequestException as e:
            raise WriteError(f"Failed to write {range!r}: {e}", target_range=range) from e

    def append_rows(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        try:
            self._request(
                "POST",
                self._values_url(source_id, range, ":append"),
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json={"values": [list(r) for r in rows]},
            )
        except requests.RequestException as e:
            raise WriteError(f"Failed to append {len(rows)} rows at {range!r}: {e}", target_range=range) from e
