"""
Transport interface consumed by the caches and the synthesizer.

The core never talks to the spreadsheet, file-storage or mail providers
directly. It goes through these six calls, and anything that provides them
(the requests-based GoogleApiTransport, or an in-memory double in tests) can be
plugged in.

Implementations raise SourceFetchError for failed reads and WriteError for
failed writes. Timeouts, if any, are the transport's responsibility.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Union

Rows = List[List[Any]]


@dataclass(frozen=True)
class DriveFile:
    """Metadata for the newest file in a folder."""
    id: str
    produced_at: str
    name: str


class RosterTransport(Protocol):
    def fetch_range(self, source_id: str, range: str) -> Rows:
        """Cell values for an A1 range (or a whole sheet tab), row-major."""
        ...

    def fetch_range_with_links(self, source_id: str, range: str) -> Rows:
        """Like fetch_range, but hyperlinked cells come back as {"text": ..., "url": ...}."""
        ...

    def download_blob(self, file_id: str) -> Union[bytes, str]:
        ...

    def most_recent_file(self, folder_id: str) -> Optional[DriveFile]:
        ...

    def write_range(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        ...

    def append_rows(self, source_id: str, range: str, rows: Sequence[Sequence[Any]]) -> None:
        ...


def blob_text(blob: Union[bytes, str], encoding: str = "utf-8") -> str:
    """Decode a downloaded blob to text."""
    if isinstance(blob, bytes):
        return blob.decode(encoding, errors="replace")
    return blob
