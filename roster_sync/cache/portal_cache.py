"""
Portal Lookup Cache

Secondary index over the roster sheet: maps each player's portal lookup key to
the opaque portal id used in player-portal links. The index is derived from the
raw ROSTER cache and rebuilt whenever that cache is refreshed or invalidated,
or when the portal TTL expires.

The roster header row is validated against ROSTER_CONTRACT before any entry is
built; a SchemaValidationError aborts the rebuild and is never absorbed.

Usage:
    from roster_sync.cache.portal_cache import PortalCache

    portal = PortalCache(sheets, config)
    entry = portal.find_portal_entry_by_external_id("abcd1234")
    portal_id = portal.find_external_id_by_lookup_key("jane.doe.2027")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from roster_sync.cache.coalescing import CacheResult, CoalescingCache
from roster_sync.cache.sheet_cache import RawSheetCache
from roster_sync.config import RosterConfig
from roster_sync.errors import SchemaValidationError
from roster_sync.validation.columns import ROSTER_CONTRACT, ColumnContract, FieldRole, cell_at
from roster_sync.validation.schemas import validate_columns, create_validation_error_message

logger = logging.getLogger(__name__)

ROSTER_SOURCE = "ROSTER"
PORTAL_KEY = "portal:entries"

# Values this short are treated as filler, not real keys or ids
MIN_VALUE_LENGTH = 3
HEADER_MARKER = "Portal"


@dataclass(frozen=True)
class PortalEntry:
    lookup_key: str
    external_id: str
    row_index: int
    raw_row: Tuple[Any, ...]


def build_portal_entries(
    rows: Sequence[Sequence[Any]],
    data_start_row: int = 5,
    contract: ColumnContract = ROSTER_CONTRACT,
) -> List[PortalEntry]:
    """
    Derive portal entries from full roster sheet values.

    ``rows[0]`` is the header row. ``row_index`` of each entry is the 1-based
    sheet row. Rows are kept only when both values are longer than
    MIN_VALUE_LENGTH characters and the lookup key is not header text.

    Raises:
        SchemaValidationError: The header row fails the column contract
    """
    if not rows:
        raise SchemaValidationError("Roster sheet is empty; no header row to validate")

    result = validate_columns(rows[0], contract)
    if not result.is_valid:
        message = f"Schema validation failed for portal index:\n{create_validation_error_message(result)}"
        logger.error(message)
        raise SchemaValidationError(message, result)

    lookup_index = result.pattern_indices[contract.pattern(FieldRole.PORTAL_LOOKUP_KEY).name]
    id_index = result.pattern_indices[contract.pattern(FieldRole.PORTAL_ID).name]
    logger.debug(f"Portal columns: lookup key at {lookup_index}, portal id at {id_index}")

    entries = []
    first = data_start_row - 1
    for offset, row in enumerate(rows[first:]):
        lookup_key = cell_at(row, lookup_index)
        external_id = cell_at(row, id_index)
        if (
            len(lookup_key) > MIN_VALUE_LENGTH
            and len(external_id) > MIN_VALUE_LENGTH
            and HEADER_MARKER not in lookup_key
        ):
            entries.append(PortalEntry(
                lookup_key=lookup_key,
                external_id=external_id,
                row_index=offset + data_start_row,
                raw_row=tuple(row),
            ))
    return entries


class PortalCache:
    """Portal index with its own TTL, rebuilt from the raw ROSTER cache."""

    def __init__(self, sheets: RawSheetCache, config: RosterConfig):
        self.sheets = sheets
        self.config = config
        self._cache: CoalescingCache[List[PortalEntry]] = CoalescingCache(name="portal_cache", clock=sheets.now)
        self._built_from = -1
        self._lock = threading.Lock()

    def _rebuild(self) -> List[PortalEntry]:
        rows = self.sheets.get(ROSTER_SOURCE)
        # Rows from a read that was invalidated mid-flight are not cached; rebuild again next time
        generation = self.sheets.generation(ROSTER_SOURCE) if self.sheets.is_cached(ROSTER_SOURCE) else -1
        entries = build_portal_entries(rows, self.config.data_start_row)
        with self._lock:
            self._built_from = generation
        logger.info(f"Portal cache refreshed: {len(entries)} entries loaded")
        return entries

    def _result(self, force: bool = False) -> CacheResult[List[PortalEntry]]:
        with self._lock:
            roster_changed = self._built_from != self.sheets.generation(ROSTER_SOURCE)
        if roster_changed and self._cache.peek(PORTAL_KEY) is not None:
            logger.debug("Roster cache changed since the portal index was built; rebuilding")
        return self._cache.get(
            PORTAL_KEY,
            self._rebuild,
            ttl=self.config.portal_ttl_seconds,
            force=force or roster_changed,
        )

    def entries(self) -> List[PortalEntry]:
        return self._result().data

    def force_refresh(self) -> List[PortalEntry]:
        """Rebuild from a freshly fetched roster."""
        self.sheets.force_refresh(ROSTER_SOURCE)
        return self._result(force=True).data

    def find_portal_entry_by_external_id(self, external_id: str) -> Optional[PortalEntry]:
        target = external_id.strip()
        for entry in self.entries():
            if entry.external_id == target:
                return entry
        return None

    def find_external_id_by_lookup_key(self, lookup_key: str) -> Optional[str]:
        target = lookup_key.strip()
        for entry in self.entries():
            if entry.lookup_key == target:
                return entry.external_id
        return None

    def invalidate(self) -> None:
        self._cache.invalidate(PORTAL_KEY)

    def stats(self) -> Dict[str, Any]:
        entry = self._cache.peek(PORTAL_KEY)
        if entry is None:
            return {
                "entry_count": 0,
                "last_updated": None,
                "age_seconds": None,
                "is_stale": True,
                "is_refreshing": self._cache.is_refreshing(PORTAL_KEY),
            }
        age = entry.age(self._cache.now())
        return {
            "entry_count": len(entry.data),
            "last_updated": datetime.fromtimestamp(entry.produced_at, tz=timezone.utc).isoformat(),
            "age_seconds": round(age, 3),
            "is_stale": age > entry.ttl,
            "is_refreshing": self._cache.is_refreshing(PORTAL_KEY),
        }
