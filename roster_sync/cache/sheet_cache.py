"""
Raw Sheet Cache

Per-range cache of sheet values from the roster workbook. Each logical source
(ROSTER, PRACTICE_INFO, ...) maps to a sheet tab and carries its own TTL;
entries are keyed "<logical name>:<range or 'full'>".

Usage:
    from roster_sync.cache.sheet_cache import RawSheetCache

    sheets = RawSheetCache(transport, config)
    rows = sheets.get("ROSTER")                 # whole tab
    header = sheets.get("ROSTER", "A1:Z4")      # one range
    sheets.force_refresh("PRACTICE_AVAILABILITY")
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from roster_sync.cache.coalescing import CacheResult, Clock, CoalescingCache
from roster_sync.config import RosterConfig
from roster_sync.errors import RosterError, SourceFetchError
from roster_sync.lib.transport import RosterTransport, Rows
from roster_sync.validation.columns import cell_text

logger = logging.getLogger(__name__)

DEFAULT_PRELOAD = ("ROSTER", "PRACTICE_INFO", "GAME_INFO")


def cache_key(logical_name: str, range: Optional[str] = None) -> str:
    return f"{logical_name}:{range or 'full'}"


class RawSheetCache:
    """Raw tier: sheet ranges fetched through the transport, cached per logical source."""

    def __init__(
        self,
        transport: RosterTransport,
        config: RosterConfig,
        clock: Clock = time.time,
    ):
        self.transport = transport
        self.config = config
        self._cache: CoalescingCache[Rows] = CoalescingCache(name="sheet_cache", clock=clock)

    def _fetch_range(self, logical_name: str, range: Optional[str]) -> str:
        sheet_name = self.config.source(logical_name).sheet_name
        return f"{sheet_name}!{range}" if range else sheet_name

    def _loader(self, logical_name: str, range: Optional[str]):
        sheet_range = self._fetch_range(logical_name, range)
        if self.config.source(logical_name).with_links:
            fetch = self.transport.fetch_range_with_links
        else:
            fetch = self.transport.fetch_range

        def load() -> Rows:
            try:
                rows = fetch(self.config.roster_sheet_id, sheet_range)
            except SourceFetchError:
                raise
            except Exception as e:
                raise SourceFetchError(f"Failed to fetch {sheet_range!r}: {e}", source=logical_name) from e
            logger.info(f"Sheet cache refreshed: {logical_name} - {len(rows)} rows cached")
            return rows

        return load

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_result(self, logical_name: str, range: Optional[str] = None, force: bool = False) -> CacheResult[Rows]:
        """Cached rows plus freshness information."""
        ttl = self.config.source(logical_name).ttl_seconds
        return self._cache.get(
            cache_key(logical_name, range),
            self._loader(logical_name, range),
            ttl=ttl,
            force=force,
        )

    def get(self, logical_name: str, range: Optional[str] = None) -> Rows:
        """
        Cached rows for a logical source, fetched on a miss or an expired TTL.

        Raises:
            KeyError: Unknown logical source
            SourceFetchError: Fetch failed and nothing was cached before
        """
        return self.get_result(logical_name, range).data

    def force_refresh(self, logical_name: str, range: Optional[str] = None) -> CacheResult[Rows]:
        """Refetch ignoring the TTL; a failed refetch still falls back to the cached rows."""
        return self.get_result(logical_name, range, force=True)

    def get_row(self, logical_name: str, row_index: int) -> Optional[List[Any]]:
        """Row ``row_index`` (0-based) of the full-sheet data, or None."""
        rows = self.get(logical_name)
        if 0 <= row_index < len(rows):
            return rows[row_index]
        return None

    def find_row(self, logical_name: str, column_index: int, value: str) -> Optional[Tuple[List[Any], int]]:
        """First full-sheet row whose ``column_index`` cell equals ``value`` (trimmed)."""
        target = value.strip()
        for index, row in enumerate(self.get(logical_name)):
            if column_index < len(row) and cell_text(row[column_index]) == target:
                return row, index
        return None

    def preload(self, names: Sequence[str] = DEFAULT_PRELOAD, max_workers: int = 4) -> Dict[str, bool]:
        """
        Warm several full-sheet entries concurrently.

        Failures are logged and reported as False; they never stop the others.
        """
        results: Dict[str, bool] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.get, name): name for name in names}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                    results[name] = True
                except (RosterError, KeyError) as e:
                    logger.error(f"Failed to preload {name}: {e}")
                    results[name] = False
        logger.info(f"Preloaded {sum(results.values())}/{len(results)} sheet caches")
        return results

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def now(self) -> float:
        return self._cache.now()

    def generation(self, logical_name: str, range: Optional[str] = None) -> int:
        return self._cache.generation(cache_key(logical_name, range))

    def invalidate(self, logical_name: str, range: Optional[str] = None) -> bool:
        return self._cache.invalidate(cache_key(logical_name, range))

    def invalidate_source(self, logical_name: str) -> int:
        """Drop the full-sheet entry and every ranged entry of ``logical_name``."""
        return self._cache.invalidate_prefix(f"{logical_name}:")

    def is_cached(self, logical_name: str, range: Optional[str] = None) -> bool:
        return self._cache.peek(cache_key(logical_name, range)) is not None

    def clear(self) -> int:
        return self._cache.clear()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-key row count, last update, age, staleness, refresh state and TTL."""
        now = self._cache.now()
        stats = {}
        for key in sorted(self._cache.keys()):
            entry = self._cache.peek(key)
            if entry is None:
                continue
            age = entry.age(now)
            stats[key] = {
                "row_count": len(entry.data),
                "last_updated": datetime.fromtimestamp(entry.produced_at, tz=timezone.utc).isoformat(),
                "age_seconds": round(age, 3),
                "is_stale": age > entry.ttl,
                "is_refreshing": self._cache.is_refreshing(key),
                "ttl_seconds": entry.ttl,
            }
        return stats

    @property
    def metrics(self):
        return self._cache.metrics
