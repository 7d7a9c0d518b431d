"""
Tiered in-memory caches.

Modules:
    coalescing: TTL cache with refresh coalescing and stale fallback
    sheet_cache: Raw tier, per-range sheet values
    integrated_cache: Computed tier, integrated player data
    portal_cache: Portal lookup index derived from the roster sheet
"""

from roster_sync.cache.coalescing import CacheEntry, CacheMetrics, CacheResult, CoalescingCache
from roster_sync.cache.integrated_cache import IntegratedDataCache, SourceLoader
from roster_sync.cache.portal_cache import PortalCache, PortalEntry, build_portal_entries
from roster_sync.cache.sheet_cache import RawSheetCache

__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "CacheResult",
    "CoalescingCache",
    "IntegratedDataCache",
    "PortalCache",
    "PortalEntry",
    "RawSheetCache",
    "SourceLoader",
    "build_portal_entries",
]
