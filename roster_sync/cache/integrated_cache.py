"""
Integrated Data Cache

Computed cache tier: loads the newest Final Forms export, the newest mailing
list export and the questionnaire sheet, integrates them, and caches the result
for CACHE_DURATION_MINUTES (default 30).

Final Forms is mandatory. A failing mailing list or questionnaire source is
logged and treated as empty. When a refresh fails and an earlier result exists,
that result is served instead; with nothing cached, None is returned.

Usage:
    from roster_sync.cache.integrated_cache import IntegratedDataCache

    cache = IntegratedDataCache(transport, config)
    data = cache.get_integrated_data()
    if data is not None:
        print(data.statistics.to_dict())
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

from roster_sync.cache.coalescing import CacheResult, Clock, CoalescingCache
from roster_sync.config import RosterConfig
from roster_sync.errors import SourceFetchError
from roster_sync.integration.integrate import (
    IntegratedData,
    SourceTimestamps,
    build_mailing_list_report,
    integrate_player_data,
    mailing_list_emails,
)
from roster_sync.lib.date_utils import format_to_pacific_time
from roster_sync.lib.transport import DriveFile, RosterTransport, blob_text
from roster_sync.sources.parsers import (
    FinalFormsRecord,
    MailingListRecord,
    QuestionnaireRecord,
    parse_final_forms,
    parse_mailing_list,
    parse_questionnaire,
)

logger = logging.getLogger(__name__)

INTEGRATED_KEY = "integrated-data"

T = TypeVar("T")


@dataclass(frozen=True)
class LoadedSource(Generic[T]):
    """Parsed records from one source plus where they came from."""
    records: Tuple[T, ...]
    timestamp: str = ""
    file_name: str = ""


@dataclass(frozen=True)
class SourceSnapshot:
    """All three sources as loaded for one integration pass."""
    final_forms: LoadedSource[FinalFormsRecord]
    mailing_list: LoadedSource[MailingListRecord]
    questionnaire: LoadedSource[QuestionnaireRecord]


def _transport_call(description: str, source: str, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except SourceFetchError:
        raise
    except Exception as e:
        raise SourceFetchError(f"Failed to {description}: {e}", source=source) from e


class SourceLoader:
    """Fetches and parses the three integration sources through the transport."""

    def __init__(self, transport: RosterTransport, config: RosterConfig, clock: Clock = time.time):
        self.transport = transport
        self.config = config
        self._clock = clock

    def _newest_file(self, folder_id: Optional[str], source: str) -> Tuple[DriveFile, str]:
        if not folder_id:
            raise SourceFetchError(f"No folder configured for {source}", source=source)
        info = _transport_call(f"list folder {folder_id}", source, lambda: self.transport.most_recent_file(folder_id))
        if info is None:
            raise SourceFetchError(f"No timestamped file found in folder {folder_id}", source=source)
        blob = _transport_call(f"download {info.name}", source, lambda: self.transport.download_blob(info.id))
        logger.info(f"Using {source} file: {info.name} ({info.produced_at})")
        return info, blob_text(blob)

    def load_final_forms(self) -> LoadedSource[FinalFormsRecord]:
        info, csv_text = self._newest_file(self.config.final_forms_folder_id, "final_forms")
        records = parse_final_forms(csv_text)
        logger.info(f"Loaded {len(records)} Final Forms records from {info.name}")
        return LoadedSource(tuple(records), format_to_pacific_time(info.produced_at), info.name)

    def load_mailing_list(self) -> LoadedSource[MailingListRecord]:
        info, csv_text = self._newest_file(self.config.mailing_list_folder_id, "mailing_list")
        records = parse_mailing_list(csv_text)
        logger.info(f"Loaded {len(records)} Mailing List records from {info.name}")
        return LoadedSource(tuple(records), format_to_pacific_time(info.produced_at), info.name)

    def load_questionnaire(self) -> LoadedSource[QuestionnaireRecord]:
        sheet_id = self.config.questionnaire_sheet_id
        if not sheet_id:
            raise SourceFetchError("No questionnaire sheet configured", source="questionnaire")
        values = _transport_call(
            f"read questionnaire sheet {sheet_id}",
            "questionnaire",
            lambda: self.transport.fetch_range(sheet_id, self.config.questionnaire_range),
        )
        records = parse_questionnaire(values)
        logger.info(f"Loaded {len(records)} Questionnaire records")
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        return LoadedSource(tuple(records), format_to_pacific_time(now), sheet_id)

    def _optional(self, load: Callable[[], LoadedSource[T]], source: str) -> LoadedSource[T]:
        try:
            return load()
        except SourceFetchError as e:
            logger.warning(f"Error fetching {source} data, continuing without it: {e}")
            return LoadedSource(())

    def load_all(self) -> SourceSnapshot:
        """
        Load every source. Final Forms errors propagate; the others degrade to empty.
        """
        return SourceSnapshot(
            final_forms=self.load_final_forms(),
            mailing_list=self._optional(self.load_mailing_list, "Mailing List"),
            questionnaire=self._optional(self.load_questionnaire, "Questionnaire"),
        )


def integrate_snapshot(snapshot: SourceSnapshot, last_updated: str) -> IntegratedData:
    profiles, statistics = integrate_player_data(
        snapshot.final_forms.records,
        snapshot.mailing_list.records,
        snapshot.questionnaire.records,
    )
    return IntegratedData(
        profiles=profiles,
        statistics=statistics,
        timestamps=SourceTimestamps(
            final_forms=snapshot.final_forms.timestamp,
            mailing_list=snapshot.mailing_list.timestamp,
            questionnaire=snapshot.questionnaire.timestamp,
        ),
        last_updated=last_updated,
        mailing_list_emails=mailing_list_emails(snapshot.mailing_list.records),
        mailing_list_report=build_mailing_list_report(
            snapshot.final_forms.records,
            snapshot.mailing_list.records,
        ),
    )


class IntegratedDataCache:
    """Computed tier holding the latest IntegratedData."""

    def __init__(
        self,
        transport: RosterTransport,
        config: RosterConfig,
        clock: Clock = time.time,
        loader: Optional[SourceLoader] = None,
    ):
        self.config = config
        self.loader = loader or SourceLoader(transport, config, clock)
        self._clock = clock
        self._cache: CoalescingCache[IntegratedData] = CoalescingCache(name="integrated_cache", clock=clock)

    def _build(self) -> IntegratedData:
        logger.info("Fetching fresh data for integration...")
        snapshot = self.loader.load_all()
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        data = integrate_snapshot(snapshot, last_updated=now)
        logger.info(
            f"Fresh data fetched: {data.statistics.total_players} players, "
            f"{data.statistics.parents_on_mailing_list} parents on mailing list"
        )
        return data

    def get_result(self, force_refresh: bool = False) -> CacheResult[IntegratedData]:
        """
        Raises:
            SourceFetchError: Refresh failed and nothing was cached before
        """
        return self._cache.get(
            INTEGRATED_KEY,
            self._build,
            ttl=self.config.computed_ttl_seconds,
            force=force_refresh,
        )

    def get_integrated_data(self, force_refresh: bool = False) -> Optional[IntegratedData]:
        """Latest integrated data; stale on a failed refresh, None when nothing is available."""
        try:
            return self.get_result(force_refresh).data
        except SourceFetchError as e:
            logger.error(f"No cached data available and fresh fetch failed: {e}")
            return None

    def invalidate(self) -> None:
        self._cache.invalidate(INTEGRATED_KEY)

    @property
    def metrics(self):
        return self._cache.metrics
