#!/usr/bin/env python3
"""
Roster Synthesis

Reconciles freshly integrated player profiles with the authoritative roster
sheet:

1. Each profile is matched to an existing roster row: exact full name first,
   then fuzzy (confidence strictly > 0.8)
2. A matched row is rebuilt entirely from source data (values are never carried
   over from the old row) and diffed column by column; any difference is an
   update, otherwise the player is skipped
3. An unmatched profile becomes a new row
4. An existing row that no profile matches is reported as orphaned and left in
   place; rows are never deleted

Every overwritten column appears in the change log with its old and new value.

Writes go out in fixed-size batches with a pause between batches and a shorter
pause between rows. A failed row write is logged and the batch carries on.

Usage:
    from roster_sync.synthesis.synthesizer import RosterSynthesizer

    synthesizer = RosterSynthesizer(transport, config, integrated_cache, sheets)
    result = synthesizer.synthesize_roster(dry_run=True)
    for change in result.changes:
        print(change.identity, change.action.value, change.field_diffs)
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from roster_sync.cache.integrated_cache import IntegratedDataCache
from roster_sync.cache.sheet_cache import RawSheetCache
from roster_sync.config import RosterConfig
from roster_sync.errors import SourceFetchError, WriteError
from roster_sync.identity.resolver import full_name, resolve_identity
from roster_sync.integration.integrate import IntegratedData, IntegratedProfile
from roster_sync.lib.transport import RosterTransport
from roster_sync.synthesis.roster_metadata import RosterMetadata, build_player_row, parse_roster_metadata
from roster_sync.validation.columns import ROSTER_CONTRACT, FieldRole, cell_at
from roster_sync.validation.schemas import SchemaMap, require_valid_schema, validate_row_kinds

logger = logging.getLogger(__name__)

ROSTER_SOURCE = "ROSTER"


class ChangeAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FieldDiff:
    old: str
    new: str


@dataclass
class ChangeLogEntry:
    identity: str
    action: ChangeAction
    field_diffs: Dict[str, FieldDiff] = field(default_factory=dict)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "action": self.action.value,
            "field_diffs": {name: asdict(diff) for name, diff in self.field_diffs.items()},
            "reason": self.reason,
        }


@dataclass
class RosterSynthesisResult:
    added: int = 0
    updated: int = 0
    orphaned: List[str] = field(default_factory=list)
    changes: List[ChangeLogEntry] = field(default_factory=list)
    failed_writes: List[str] = field(default_factory=list)
    source_timestamps: Dict[str, str] = field(default_factory=dict)
    # Existing players whose cells do not fit their declared kinds, with the offending columns
    kind_warnings: Dict[str, List[str]] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "orphaned": list(self.orphaned),
            "changes": [c.to_dict() for c in self.changes],
            "failed_writes": list(self.failed_writes),
            "source_timestamps": dict(self.source_timestamps),
            "kind_warnings": {name: list(fields) for name, fields in self.kind_warnings.items()},
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class ExistingPlayer:
    """A player row already on the roster sheet."""
    first_name: str
    last_name: str
    row_index: int
    values: Dict[str, str]
    kind_warnings: Tuple[str, ...] = ()

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.last_name)


@dataclass
class SynthesisPlan:
    """What a synthesis run will write, alongside its result."""
    result: RosterSynthesisResult
    updates: List[Tuple[int, str, list]] = field(default_factory=list)
    additions: List[Tuple[str, list]] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Planning
# -----------------------------------------------------------------------------

def parse_existing_players(
    rows: Sequence[Sequence[Any]],
    metadata: RosterMetadata,
    schema_map: SchemaMap,
) -> List[ExistingPlayer]:
    """
    Read existing roster data rows (rows[0] is the first data row).

    Rows with neither a first nor a last name are skipped. Cells that do not
    fit their declared kind are logged and kept.
    """
    first_index = schema_map.get(ROSTER_CONTRACT.column(FieldRole.FIRST_NAME).name)
    last_index = schema_map.get(ROSTER_CONTRACT.column(FieldRole.LAST_NAME).name)

    players = []
    for index, row in enumerate(rows):
        if not row:
            continue
        first_name = cell_at(row, first_index)
        last_name = cell_at(row, last_index)
        if not first_name and not last_name:
            continue
        kinds = validate_row_kinds(row, schema_map, row_number=metadata.data_start_row + index)
        players.append(ExistingPlayer(
            first_name=first_name,
            last_name=last_name,
            row_index=index,
            values={column.name: cell_at(row, column.index) for column in metadata.columns},
            kind_warnings=tuple(w.field for w in kinds.warnings),
        ))
    return players


def diff_row(existing: ExistingPlayer, new_row: Sequence[str], metadata: RosterMetadata) -> Dict[str, FieldDiff]:
    diffs = {}
    for column in metadata.columns:
        old = existing.values.get(column.name, "")
        new = str(new_row[column.index]) if column.index < len(new_row) else ""
        if old != new:
            diffs[column.name] = FieldDiff(old=old, new=new)
    return diffs


def find_orphans(existing: Sequence[ExistingPlayer], profiles: Sequence[IntegratedProfile]) -> List[str]:
    """Existing players that no incoming profile matches."""
    candidates = [(p.first_name, p.last_name) for p in profiles]
    return [
        player.full_name
        for player in existing
        if not resolve_identity(player.first_name, player.last_name, candidates).is_match
    ]


def plan_synthesis(
    data: IntegratedData,
    metadata: RosterMetadata,
    existing_rows: Sequence[Sequence[Any]],
    schema_map: SchemaMap,
) -> SynthesisPlan:
    """Compute the change log and the rows to write, without touching the sheet."""
    existing = parse_existing_players(existing_rows, metadata, schema_map)
    logger.info(f"Found {len(existing)} existing players in roster sheet")

    result = RosterSynthesisResult(
        orphaned=find_orphans(existing, data.profiles),
        source_timestamps=asdict(data.timestamps),
        kind_warnings={p.full_name: list(p.kind_warnings) for p in existing if p.kind_warnings},
    )
    plan = SynthesisPlan(result=result)
    candidates = [(p.first_name, p.last_name) for p in existing]

    for profile in data.profiles:
        identity = profile.full_name
        new_row = build_player_row(profile, metadata, data.mailing_list_emails)
        match = resolve_identity(profile.first_name, profile.last_name, candidates)

        if not match.is_match:
            logger.info(f"Adding new player: {identity}")
            plan.additions.append((identity, new_row))
            result.added += 1
            result.changes.append(ChangeLogEntry(identity, ChangeAction.ADDED))
            continue

        player = existing[match.candidate_index]
        diffs = diff_row(player, new_row, metadata)
        if diffs:
            plan.updates.append((player.row_index, identity, new_row))
            result.updated += 1
            reason = None
            if match.match_method == "fuzzy":
                reason = f"matched roster row {player.full_name!r} (confidence {match.confidence:.2f})"
            result.changes.append(ChangeLogEntry(identity, ChangeAction.UPDATED, diffs, reason))
        else:
            result.changes.append(ChangeLogEntry(identity, ChangeAction.SKIPPED, reason="No changes needed"))

    logger.info(
        f"Processing summary: {result.added} new players, {result.updated} updates, "
        f"{len(result.orphaned)} orphaned"
    )
    return plan


# -----------------------------------------------------------------------------
# Writing
# -----------------------------------------------------------------------------

class BatchWriter:
    """Rate-limited row writer."""

    def __init__(
        self,
        transport: RosterTransport,
        sheet_id: str,
        batch_size: int = 10,
        batch_delay_seconds: float = 2.0,
        row_delay_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = False,
    ):
        self.transport = transport
        self.sheet_id = sheet_id
        self.show_progress = show_progress
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.row_delay_seconds = row_delay_seconds
        self.sleep = sleep

    def _batches(self, items: Sequence[Any]) -> List[Sequence[Any]]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    def write_rows(self, writes: Sequence[Tuple[str, str, list]]) -> List[str]:
        """
        Write (range, identity, row) triples one row at a time.

        Returns:
            Identities whose write failed
        """
        failed = []
        batches = self._batches(writes)
        progress = tqdm(batches, desc="Writing roster rows", unit="batch", disable=not self.show_progress)
        for number, batch in enumerate(progress, start=1):
            logger.info(f"Processing batch {number}/{len(batches)} ({len(batch)} rows)")
            for position, (target, identity, row) in enumerate(batch):
                try:
                    self.transport.write_range(self.sheet_id, target, [row])
                except WriteError as e:
                    logger.error(f"Failed to update {target} for {identity}: {e}")
                    failed.append(identity)
                if position < len(batch) - 1:
                    self.sleep(self.row_delay_seconds)
            if number < len(batches):
                logger.debug(f"Waiting {self.batch_delay_seconds}s before next batch...")
                self.sleep(self.batch_delay_seconds)
        return failed

    def append_rows(self, target: str, additions: Sequence[Tuple[str, list]]) -> List[str]:
        """
        Append new rows, one append call per batch.

        Returns:
            Identities whose append failed
        """
        failed = []
        batches = self._batches(additions)
        for number, batch in enumerate(batches, start=1):
            try:
                self.transport.append_rows(self.sheet_id, target, [row for _, row in batch])
            except WriteError as e:
                logger.error(f"Append of batch {number}/{len(batches)} failed: {e}")
                failed.extend(identity for identity, _ in batch)
            if number < len(batches):
                self.sleep(self.batch_delay_seconds)
        return failed


# -----------------------------------------------------------------------------
# Synthesizer
# -----------------------------------------------------------------------------

class RosterSynthesizer:
    """Loads the roster and integrated data, plans the changes and applies them."""

    def __init__(
        self,
        transport: RosterTransport,
        config: RosterConfig,
        integrated: IntegratedDataCache,
        sheets: Optional[RawSheetCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = False,
    ):
        self.transport = transport
        self.config = config
        self.integrated = integrated
        self.sheets = sheets
        self.writer = BatchWriter(
            transport,
            config.roster_sheet_id,
            batch_size=config.batch_size,
            batch_delay_seconds=config.batch_delay_seconds,
            row_delay_seconds=config.row_delay_seconds,
            sleep=sleep,
            show_progress=show_progress,
        )

    def _sheet_range(self, range: str) -> str:
        return f"{self.config.source(ROSTER_SOURCE).sheet_name}!{range}"

    def _read(self, range: str) -> List[List[Any]]:
        target = self._sheet_range(range)
        try:
            return self.transport.fetch_range(self.config.roster_sheet_id, target)
        except SourceFetchError:
            raise
        except Exception as e:
            raise SourceFetchError(f"Failed to read roster range {target!r}: {e}", source=ROSTER_SOURCE) from e

    def load_roster(self) -> Tuple[RosterMetadata, SchemaMap, List[List[Any]]]:
        """
        Read and validate the roster's metadata rows, then its data rows.

        Raises:
            SchemaValidationError: Header row or metadata rows are invalid
        """
        metadata_rows = self._read(self.config.metadata_range)
        metadata = parse_roster_metadata(
            metadata_rows,
            metadata_row_count=self.config.metadata_rows,
            data_start_row=self.config.data_start_row,
        )
        schema_map, _ = require_valid_schema(metadata_rows[0], ROSTER_CONTRACT, table_name="roster")
        data_rows = self._read(self.config.data_range)
        return metadata, schema_map, data_rows

    def synthesize_roster(self, dry_run: bool = False, force_refresh: bool = False) -> RosterSynthesisResult:
        """
        Reconcile the roster sheet with the latest integrated data.

        Raises:
            SourceFetchError: No integrated data is available
            SchemaValidationError: The roster sheet does not match its contract
        """
        metadata, schema_map, data_rows = self.load_roster()

        data = self.integrated.get_integrated_data(force_refresh=force_refresh)
        if data is None:
            raise SourceFetchError("Failed to fetch integrated player data", source="integrated")

        plan = plan_synthesis(data, metadata, data_rows, schema_map)
        result = plan.result
        result.dry_run = dry_run

        if dry_run:
            logger.info(f"Dry run: skipping {len(plan.updates)} updates and {len(plan.additions)} additions")
            return result

        self.apply(plan, metadata)
        return result

    def apply(self, plan: SynthesisPlan, metadata: RosterMetadata) -> None:
        logger.info(f"Applying changes: {len(plan.updates)} updates, {len(plan.additions)} new rows")

        writes = [
            (self._sheet_range(self.config.row_range(metadata.data_start_row + row_index)), identity, row)
            for row_index, identity, row in plan.updates
        ]
        failed = self.writer.write_rows(writes)

        if plan.additions:
            target = self._sheet_range(self.config.row_range(metadata.data_start_row))
            failed.extend(self.writer.append_rows(target, plan.additions))

        plan.result.failed_writes = failed
        if failed:
            logger.error(f"{len(failed)} roster writes failed: {', '.join(failed)}")

        if (plan.updates or plan.additions) and self.sheets is not None:
            self.sheets.invalidate_source(ROSTER_SOURCE)
