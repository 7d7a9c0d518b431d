#!/usr/bin/env python3
"""
Roster Service

Wires the caches, the integration engine and the synthesizer together behind
one object. Construct it once at process start and hand it to whatever serves
requests; tests build isolated instances with a fake transport and clock.

Usage:
    # Integrated data (served from cache when fresh)
    python -m roster_sync.pipeline.orchestrator --integrate

    # Force a refetch of every source
    python -m roster_sync.pipeline.orchestrator --integrate --force

    # Guardian emails missing from the mailing list
    python -m roster_sync.pipeline.orchestrator --mailing-list-report

    # Show what synthesis would change without writing
    python -m roster_sync.pipeline.orchestrator --synthesize --dry-run

    # Portal lookups
    python -m roster_sync.pipeline.orchestrator --portal-id abcd1234
    python -m roster_sync.pipeline.orchestrator --lookup-key jane.doe.2027

    # Raw sheet range and cache statistics
    python -m roster_sync.pipeline.orchestrator --range ROSTER A1:Z4 --stats
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from roster_sync.cache.coalescing import CacheResult, Clock
from roster_sync.cache.integrated_cache import IntegratedDataCache
from roster_sync.cache.portal_cache import PortalCache, PortalEntry
from roster_sync.cache.sheet_cache import RawSheetCache
from roster_sync.config import RosterConfig, get_config, validate_config
from roster_sync.errors import RosterError
from roster_sync.integration.integrate import IntegratedData, MailingListReport
from roster_sync.lib.google_api import GoogleApiTransport
from roster_sync.lib.transport import RosterTransport, Rows
from roster_sync.synthesis.synthesizer import RosterSynthesisResult, RosterSynthesizer
from roster_sync.validation.columns import ROSTER_CONTRACT, ColumnContract
from roster_sync.validation.schemas import ValidationResult, validate_columns

logger = logging.getLogger(__name__)


class RosterService:
    """Process-wide entry point for every roster operation."""

    def __init__(
        self,
        transport: RosterTransport,
        config: RosterConfig,
        clock: Clock = time.time,
        sleep=time.sleep,
        show_progress: bool = False,
    ):
        self.config = config
        self.sheets = RawSheetCache(transport, config, clock=clock)
        self.integrated = IntegratedDataCache(transport, config, clock=clock)
        self.portal = PortalCache(self.sheets, config)
        self.synthesizer = RosterSynthesizer(
            transport, config, self.integrated, self.sheets, sleep=sleep, show_progress=show_progress
        )

        logger.info("RosterService initialized")

    def get_integrated_data(self, force_refresh: bool = False) -> Optional[IntegratedData]:
        return self.integrated.get_integrated_data(force_refresh)

    def get_cached_range(self, logical_name: str, range: Optional[str] = None) -> Rows:
        return self.sheets.get(logical_name, range)

    def get_cached_range_result(self, logical_name: str, range: Optional[str] = None) -> CacheResult[Rows]:
        """Like get_cached_range, with the stale flag for callers that report it."""
        return self.sheets.get_result(logical_name, range)

    def force_refresh(self, logical_name: str, range: Optional[str] = None) -> CacheResult[Rows]:
        return self.sheets.force_refresh(logical_name, range)

    def get_mailing_list_report(self, force_refresh: bool = False) -> Optional[MailingListReport]:
        """Guardian emails found on, and missing from, the mailing list; None before any data loads."""
        data = self.integrated.get_integrated_data(force_refresh)
        return data.mailing_list_report if data is not None else None

    def find_portal_entry_by_external_id(self, external_id: str) -> Optional[PortalEntry]:
        return self.portal.find_portal_entry_by_external_id(external_id)

    def find_external_id_by_lookup_key(self, lookup_key: str) -> Optional[str]:
        return self.portal.find_external_id_by_lookup_key(lookup_key)

    def synthesize_roster(self, dry_run: bool = False, force_refresh: bool = False) -> RosterSynthesisResult:
        return self.synthesizer.synthesize_roster(dry_run=dry_run, force_refresh=force_refresh)

    def validate_schema(
        self,
        header_row: Sequence[Any],
        contract: ColumnContract = ROSTER_CONTRACT,
    ) -> ValidationResult:
        return validate_columns(header_row, contract)

    def stats(self) -> Dict[str, Any]:
        return {
            "sheets": self.sheets.stats(),
            "sheet_metrics": self.sheets.metrics.to_dict(),
            "portal": self.portal.stats(),
            "integrated_metrics": self.integrated.metrics.to_dict(),
        }


def build_service(config: Optional[RosterConfig] = None, show_progress: bool = False) -> RosterService:
    """RosterService backed by the Google Sheets / Drive REST transport."""
    config = config or get_config()
    if not config.google_access_token:
        raise RosterError("No access token configured; set GOOGLE_ACCESS_TOKEN")
    return RosterService(GoogleApiTransport(config.google_access_token), config, show_progress=show_progress)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Roster Sync",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--integrate",
        action="store_true",
        help="Print integrated player data and statistics"
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass cache TTLs"
    )

    parser.add_argument(
        "--mailing-list-report",
        action="store_true",
        help="Print guardian emails found on and missing from the mailing list"
    )

    parser.add_argument(
        "--synthesize",
        action="store_true",
        help="Reconcile the roster sheet with integrated data"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --synthesize, show changes without writing"
    )

    parser.add_argument(
        "--portal-id",
        type=str,
        help="Look up a portal entry by portal id"
    )

    parser.add_argument(
        "--lookup-key",
        type=str,
        help="Look up a portal id by lookup key"
    )

    parser.add_argument(
        "--range",
        nargs="+",
        metavar=("SHEET", "RANGE"),
        help="Print a cached sheet range, e.g. --range ROSTER A1:Z4"
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print cache statistics"
    )

    parser.add_argument(
        "--check-config",
        action="store_true",
        help="List configuration issues and exit"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    config = get_config()

    if args.check_config:
        issues = validate_config(config)
        for issue in issues:
            print(f"  - {issue}")
        if not issues:
            print("All required settings are configured.")
        return 1 if any("(optional)" not in issue for issue in issues) else 0

    try:
        service = build_service(config, show_progress=not args.verbose)

        if args.range:
            name = args.range[0]
            range = args.range[1] if len(args.range) > 1 else None
            result = service.force_refresh(name, range) if args.force else service.get_cached_range_result(name, range)
            if result.stale:
                logger.warning(f"Serving stale data for {name}")
            _print_json({"stale": result.stale, "rows": result.data})

        if args.integrate:
            data = service.get_integrated_data(force_refresh=args.force)
            if data is None:
                logger.error("No integrated data available")
                return 1
            _print_json(data.to_dict())

        if args.mailing_list_report:
            report = service.get_mailing_list_report(force_refresh=args.force)
            if report is None:
                logger.error("No integrated data available")
                return 1
            _print_json(report.to_dict())

        if args.portal_id:
            entry = service.find_portal_entry_by_external_id(args.portal_id)
            _print_json(asdict(entry) if entry else None)

        if args.lookup_key:
            _print_json({"portal_id": service.find_external_id_by_lookup_key(args.lookup_key)})

        if args.synthesize:
            result = service.synthesize_roster(dry_run=args.dry_run, force_refresh=args.force)
            _print_json(result.to_dict())

        if args.stats:
            _print_json(service.stats())

    except RosterError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
