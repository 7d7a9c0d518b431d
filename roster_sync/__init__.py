"""
Roster Sync

Aggregates a youth sports team's roster from the Final Forms export, the team
mailing list and the additional-info questionnaire, caches the integrated
view, and keeps the authoritative roster sheet in sync with it.

Packages:
    validation: Column contracts and header validation
    sources: Parsers for the three input sources
    identity: Exact and fuzzy name matching
    integration: Joins the sources into per-player profiles
    cache: Raw sheet, integrated data and portal lookup caches
    synthesis: Reconciles the roster sheet with integrated profiles
    lib: Transport interface and the Google Sheets / Drive implementation
    pipeline: RosterService facade and command line entry point
"""

__version__ = "1.0.0"
