"""
Roster synthesis.

Modules:
    roster_metadata: Roster sheet metadata rows and source mappings
    synthesizer: Reconciliation of the roster sheet with integrated profiles
"""

from roster_sync.synthesis.roster_metadata import RosterMetadata, SourceField, parse_roster_metadata
from roster_sync.synthesis.synthesizer import (
    ChangeAction,
    ChangeLogEntry,
    RosterSynthesisResult,
    RosterSynthesizer,
    plan_synthesis,
)

__all__ = [
    "ChangeAction",
    "ChangeLogEntry",
    "RosterMetadata",
    "RosterSynthesisResult",
    "RosterSynthesizer",
    "SourceField",
    "parse_roster_metadata",
    "plan_synthesis",
]
