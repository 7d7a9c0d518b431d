"""
Identity resolution package.

Resolves a player's identity across sources that share no common key
(Final Forms export, questionnaire responses, the roster sheet).

Modules:
    resolver: Exact and fuzzy name matching with confidence scoring
"""

from roster_sync.identity.resolver import (
    MATCH_THRESHOLD,
    MatchResult,
    calculate_name_similarity,
    full_name,
    fuzzy_match_player,
    is_confident_match,
    normalize_name,
    resolve_identity,
)

__all__ = [
    "MATCH_THRESHOLD",
    "MatchResult",
    "calculate_name_similarity",
    "full_name",
    "fuzzy_match_player",
    "is_confident_match",
    "normalize_name",
    "resolve_identity",
]
