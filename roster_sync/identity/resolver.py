#!/usr/bin/env python3
"""
Identity Resolution Engine

Matches a player from one source to a player in another when the sources share
no identifier. Names are the only common ground, so matching is fuzzy:

1. Exact match (confidence=1.0) - case-insensitive "first last" equality
2. Fuzzy match - per-field Levenshtein similarity, weighted towards last name

    similarity(a, b) = (max_len - edit_distance) / max_len, clamped to [0, 1]
    confidence       = 0.3 * first_name_similarity + 0.7 * last_name_similarity

A candidate is a match only when confidence is strictly greater than 0.8.
Among several candidates the highest confidence wins; equal confidences are
broken by scan order (first wins).

Usage:
    from roster_sync.identity.resolver import fuzzy_match_player

    result = fuzzy_match_player("Bob", "Smith", [("Bobby", "Smith"), ("Bob", "Jones")])
    print(result.is_match, result.confidence, result.matched_identity)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from roster_sync.errors import IdentityAmbiguityWarning

logger = logging.getLogger(__name__)

MatchMethodType = Literal["exact", "fuzzy"]

# Confidence weights and threshold
FIRST_NAME_WEIGHT = 0.3
LAST_NAME_WEIGHT = 0.7
MATCH_THRESHOLD = 0.8
CONFIDENCE_EXACT = 1.0

# Rounding applied to the weighted sum so float noise cannot move a score across the threshold
CONFIDENCE_PRECISION = 12

NamePair = Sequence[str]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving one name against a candidate list."""
    is_match: bool
    confidence: float = 0.0
    matched_identity: Optional[str] = None
    candidate_index: Optional[int] = None
    match_method: Optional[MatchMethodType] = None


NO_MATCH = MatchResult(is_match=False, confidence=0.0)


def normalize_name(name: Optional[str]) -> str:
    """Case-fold and trim a name for comparison."""
    if not name:
        return ""
    return str(name).strip().casefold()


def full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    """Display form "First Last" with surrounding whitespace removed."""
    return f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()


def is_confident_match(confidence: float) -> bool:
    """Strictly greater than the threshold; exactly 0.8 is not a match."""
    return confidence > MATCH_THRESHOLD


def calculate_name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """
    Similarity between two names in [0, 1].

    Returns 0 when either name is empty and 1.0 for names equal after
    normalization.
    """
    normalized1 = normalize_name(name1)
    normalized2 = normalize_name(name2)
    if not normalized1 or not normalized2:
        return 0.0

    if normalized1 == normalized2:
        return 1.0

    max_length = max(len(normalized1), len(normalized2))
    distance = Levenshtein.distance(normalized1, normalized2)
    return min(1.0, max(0.0, (max_length - distance) / max_length))


def name_confidence(
    first_name: str,
    last_name: str,
    candidate_first_name: str,
    candidate_last_name: str,
) -> float:
    """Weighted confidence that two (first, last) pairs name the same person."""
    first_similarity = calculate_name_similarity(first_name, candidate_first_name)
    last_similarity = calculate_name_similarity(last_name, candidate_last_name)
    confidence = FIRST_NAME_WEIGHT * first_similarity + LAST_NAME_WEIGHT * last_similarity
    return round(confidence, CONFIDENCE_PRECISION)


def fuzzy_match_player(
    target_first_name: str,
    target_last_name: str,
    candidates: Sequence[NamePair],
) -> MatchResult:
    """
    Find the single best fuzzy match for a name among ``candidates``.

    Args:
        target_first_name: First name to resolve
        target_last_name: Last name to resolve
        candidates: Sequence of (first_name, last_name) pairs

    Returns:
        MatchResult for the highest-confidence candidate; ties go to the
        earliest candidate. No matching is attempted when either target name
        is empty.
    """
    if not normalize_name(target_first_name) or not normalize_name(target_last_name):
        return NO_MATCH

    scored = [
        (name_confidence(target_first_name, target_last_name, first, last), index)
        for index, (first, last) in enumerate(candidates)
    ]
    if not scored:
        return NO_MATCH

    confidence, index = min(scored, key=lambda item: (-item[0], item[1]))
    if confidence <= 0.0:
        return NO_MATCH

    above_threshold = [i for score, i in scored if is_confident_match(score)]
    if len(above_threshold) > 1:
        names = [full_name(*candidates[i]) for i in above_threshold]
        message = (
            f"{full_name(target_first_name, target_last_name)!r} matches {len(names)} candidates "
            f"({', '.join(names)}); using {full_name(*candidates[index])!r}"
        )
        logger.info(message)
        warnings.warn(message, IdentityAmbiguityWarning, stacklevel=2)

    first, last = candidates[index]
    return MatchResult(
        is_match=is_confident_match(confidence),
        confidence=confidence,
        matched_identity=full_name(first, last),
        candidate_index=index,
        match_method="fuzzy",
    )


def resolve_identity(
    target_first_name: str,
    target_last_name: str,
    candidates: Sequence[NamePair],
) -> MatchResult:
    """
    Exact full-name match first, falling back to ``fuzzy_match_player``.

    The exact pass compares "first last" case-insensitively and returns the
    first candidate that is equal.
    """
    target = normalize_name(full_name(target_first_name, target_last_name))
    if target:
        for index, (first, last) in enumerate(candidates):
            if normalize_name(full_name(first, last)) == target:
                return MatchResult(
                    is_match=True,
                    confidence=CONFIDENCE_EXACT,
                    matched_identity=full_name(first, last),
                    candidate_index=index,
                    match_method="exact",
                )

    return fuzzy_match_player(target_first_name, target_last_name, candidates)
