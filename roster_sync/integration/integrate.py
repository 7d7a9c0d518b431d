#!/usr/bin/env python3
"""
Player Data Integration

Joins the three parsed sources into one profile per player:
- Final Forms is the identity list; a player missing from it does not appear
  in the output even if the questionnaire or mailing list mentions them
- Questionnaire completion comes from a fuzzy name match (strictly > 0.8)
- Mailing-list membership is exact, case-insensitive email equality against
  each guardian email

The engine is a pure function of its inputs: the same three inputs always give
the same profiles, in Final Forms order, with the same statistics.

Usage:
    from roster_sync.integration.integrate import integrate_player_data

    profiles, statistics = integrate_player_data(final_forms, mailing_list, questionnaire)
    print(statistics.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from roster_sync.identity.resolver import fuzzy_match_player, is_confident_match
from roster_sync.sources.parsers import FinalFormsRecord, MailingListRecord, QuestionnaireRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegratedProfile:
    """Canonical per-player view; a new integration pass builds new profiles."""
    first_name: str
    last_name: str
    grade: str
    gender: str
    has_caretaker_signed_final_forms: bool
    has_player_signed_final_forms: bool
    has_player_cleared_physical: bool
    has_caretaker_filled_questionnaire: bool
    has_caretaker1_joined_mailing_list: bool
    has_caretaker2_joined_mailing_list: bool
    final_forms: FinalFormsRecord = field(repr=False, compare=True)
    questionnaire: Optional[QuestionnaireRecord] = field(default=None, repr=False)
    questionnaire_confidence: float = 0.0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "grade": self.grade,
            "gender": self.gender,
            "has_caretaker_signed_final_forms": self.has_caretaker_signed_final_forms,
            "has_player_signed_final_forms": self.has_player_signed_final_forms,
            "has_player_cleared_physical": self.has_player_cleared_physical,
            "has_caretaker_filled_questionnaire": self.has_caretaker_filled_questionnaire,
            "has_caretaker1_joined_mailing_list": self.has_caretaker1_joined_mailing_list,
            "has_caretaker2_joined_mailing_list": self.has_caretaker2_joined_mailing_list,
        }


@dataclass(frozen=True)
class IntegrationStatistics:
    total_players: int = 0
    caretaker_signed_final_forms: int = 0
    player_signed_final_forms: int = 0
    player_cleared_physical: int = 0
    caretaker_filled_questionnaire: int = 0
    caretaker1_joined_mailing_list: int = 0
    caretaker2_joined_mailing_list: int = 0

    @property
    def parents_on_mailing_list(self) -> int:
        return self.caretaker1_joined_mailing_list + self.caretaker2_joined_mailing_list

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["parents_on_mailing_list"] = self.parents_on_mailing_list
        return data


@dataclass(frozen=True)
class SourceTimestamps:
    """Production time of each source, formatted for display in US/Pacific."""
    final_forms: str = ""
    mailing_list: str = ""
    questionnaire: str = ""


@dataclass(frozen=True)
class IntegratedData:
    """Payload of the computed cache tier."""
    profiles: Tuple[IntegratedProfile, ...]
    statistics: IntegrationStatistics
    timestamps: SourceTimestamps = field(default_factory=SourceTimestamps)
    last_updated: str = ""
    mailing_list_emails: frozenset = field(default_factory=frozenset, repr=False)
    mailing_list_report: Optional[MailingListReport] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "players": [p.to_dict() for p in self.profiles],
            "statistics": self.statistics.to_dict(),
            "timestamps": asdict(self.timestamps),
            "last_updated": self.last_updated,
        }


def mailing_list_emails(mailing_list: Sequence[MailingListRecord]) -> frozenset[str]:
    return frozenset(record.email.strip().lower() for record in mailing_list if record.email)


def email_on_list(email: str, emails: frozenset[str]) -> bool:
    """Exact, case-insensitive membership; blank emails are never members."""
    normalized = (email or "").strip().lower()
    return bool(normalized) and normalized in emails


def integrate_profile(
    record: FinalFormsRecord,
    questionnaire: Sequence[QuestionnaireRecord],
    emails: frozenset[str],
) -> IntegratedProfile:
    """Build the profile for one Final Forms record."""
    match = fuzzy_match_player(
        record.first_name,
        record.last_name,
        [(q.first_name, q.last_name) for q in questionnaire],
    )
    filled = match.is_match and is_confident_match(match.confidence)
    matched_response = questionnaire[match.candidate_index] if filled else None

    return IntegratedProfile(
        first_name=record.first_name,
        last_name=record.last_name,
        grade=record.grade,
        gender=record.gender,
        has_caretaker_signed_final_forms=record.parents_signed,
        has_player_signed_final_forms=record.students_signed,
        has_player_cleared_physical=record.physical_cleared,
        has_caretaker_filled_questionnaire=filled,
        has_caretaker1_joined_mailing_list=email_on_list(record.caretaker1_email, emails),
        has_caretaker2_joined_mailing_list=email_on_list(record.caretaker2_email, emails),
        final_forms=record,
        questionnaire=matched_response,
        questionnaire_confidence=match.confidence,
    )


def compute_statistics(profiles: Sequence[IntegratedProfile]) -> IntegrationStatistics:
    return IntegrationStatistics(
        total_players=len(profiles),
        caretaker_signed_final_forms=sum(p.has_caretaker_signed_final_forms for p in profiles),
        player_signed_final_forms=sum(p.has_player_signed_final_forms for p in profiles),
        player_cleared_physical=sum(p.has_player_cleared_physical for p in profiles),
        caretaker_filled_questionnaire=sum(p.has_caretaker_filled_questionnaire for p in profiles),
        caretaker1_joined_mailing_list=sum(p.has_caretaker1_joined_mailing_list for p in profiles),
        caretaker2_joined_mailing_list=sum(p.has_caretaker2_joined_mailing_list for p in profiles),
    )


def integrate_player_data(
    final_forms: Sequence[FinalFormsRecord],
    mailing_list: Sequence[MailingListRecord] = (),
    questionnaire: Sequence[QuestionnaireRecord] = (),
) -> Tuple[Tuple[IntegratedProfile, ...], IntegrationStatistics]:
    """
    Join the three sources into profiles plus aggregate counts.

    Returns:
        Tuple of (profiles in Final Forms order, statistics)
    """
    emails = mailing_list_emails(mailing_list)
    questionnaire = tuple(questionnaire)
    profiles = tuple(integrate_profile(record, questionnaire, emails) for record in final_forms)
    statistics = compute_statistics(profiles)

    logger.info(
        f"Integrated {statistics.total_players} players: "
        f"{statistics.caretaker_filled_questionnaire} questionnaires, "
        f"{statistics.parents_on_mailing_list} parents on mailing list"
    )
    return profiles, statistics


# -----------------------------------------------------------------------------
# Mailing list audit
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class MailingListReport:
    guardian_emails: Tuple[str, ...]
    found_on_list: Tuple[str, ...]
    missing_from_list: Tuple[str, ...]
    unmatched_list_emails: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_guardian_emails": len(self.guardian_emails),
            "found_on_list": list(self.found_on_list),
            "missing_from_list": list(self.missing_from_list),
            "unmatched_list_emails": list(self.unmatched_list_emails),
        }


def build_mailing_list_report(
    final_forms: Sequence[FinalFormsRecord],
    mailing_list: Sequence[MailingListRecord],
) -> MailingListReport:
    """
    Compare guardian emails on Final Forms with the team mailing list.

    Emails are compared case-insensitively and reported lower-cased, each once,
    in first-seen order.
    """
    emails = mailing_list_emails(mailing_list)

    guardian: List[str] = []
    for record in final_forms:
        for email in record.guardian_emails:
            normalized = email.strip().lower()
            if normalized and normalized not in guardian:
                guardian.append(normalized)

    guardian_set = set(guardian)
    unmatched: List[str] = []
    for record in mailing_list:
        normalized = record.email.strip().lower()
        if normalized not in guardian_set and normalized not in unmatched:
            unmatched.append(normalized)

    return MailingListReport(
        guardian_emails=tuple(guardian),
        found_on_list=tuple(e for e in guardian if e in emails),
        missing_from_list=tuple(e for e in guardian if e not in emails),
        unmatched_list_emails=tuple(unmatched),
    )
