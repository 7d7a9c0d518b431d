# tests/test_integrate.py
"""Tests for joining the three sources into integrated profiles."""

from conftest import FINAL_FORMS_CSV, MAILING_LIST_CSV, QUESTIONNAIRE_VALUES
from roster_sync.integration.integrate import (
    IntegrationStatistics,
    build_mailing_list_report,
    email_on_list,
    integrate_player_data,
    mailing_list_emails,
)
from roster_sync.sources.parsers import (
    FinalFormsRecord,
    MailingListRecord,
    QuestionnaireRecord,
    parse_final_forms,
    parse_mailing_list,
    parse_questionnaire,
)


def _sources():
    return (
        parse_final_forms(FINAL_FORMS_CSV),
        parse_mailing_list(MAILING_LIST_CSV),
        parse_questionnaire(QUESTIONNAIRE_VALUES),
    )


class TestIntegratePlayerData:
    """Profile derivation and statistics."""

    def test_profiles_follow_final_forms_order(self):
        profiles, _ = integrate_player_data(*_sources())
        assert [p.full_name for p in profiles] == ["Alexandra Lee", "Bob Smith", "Sam Johnson"]

    def test_completion_flags(self):
        (alexandra, bob, sam), _ = integrate_player_data(*_sources())

        assert alexandra.has_caretaker_signed_final_forms
        assert alexandra.has_player_signed_final_forms
        assert alexandra.has_player_cleared_physical
        assert alexandra.has_caretaker_filled_questionnaire
        assert alexandra.questionnaire.pronouns == "she/her"
        assert alexandra.has_caretaker1_joined_mailing_list      # case differs on the list
        assert not alexandra.has_caretaker2_joined_mailing_list

        # No guardian email, so the player's own address stands in for guardian 1
        assert bob.has_caretaker1_joined_mailing_list
        assert not bob.has_caretaker_filled_questionnaire

        # "Sam Jonsen" scores exactly 0.8 against "Sam Johnson": not a match
        assert not sam.has_caretaker_filled_questionnaire
        assert sam.questionnaire is None
        assert sam.questionnaire_confidence == 0.8

    def test_statistics(self):
        _, statistics = integrate_player_data(*_sources())
        assert statistics == IntegrationStatistics(
            total_players=3,
            caretaker_signed_final_forms=1,
            player_signed_final_forms=1,
            player_cleared_physical=1,
            caretaker_filled_questionnaire=1,
            caretaker1_joined_mailing_list=2,
            caretaker2_joined_mailing_list=0,
        )
        assert statistics.parents_on_mailing_list == 2
        assert statistics.to_dict()["parents_on_mailing_list"] == 2

    def test_deterministic(self):
        sources = _sources()
        assert integrate_player_data(*sources) == integrate_player_data(*sources)

    def test_questionnaire_only_player_is_invisible(self):
        final_forms = [FinalFormsRecord("Bob", "Smith")]
        questionnaire = [QuestionnaireRecord("Zed", "Quill"), QuestionnaireRecord("Bob", "Smith")]
        profiles, statistics = integrate_player_data(final_forms, (), questionnaire)
        assert [p.full_name for p in profiles] == ["Bob Smith"]
        assert statistics.caretaker_filled_questionnaire == 1

    def test_mailing_list_match_is_exact(self):
        final_forms = [FinalFormsRecord("Bob", "Smith", parent1_email="bob.parent@example.com")]
        mailing_list = [MailingListRecord("bob.parent@example.co")]
        (profile,), _ = integrate_player_data(final_forms, mailing_list)
        assert not profile.has_caretaker1_joined_mailing_list

    def test_empty_optional_sources(self):
        profiles, statistics = integrate_player_data(parse_final_forms(FINAL_FORMS_CSV))
        assert len(profiles) == 3
        assert statistics.caretaker_filled_questionnaire == 0
        assert statistics.parents_on_mailing_list == 0

    def test_to_dict(self):
        (alexandra, _, _), _ = integrate_player_data(*_sources())
        data = alexandra.to_dict()
        assert data["first_name"] == "Alexandra"
        assert data["has_caretaker_filled_questionnaire"] is True
        assert "final_forms" not in data


class TestEmailMembership:
    """Exact, case-insensitive email equality."""

    def test_normalizes_case_and_whitespace(self):
        emails = mailing_list_emails([MailingListRecord(" Mom@Example.COM ")])
        assert emails == frozenset({"mom@example.com"})
        assert email_on_list("MOM@example.com", emails)

    def test_blank_is_never_member(self):
        emails = mailing_list_emails([MailingListRecord("mom@example.com")])
        assert not email_on_list("", emails)
        assert not email_on_list(None, emails)


class TestMailingListReport:
    """Guardian email audit against the mailing list."""

    def test_report(self):
        final_forms, mailing_list, _ = _sources()
        report = build_mailing_list_report(final_forms, mailing_list)

        assert report.guardian_emails == (
            "mom.lee@example.com", "dad.lee@example.com", "bob@gmail.com", "ann.j@example.com",
        )
        assert report.found_on_list == ("mom.lee@example.com", "bob@gmail.com")
        assert report.missing_from_list == ("dad.lee@example.com", "ann.j@example.com")
        assert report.unmatched_list_emails == ("someone@else.com",)
        assert report.to_dict()["total_guardian_emails"] == 4
