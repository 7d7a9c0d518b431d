# tests/test_parsers.py
"""Tests for the Final Forms, mailing list and questionnaire parsers."""

import pytest

from conftest import FINAL_FORMS_CSV, MAILING_LIST_CSV, QUESTIONNAIRE_VALUES
from roster_sync.errors import EmptySourceError
from roster_sync.sources.parsers import (
    find_column,
    iter_final_forms,
    iter_mailing_list,
    iter_questionnaire,
    parse_final_forms,
    parse_mailing_list,
    parse_questionnaire,
    strip_preamble,
)


class TestFinalForms:
    """SPS Final Forms CSV export."""

    def test_parses_every_player(self):
        records = parse_final_forms(FINAL_FORMS_CSV)
        assert [(r.first_name, r.last_name) for r in records] == [
            ("Alexandra", "Lee"), ("Bob", "Smith"), ("Sam", "Johnson"),
        ]

    def test_boolean_coercion(self):
        alexandra, bob, sam = parse_final_forms(FINAL_FORMS_CSV)
        assert alexandra.parents_signed is True
        assert alexandra.students_signed is True      # "Yes"
        assert alexandra.physical_cleared is True     # "Cleared"
        assert bob.parents_signed is False
        assert bob.physical_cleared is False          # blank
        assert sam.students_signed is False

    def test_missing_optional_fields_are_empty(self):
        bob = parse_final_forms(FINAL_FORMS_CSV)[1]
        assert bob.parent1_email == ""
        assert bob.parent2_first_name == ""

    def test_guardian_email_falls_back_to_player(self):
        alexandra, bob, sam = parse_final_forms(FINAL_FORMS_CSV)
        assert alexandra.guardian_emails == ("Mom.Lee@example.com", "dad.lee@example.com")
        assert bob.caretaker1_email == "bob@gmail.com"
        assert bob.guardian_emails == ("bob@gmail.com",)
        assert sam.guardian_emails == ("ann.j@example.com",)

    def test_nameless_row_is_dropped(self):
        csv_text = FINAL_FORMS_CSV + ",,10,F,nobody@example.com,,,,,,,,TRUE,TRUE,TRUE\n"
        assert len(parse_final_forms(csv_text)) == 3

    def test_malformed_line_is_dropped(self):
        csv_text = FINAL_FORMS_CSV + "Too,Many,Fields,,,,,,,,,,,,,,,,,,,,,\n"
        records = parse_final_forms(csv_text)
        assert [r.first_name for r in records] == ["Alexandra", "Bob", "Sam"]

    def test_byte_order_mark_is_ignored(self):
        records = parse_final_forms("\ufeff" + FINAL_FORMS_CSV)
        assert records[0].first_name == "Alexandra"

    def test_iterator_is_restartable(self):
        assert list(iter_final_forms(FINAL_FORMS_CSV)) == list(iter_final_forms(FINAL_FORMS_CSV))

    def test_empty_export_is_source_failure(self):
        with pytest.raises(EmptySourceError):
            parse_final_forms("")
        header_only = FINAL_FORMS_CSV.splitlines()[0] + "\n"
        with pytest.raises(EmptySourceError):
            parse_final_forms(header_only)


class TestMailingList:
    """Google Groups member export."""

    def test_banner_is_stripped(self):
        text = strip_preamble(MAILING_LIST_CSV, "Email address")
        assert text.splitlines()[0].startswith("Email address")

    def test_preamble_without_marker_unchanged(self):
        assert strip_preamble("a,b\n1,2", "Email address") == "a,b\n1,2"

    def test_parses_members(self):
        members = parse_mailing_list(MAILING_LIST_CSV)
        assert [m.email for m in members] == ["mom.lee@EXAMPLE.com", "bob@gmail.com", "someone@else.com"]
        assert members[0].name == "Mina"
        assert members[0].joined_date == "2024-8-20"

    def test_invalid_email_rows_dropped(self):
        csv_text = MAILING_LIST_CSV + "not-an-email,Nobody,member,,2024,1,1\n"
        assert len(list(iter_mailing_list(csv_text))) == 3

    def test_no_members_is_source_failure(self):
        with pytest.raises(EmptySourceError):
            parse_mailing_list("Members for group x@example.com\nEmail address,Nickname\n")


class TestQuestionnaire:
    """Questionnaire responses read from sheet values."""

    def test_splits_player_name(self):
        responses = parse_questionnaire(QUESTIONNAIRE_VALUES)
        assert [(r.first_name, r.last_name) for r in responses] == [("Alexandra", "Lee"), ("Sam", "Jonsen")]
        assert responses[0].pronouns == "she/her"
        assert responses[0].submission_timestamp == "9/1/2025 10:00:00"

    def test_multi_word_last_name(self):
        values = [QUESTIONNAIRE_VALUES[0], ["", "  Maria  de la  Cruz ", "", ""]]
        response = parse_questionnaire(values)[0]
        assert (response.first_name, response.last_name) == ("Maria", "de la Cruz")

    def test_blank_name_rows_dropped(self):
        values = QUESTIONNAIRE_VALUES + [["9/3/2025", "", "they/them"], []]
        assert len(parse_questionnaire(values)) == 2

    def test_missing_name_column_yields_nothing(self):
        values = [["Timestamp", "Pronouns"], ["9/1/2025", "she/her"]]
        assert list(iter_questionnaire(values)) == []
        with pytest.raises(EmptySourceError):
            parse_questionnaire(values)

    def test_find_column(self):
        headers = QUESTIONNAIRE_VALUES[0]
        assert find_column(headers, ("player name",)) == 1
        assert find_column(headers, ("pronoun",)) == 2
        assert find_column(headers, ("shoe",)) is None
