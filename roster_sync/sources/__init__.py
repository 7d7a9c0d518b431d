"""Parsers for the Final Forms, mailing list and questionnaire sources."""

from roster_sync.sources.parsers import (
    FinalFormsRecord,
    MailingListRecord,
    QuestionnaireRecord,
    iter_final_forms,
    iter_mailing_list,
    iter_questionnaire,
    parse_final_forms,
    parse_mailing_list,
    parse_questionnaire,
)

__all__ = [
    "FinalFormsRecord",
    "MailingListRecord",
    "QuestionnaireRecord",
    "iter_final_forms",
    "iter_mailing_list",
    "iter_questionnaire",
    "parse_final_forms",
    "parse_mailing_list",
    "parse_questionnaire",
]
